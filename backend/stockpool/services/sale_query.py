# Overview: Pure filtering, credit status and pagination over committed sales.

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Sequence

from ..errors import ValidationError
from ..models import Sale
from ..models.sales import SALE_ACTIVE, SALE_CANCELLED
from ..time_utils import end_of_day, start_of_day, to_utc_naive, utcnow

STATUS_FILTERS = ("all", "active", "cancelled")
PAYMENT_FILTERS = ("all", "cash", "credit", "overdue")

CREDIT_OVERDUE = "overdue"
CREDIT_DUE_TODAY = "due_today"
CREDIT_PENDING = "pending"

_SECONDS_PER_DAY = 24 * 60 * 60


def _is_credit(sale: Sale, credit_method: str) -> bool:
    return (sale.payment_method or "").upper() == credit_method.upper()


def is_overdue(sale: Sale, now: datetime, credit_method: str = "CREDIT") -> bool:
    if not _is_credit(sale, credit_method) or sale.credit_due_date is None:
        return False
    paid = sale.amount_paid_cents or 0
    return now > to_utc_naive(sale.credit_due_date) and paid < sale.total_cents


def _lower_bound(value: date | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc_naive(value)
    return start_of_day(value)


def _upper_bound(value: date | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc_naive(value)
    return end_of_day(value)


def filter_sales(
    sales: Iterable[Sale],
    status: str = "all",
    payment_type: str = "all",
    date_from: date | datetime | None = None,
    date_to: date | datetime | None = None,
    now: datetime | None = None,
    credit_method: str = "CREDIT",
) -> list[Sale]:
    """
    Keep the sales that satisfy every given criterion. Input order is kept.

    payment_type "cash" means any non-credit method. A plain date bound
    covers the whole day; both bounds are inclusive.
    """
    status = (status or "all").lower()
    payment_type = (payment_type or "all").lower()
    if status not in STATUS_FILTERS:
        raise ValidationError(f"Unknown status filter {status!r}", {"allowed": list(STATUS_FILTERS)})
    if payment_type not in PAYMENT_FILTERS:
        raise ValidationError(f"Unknown payment filter {payment_type!r}", {"allowed": list(PAYMENT_FILTERS)})

    now = to_utc_naive(now) if now else utcnow()
    lower = _lower_bound(date_from)
    upper = _upper_bound(date_to)

    result = []
    for sale in sales:
        if status == "active" and sale.status != SALE_ACTIVE:
            continue
        if status == "cancelled" and sale.status != SALE_CANCELLED:
            continue

        credit = _is_credit(sale, credit_method)
        if payment_type == "cash" and credit:
            continue
        if payment_type == "credit" and not credit:
            continue
        if payment_type == "overdue" and not is_overdue(sale, now, credit_method):
            continue

        created = to_utc_naive(sale.created_at)
        if lower is not None and created < lower:
            continue
        if upper is not None and created > upper:
            continue

        result.append(sale)
    return result


def credit_status(sale: Sale, now: datetime | None = None, credit_method: str = "CREDIT") -> dict | None:
    """
    Days until (or past) the credit due date, rounded up to whole days.

    Returns None for non-credit sales.
    """
    if not _is_credit(sale, credit_method) or sale.credit_due_date is None:
        return None
    now = to_utc_naive(now) if now else utcnow()
    remaining = (to_utc_naive(sale.credit_due_date) - now).total_seconds()
    days = math.ceil(remaining / _SECONDS_PER_DAY)

    if days < 0:
        return {"status": CREDIT_OVERDUE, "days": abs(days)}
    if days == 0:
        return {"status": CREDIT_DUE_TODAY, "days": 0}
    return {"status": CREDIT_PENDING, "days": days}


@dataclass(frozen=True)
class Page:
    items: list
    page: int
    per_page: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.per_page - 1) // self.per_page if self.total > 0 else 1

    def to_dict(self, serialize=None) -> dict:
        items = [serialize(item) for item in self.items] if serialize else list(self.items)
        return {
            "items": items,
            "page": self.page,
            "per_page": self.per_page,
            "total": self.total,
            "pages": self.pages,
        }


def paginate(items: Sequence, page: int | None = 1, per_page: int | None = 20) -> Page:
    page = max(1, page or 1)
    per_page = max(1, min(per_page or 20, 100))  # Default 20, max 100
    start = (page - 1) * per_page
    return Page(
        items=list(items[start:start + per_page]),
        page=page,
        per_page=per_page,
        total=len(items),
    )

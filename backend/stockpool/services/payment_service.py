# Overview: Payments received against credit sales.

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import IllegalStateTransition, ValidationError
from ..models import Sale
from ..models.sales import SALE_ACTIVE
from ..time_utils import to_utc_naive, utcnow
from .cancellation_service import get_sale
from .concurrency import begin_write_transaction, run_with_retry
from .ledger_service import append_audit_event
"""
Credit payment invariants (authoritative)

- Only ACTIVE credit sales accept payments.
- 0 < amount and amount_paid + amount <= total (no overpayment).
- amount_paid_cents only grows; every payment is an audit event.
"""

logger = logging.getLogger(__name__)


def record_credit_payment(
    sale_id: int,
    amount_cents: int,
    actor: str | None = None,
    *,
    company_id: int | None = None,
    now: datetime | None = None,
) -> Sale:
    if amount_cents is None or amount_cents < 1:
        raise ValidationError("amount_cents must be >= 1", {"sale_id": sale_id})
    when = to_utc_naive(now) if now else utcnow()
    credit_method = current_app.config["CREDIT_PAYMENT_METHOD"].upper()

    def _op() -> Sale:
        begin_write_transaction()
        sale = get_sale(sale_id, company_id, lock=True)
        if sale.status != SALE_ACTIVE:
            raise IllegalStateTransition(
                f"Cannot record payment on sale in status {sale.status}",
                {"sale_id": sale.id, "status": sale.status},
            )
        if sale.payment_method.upper() != credit_method or not sale.is_credit:
            raise ValidationError("Sale is not a credit sale", {"sale_id": sale.id})

        paid = sale.amount_paid_cents or 0
        balance = sale.total_cents - paid
        if amount_cents > balance:
            raise ValidationError(
                "Payment exceeds outstanding balance",
                {"sale_id": sale.id, "balance_cents": balance, "amount_cents": amount_cents},
            )

        sale.amount_paid_cents = paid + amount_cents
        append_audit_event(
            company_id=sale.company_id,
            event_type="sale.payment",
            entity_type="sale",
            entity_id=sale.id,
            actor=actor,
            occurred_at=when,
            payload={"amount_cents": amount_cents, "balance_cents": balance - amount_cents},
        )

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    logger.info("Payment of %s cents recorded on sale %s", amount_cents, sale.invoice_number)
    return sale

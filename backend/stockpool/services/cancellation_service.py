# Overview: One-way ACTIVE -> CANCELLED transition for committed sales.

from __future__ import annotations

import logging
from datetime import datetime

from ..extensions import db
from ..errors import IllegalStateTransition, UnknownSale, ValidationError
from ..models import Sale
from ..models.sales import SALE_ACTIVE, SALE_CANCELLED
from ..time_utils import to_utc_naive, utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .ledger_service import append_audit_event

logger = logging.getLogger(__name__)

# Sale.cancel_reason and AuditEvent.note are String(255)
CANCEL_REASON_MAX_LENGTH = 255


def get_sale(sale_id: int, company_id: int | None = None, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    sale = query.first()
    if sale is None:
        raise UnknownSale(sale_id)
    if company_id is not None and sale.company_id != company_id:
        raise UnknownSale(sale_id)
    return sale


def cancel_sale(
    sale_id: int,
    reason: str | None,
    actor: str | None,
    *,
    company_id: int | None = None,
    now: datetime | None = None,
) -> Sale:
    """
    Mark an ACTIVE sale CANCELLED with a mandatory reason.

    Stock consumed by the sale is NOT returned to the pool. Cancelling an
    already-cancelled sale raises IllegalStateTransition.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Cancellation reason required", {"sale_id": sale_id})
    if len(reason) > CANCEL_REASON_MAX_LENGTH:
        raise ValidationError(
            f"Cancellation reason exceeds max length {CANCEL_REASON_MAX_LENGTH}",
            {"sale_id": sale_id},
        )
    when = to_utc_naive(now) if now else utcnow()

    def _op() -> Sale:
        begin_write_transaction()
        sale = get_sale(sale_id, company_id, lock=True)
        if sale.status != SALE_ACTIVE:
            raise IllegalStateTransition(
                f"Cannot cancel sale in status {sale.status}",
                {"sale_id": sale.id, "status": sale.status},
            )

        sale.status = SALE_CANCELLED
        sale.cancel_reason = reason
        sale.cancelled_by = actor
        sale.cancelled_at = when

        append_audit_event(
            company_id=sale.company_id,
            event_type="sale.cancelled",
            entity_type="sale",
            entity_id=sale.id,
            actor=actor,
            occurred_at=when,
            note=reason,
            payload={"invoice_number": sale.invoice_number, "total_cents": sale.total_cents},
        )

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    logger.info("Sale %s cancelled by %s", sale.invoice_number, actor)
    return sale

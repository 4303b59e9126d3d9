from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import object_session, validates

from ..extensions import db
from ..errors import IllegalStateTransition
from ..time_utils import to_utc_z


SALE_ACTIVE = "ACTIVE"
SALE_CANCELLED = "CANCELLED"

# Fields fixed once the sale has been committed
FROZEN_SALE_FIELDS = (
    "invoice_number",
    "company_id",
    "branch_id",
    "customer_id",
    "total_cents",
    "total_cost_cents",
    "payment_method",
)


class Sale(db.Model):
    """
    Committed sale. Created only by the finalizer.

    WHY frozen fields: a completed sale's economics must not drift when
    products are edited later. After creation only status, cancellation
    metadata and amount_paid_cents change.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("company_id", "invoice_number", name="uq_sales_company_invoice"),
        # Composite index for company-scoped queries by status and date
        db.Index("ix_sales_company_status_created", "company_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    # Human-readable invoice number (e.g., "FACT-12")
    invoice_number = db.Column(db.String(64), nullable=False)

    # Customer snapshot for receipts and listings
    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)

    total_cents = db.Column(db.Integer, nullable=False)
    total_cost_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(32), nullable=False, index=True)

    # Credit terms (credit sales only)
    credit_days = db.Column(db.Integer, nullable=True)
    credit_due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    amount_paid_cents = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_ACTIVE, index=True)

    # Cancellation audit trail
    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_by = db.Column(db.String(128), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch")
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @validates(*FROZEN_SALE_FIELDS)
    def _validate_frozen(self, key, value):
        current = getattr(self, key)
        if current is not None and current != value:
            raise IllegalStateTransition(
                f"Sale field {key} is immutable",
                {"sale_id": self.id, "field": key},
            )
        return value

    @property
    def is_credit(self) -> bool:
        return self.credit_due_date is not None

    @property
    def balance_cents(self) -> int | None:
        if not self.is_credit:
            return None
        return self.total_cents - (self.amount_paid_cents or 0)

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "branch_id": self.branch_id,
            "customer_id": self.customer_id,
            "invoice_number": self.invoice_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "total_cents": self.total_cents,
            "total_cost_cents": self.total_cost_cents,
            "payment_method": self.payment_method,
            "credit_days": self.credit_days,
            "credit_due_date": to_utc_z(self.credit_due_date),
            "amount_paid_cents": self.amount_paid_cents,
            "balance_cents": self.balance_cents,
            "status": self.status,
            "cancel_reason": self.cancel_reason,
            "cancelled_by": self.cancelled_by,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Frozen copy of one cart line. Never updated after insert."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    variant_name = db.Column(db.String(128), nullable=True)

    unit_ids = db.Column(db.JSON, nullable=True)
    unit_labels = db.Column(db.JSON, nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    line_cost_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "variant_id": self.variant_id,
            "variant_name": self.variant_name,
            "unit_ids": self.unit_ids,
            "unit_labels": self.unit_labels,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
            "line_cost_cents": self.line_cost_cents,
        }


@event.listens_for(SaleLine, "before_update")
def _reject_sale_line_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and session.is_modified(target, include_collections=False):
        raise IllegalStateTransition(
            "Sale lines are immutable",
            {"sale_line_id": target.id, "sale_id": target.sale_id},
        )

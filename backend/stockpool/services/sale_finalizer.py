# Overview: Atomic conversion of a composed cart into a committed Sale.

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..errors import (
    DuplicateUnitSelection,
    IllegalStateTransition,
    InsufficientStock,
    TrackingModeMismatch,
    UnknownBranch,
    UnknownVariant,
    ValidationError,
)
from ..models import Branch, Company, Product, Sale, SaleLine
from ..models.inventory import TRACK_QUANTITY, TRACK_UNITS
from ..models.sales import SALE_ACTIVE
from ..time_utils import to_utc_naive, utcnow
from .cart_composer import Cart, CartLine
from .concurrency import begin_write_transaction, run_with_retry, stock_locks
from .customer_resolver import get_customer
from .document_service import next_invoice_number
from .ledger_service import append_audit_event
from .stock_model import (
    QuantityDelta,
    StockDelta,
    StockModel,
    UnitStatusDelta,
    VariantDelta,
)
"""
Sale finalization invariants (authoritative)

States: DRAFT -> RESERVING -> COMMITTED, or -> FAILED(reason). Single-shot.

1. Preconditions are checked without side effects.
2. Every line is re-validated against live stock while holding the
   per-product locks and the write transaction, never against the values
   captured when the cart was composed.
3-6. Deltas, totals, credit terms, invoice number, Sale rows and the audit
   event are written in ONE transaction. Any failure rolls all of it back.

Optimistic conflicts (StaleDataError on Product.stock_version) are retried;
each retry re-runs step 2 from scratch.
"""

logger = logging.getLogger(__name__)

STATE_DRAFT = "DRAFT"
STATE_RESERVING = "RESERVING"
STATE_COMMITTED = "COMMITTED"
STATE_FAILED = "FAILED"

# Keeps credit_due_date well inside the datetime range
MAX_CREDIT_DAYS = 3650


def normalize_payment_method(method: str | None) -> str:
    value = (method or "").strip().upper()
    allowed = {m.upper() for m in current_app.config["PAYMENT_METHODS"]}
    if not value:
        raise ValidationError("payment_method required")
    if value not in allowed:
        raise ValidationError(
            f"Unknown payment method {method!r}",
            {"allowed": sorted(allowed)},
        )
    return value


def credit_payment_method() -> str:
    return current_app.config["CREDIT_PAYMENT_METHOD"].upper()


class SaleFinalizer:
    """
    One sale attempt. Create a new finalizer to try again after a failure.
    """

    def __init__(self, company_id: int, stock: StockModel | None = None):
        self.company_id = company_id
        self.stock = stock or StockModel(company_id)
        self.state = STATE_DRAFT
        self.failure: Exception | None = None
        self.sale: Sale | None = None

    def finalize(
        self,
        cart: Cart,
        customer_id: int,
        branch_id: int | None,
        payment_method: str,
        credit_days: int | None = None,
        *,
        actor: str | None = None,
        now: datetime | None = None,
    ) -> Sale:
        if self.state != STATE_DRAFT:
            raise IllegalStateTransition(
                f"Sale attempt already {self.state.lower()}",
                {"state": self.state},
            )

        try:
            method, credit_days = self._check_preconditions(
                cart, customer_id, branch_id, payment_method, credit_days
            )
            self.state = STATE_RESERVING
            sale = self._commit(
                cart,
                customer_id=customer_id,
                branch_id=branch_id,
                payment_method=method,
                credit_days=credit_days,
                actor=actor,
                now=to_utc_naive(now) if now else utcnow(),
            )
        except Exception as exc:
            self.state = STATE_FAILED
            self.failure = exc
            logger.info("Sale attempt failed: %s: %s", type(exc).__name__, exc)
            raise

        self.state = STATE_COMMITTED
        self.sale = sale
        return sale

    # ------------------------------------------------------------------
    # Step 1: preconditions
    # ------------------------------------------------------------------

    def validate_order(self, cart, branch_id, payment_method, credit_days):
        """
        Checks that need neither the customer nor any write. Callers that
        create the customer on the fly run these first so a rejected order
        leaves nothing behind.

        Returns the normalized (payment_method, credit_days).
        """
        if cart is None or cart.is_empty:
            raise ValidationError("Cart is empty")
        if not branch_id:
            raise ValidationError("Branch required")

        branch = db.session.query(Branch).filter_by(id=branch_id).first()
        if branch is None or branch.company_id != self.company_id or not branch.is_active:
            raise UnknownBranch(branch_id)

        method = normalize_payment_method(payment_method)
        if method == credit_payment_method():
            if credit_days is None or credit_days < 1:
                raise ValidationError("credit_days must be >= 1 for credit sales")
            if credit_days > MAX_CREDIT_DAYS:
                raise ValidationError(
                    f"credit_days must be <= {MAX_CREDIT_DAYS}",
                    {"credit_days": credit_days},
                )
        else:
            credit_days = None

        seen_units: set[int] = set()
        for line in cart:
            if line.quantity < 1:
                raise ValidationError("quantity must be >= 1", {"product_id": line.product_id})
            repeated = seen_units & set(line.unit_ids)
            if repeated:
                raise DuplicateUnitSelection("Unit already in cart", {"unit_ids": sorted(repeated)})
            seen_units.update(line.unit_ids)

            product = self.stock.get_product(line.product_id)
            if product.branch_id is not None and product.branch_id != branch_id:
                raise ValidationError(
                    "Product is not stocked at this branch",
                    {"product_id": product.id, "branch_id": branch_id},
                )

        return method, credit_days

    def _check_preconditions(self, cart, customer_id, branch_id, payment_method, credit_days):
        method, credit_days = self.validate_order(cart, branch_id, payment_method, credit_days)
        get_customer(customer_id, self.company_id)
        return method, credit_days

    # ------------------------------------------------------------------
    # Step 2: live re-validation
    # ------------------------------------------------------------------

    def _plan_deltas(self, cart: Cart, products: dict[int, Product]) -> list[tuple[Product, StockDelta]]:
        plan: list[tuple[Product, StockDelta]] = []
        for line in cart:
            product = products[line.product_id]
            if line.tracking_mode != product.tracking_mode:
                raise TrackingModeMismatch(
                    "Cart line does not match product tracking mode",
                    {"product_id": product.id},
                )
            snap = self.stock.snapshot(product)
            plan.append((product, self._check_line(line, product, snap)))
        return plan

    def _check_line(self, line: CartLine, product: Product, snap) -> StockDelta:
        if product.tracking_mode == TRACK_QUANTITY:
            if snap.count < line.quantity:
                raise InsufficientStock(
                    product.id,
                    details={"requested": line.quantity, "available": snap.count},
                )
            return QuantityDelta(line.quantity)

        if product.tracking_mode == TRACK_UNITS:
            available = {u.id for u in snap.available_units}
            missing = sorted(uid for uid in line.unit_ids if uid not in available)
            if missing or len(line.unit_ids) != line.quantity:
                raise InsufficientStock(product.id, details={"unit_ids": missing})
            return UnitStatusDelta(tuple(line.unit_ids))

        variant = snap.get(line.variant_id)
        if variant is None:
            raise UnknownVariant(line.variant_id)
        if variant.stock < line.quantity:
            raise InsufficientStock(
                product.id,
                details={"variant_id": variant.id, "requested": line.quantity, "available": variant.stock},
            )
        return VariantDelta(variant.id, line.quantity)

    # ------------------------------------------------------------------
    # Steps 2-7: one locked transaction
    # ------------------------------------------------------------------

    def _commit(self, cart: Cart, *, customer_id, branch_id, payment_method, credit_days, actor, now) -> Sale:
        product_ids = [line.product_id for line in cart]

        def _op() -> Sale:
            begin_write_transaction()
            products = {pid: self.stock.get_product(pid, lock=True) for pid in sorted(set(product_ids))}

            plan = self._plan_deltas(cart, products)
            for product, delta in plan:
                self.stock.apply_stock_delta(product, delta, now=now)

            customer = get_customer(customer_id, self.company_id)
            company = db.session.get(Company, self.company_id)

            sale = Sale(
                company_id=self.company_id,
                branch_id=branch_id,
                customer_id=customer.id,
                invoice_number=next_invoice_number(company),
                customer_name=customer.name,
                customer_phone=customer.phone,
                total_cents=cart.total_cents(),
                total_cost_cents=cart.total_cost_cents(),
                payment_method=payment_method,
                status=SALE_ACTIVE,
                created_by=actor,
                created_at=now,
            )
            if credit_days is not None:
                sale.credit_days = credit_days
                sale.credit_due_date = now + timedelta(days=credit_days)
                sale.amount_paid_cents = 0

            for line in cart:
                sale.lines.append(SaleLine(
                    product_id=line.product_id,
                    product_name=line.product_name,
                    variant_id=line.variant_id,
                    variant_name=line.variant_name,
                    unit_ids=list(line.unit_ids) or None,
                    unit_labels=list(line.unit_labels) or None,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    unit_cost_cents=line.unit_cost_cents,
                    line_total_cents=line.line_total_cents,
                    line_cost_cents=line.line_cost_cents,
                ))

            db.session.add(sale)
            db.session.flush()

            append_audit_event(
                company_id=self.company_id,
                event_type="sale.committed",
                entity_type="sale",
                entity_id=sale.id,
                actor=actor,
                occurred_at=now,
                note=f"Sale {sale.invoice_number} committed",
                payload={
                    "branch_id": branch_id,
                    "total_cents": sale.total_cents,
                    "payment_method": payment_method,
                    "lines": len(cart),
                },
            )

            db.session.commit()
            return sale

        with stock_locks.hold(product_ids):
            sale = run_with_retry(_op)

        logger.info(
            "Sale %s committed: company=%s branch=%s total_cents=%s",
            sale.invoice_number, self.company_id, branch_id, sale.total_cents,
        )
        return sale


def finalize_sale(
    company_id: int,
    cart: Cart,
    customer_id: int,
    branch_id: int | None,
    payment_method: str,
    credit_days: int | None = None,
    *,
    actor: str | None = None,
    now: datetime | None = None,
) -> Sale:
    return SaleFinalizer(company_id).finalize(
        cart,
        customer_id,
        branch_id,
        payment_method,
        credit_days,
        actor=actor,
        now=now,
    )

# Overview: Pytest coverage for atomic sale finalization.

from datetime import datetime

import pytest

from stockpool.errors import (
    DuplicateUnitSelection,
    IllegalStateTransition,
    InsufficientStock,
    UnknownBranch,
    UnknownCustomer,
    ValidationError,
)
from stockpool.models import AuditEvent, Branch, InvoiceSequence, Product, ProductUnit, ProductVariant, Sale
from stockpool.models.inventory import TRACK_QUANTITY, UNIT_AVAILABLE, UNIT_SOLD
from stockpool.services.cart_composer import Cart, CartComposer
from stockpool.services.customer_resolver import CustomerCandidate, resolve_or_create
from stockpool.services.sale_finalizer import (
    MAX_CREDIT_DAYS,
    STATE_COMMITTED,
    STATE_DRAFT,
    STATE_FAILED,
    SaleFinalizer,
    finalize_sale,
)
from stockpool.services.stock_model import StockModel


@pytest.fixture
def composer(stock):
    return CartComposer(stock)


class TestCommit:

    def test_serialized_units_scenario(self, db_session, company, branch, customer, composer, unit_product, units):
        """Units A, B, C available; selling A and C leaves only B."""
        composer.add_unit_line(unit_product, [units[0].id, units[2].id])

        finalizer = SaleFinalizer(company.id)
        assert finalizer.state == STATE_DRAFT
        sale = finalizer.finalize(composer.cart, customer.id, branch.id, "cash", actor="caja1")

        assert finalizer.state == STATE_COMMITTED
        assert finalizer.sale is sale
        statuses = {u.id: u.status for u in db_session.query(ProductUnit).filter_by(product_id=unit_product.id)}
        assert statuses == {units[0].id: UNIT_SOLD, units[1].id: UNIT_AVAILABLE, units[2].id: UNIT_SOLD}

        [line] = sale.lines
        assert line.quantity == 2
        assert line.unit_ids == [units[0].id, units[2].id]
        assert line.unit_labels == ["356938035643809", "356938035643811"]
        assert sale.total_cents == 2 * 80_000_000
        assert sale.total_cost_cents == 2 * 65_000_000
        assert sale.payment_method == "CASH"
        assert sale.customer_name == "Ana Pérez"
        assert sale.created_by == "caja1"

    def test_mixed_cart(self, db_session, company, branch, customer, composer, qty_product, variant_product, variants):
        composer.add_quantity_line(qty_product, 3)
        composer.add_variant_line(variant_product, variants["Rojo"].id, 2)

        sale = finalize_sale(company.id, composer.cart, customer.id, branch.id, "CARD")

        db_session.expire_all()
        assert db_session.get(Product, qty_product.id).quantity == 7
        assert db_session.get(ProductVariant, variants["Rojo"].id).stock == 1
        assert sale.total_cents == 3 * 2_500_000 + 2 * 1_500_000
        assert [line.product_name for line in sale.lines] == ["Cargador USB-C", "Forro Silicona - Rojo"]

    def test_credit_due_date_is_deterministic(self, company, branch, customer, composer, qty_product):
        composer.add_quantity_line(qty_product, 1)
        now = datetime(2026, 3, 1, 15, 30)

        sale = finalize_sale(company.id, composer.cart, customer.id, branch.id, "credit", 30, now=now)

        assert sale.credit_days == 30
        assert sale.credit_due_date == datetime(2026, 3, 31, 15, 30)
        assert sale.amount_paid_cents == 0
        assert sale.balance_cents == 2_500_000
        assert sale.created_at == now

    def test_non_credit_ignores_credit_days(self, company, branch, customer, composer, qty_product):
        composer.add_quantity_line(qty_product, 1)
        sale = finalize_sale(company.id, composer.cart, customer.id, branch.id, "CASH", 15)

        assert sale.credit_days is None
        assert sale.credit_due_date is None
        assert sale.amount_paid_cents is None

    def test_invoice_numbers_are_sequential_per_company(
        self, db_session, company, other_company, branch, customer, stock, qty_product
    ):
        numbers = []
        for _ in range(3):
            composer = CartComposer(stock)
            composer.add_quantity_line(qty_product, 1)
            numbers.append(finalize_sale(company.id, composer.cart, customer.id, branch.id, "CASH").invoice_number)
        assert numbers == ["FACT-1", "FACT-2", "FACT-3"]

        other_company.invoice_prefix = "FV"
        other_branch = Branch(company_id=other_company.id, name="Única")
        cable = Product(
            company_id=other_company.id, name="Cable", tracking_mode=TRACK_QUANTITY, quantity=5
        )
        db_session.add_all([other_branch, cable])
        db_session.commit()

        other_customer = resolve_or_create(other_company.id, CustomerCandidate(name="Carlos"))
        composer = CartComposer(StockModel(other_company.id))
        composer.add_quantity_line(cable, 1)
        sale = finalize_sale(other_company.id, composer.cart, other_customer, other_branch.id, "CASH")
        assert sale.invoice_number == "FV-1"

    def test_audit_event_written(self, db_session, company, branch, customer, composer, qty_product):
        composer.add_quantity_line(qty_product, 2)
        sale = finalize_sale(company.id, composer.cart, customer.id, branch.id, "CASH", actor="caja1")

        [event] = db_session.query(AuditEvent).filter_by(entity_type="sale", entity_id=sale.id).all()
        assert event.event_type == "sale.committed"
        assert event.actor == "caja1"
        assert event.payload["total_cents"] == 5_000_000


class TestAtomicity:

    def test_second_line_failure_rolls_back_first(
        self, db_session, company, branch, customer, composer, qty_product, unit_product, units
    ):
        composer.add_quantity_line(qty_product, 2)
        composer.add_unit_line(unit_product, [units[1].id])

        # Unit sold elsewhere after the cart was composed
        units[1].status = UNIT_SOLD
        db_session.commit()

        finalizer = SaleFinalizer(company.id)
        with pytest.raises(InsufficientStock) as exc:
            finalizer.finalize(composer.cart, customer.id, branch.id, "CASH")

        assert exc.value.product_id == unit_product.id
        assert finalizer.state == STATE_FAILED
        assert finalizer.failure is exc.value

        db_session.expire_all()
        assert db_session.get(Product, qty_product.id).quantity == 10
        assert db_session.query(Sale).count() == 0
        assert db_session.query(InvoiceSequence).count() == 0
        assert db_session.query(AuditEvent).count() == 0

    def test_revalidates_quantity_against_live_stock(self, db_session, company, branch, customer, composer, qty_product):
        composer.add_quantity_line(qty_product, 8)
        qty_product.quantity = 5
        db_session.commit()

        with pytest.raises(InsufficientStock):
            finalize_sale(company.id, composer.cart, customer.id, branch.id, "CASH")
        db_session.expire_all()
        assert db_session.get(Product, qty_product.id).quantity == 5

    def test_advisory_over_stock_fails_at_commit(self, company, branch, customer, composer, qty_product):
        composer.add_quantity_line(qty_product, 11)
        assert composer.cart.advisories

        with pytest.raises(InsufficientStock):
            finalize_sale(company.id, composer.cart, customer.id, branch.id, "CASH")

    def test_merged_variant_over_stock_fails_at_commit(
        self, db_session, company, branch, customer, composer, variant_product, variants
    ):
        composer.add_variant_line(variant_product, variants["Rojo"].id, 2)
        composer.add_variant_line(variant_product, variants["Rojo"].id, 2)

        with pytest.raises(InsufficientStock):
            finalize_sale(company.id, composer.cart, customer.id, branch.id, "CASH")
        db_session.expire_all()
        assert db_session.get(ProductVariant, variants["Rojo"].id).stock == 3


class TestPreconditions:

    def test_empty_cart(self, company, branch, customer):
        with pytest.raises(ValidationError):
            finalize_sale(company.id, Cart(), customer.id, branch.id, "CASH")

    def test_missing_branch(self, company, customer, composer, qty_product):
        composer.add_quantity_line(qty_product, 1)
        with pytest.raises(ValidationError):
            finalize_sale(company.id, composer.cart, customer.id, None, "CASH")

    def test_branch_of_other_company(self, company, other_company, customer, composer, qty_product, db_session):
        foreign = Branch(company_id=other_company.id, name="Ajena")
        db_session.add(foreign)
        db_session.commit()

        composer.add_quantity_line(qty_product, 1)
        with pytest.raises(UnknownBranch):
            finalize_sale(company.id, composer.cart, customer.id, foreign.id, "CASH")

    def test_credit_requires_days(self, company, branch, customer, composer, qty_product):
        composer.add_quantity_line(qty_product, 1)
        with pytest.raises(ValidationError):
            finalize_sale(company.id, composer.cart, customer.id, branch.id, "CREDIT")
        with pytest.raises(ValidationError):
            finalize_sale(company.id, composer.cart, customer.id, branch.id, "CREDIT", 0)

    def test_credit_days_upper_bound(self, db_session, company, branch, customer, composer, qty_product):
        composer.add_quantity_line(qty_product, 1)
        with pytest.raises(ValidationError) as exc:
            finalize_sale(company.id, composer.cart, customer.id, branch.id, "CREDIT", MAX_CREDIT_DAYS + 1)
        assert exc.value.details["credit_days"] == MAX_CREDIT_DAYS + 1

        db_session.expire_all()
        assert db_session.get(Product, qty_product.id).quantity == 10

        sale = finalize_sale(company.id, composer.cart, customer.id, branch.id, "CREDIT", MAX_CREDIT_DAYS)
        assert sale.credit_days == MAX_CREDIT_DAYS

    def test_validate_order_skips_customer(self, company, branch, composer, qty_product):
        composer.add_quantity_line(qty_product, 1)
        finalizer = SaleFinalizer(company.id)

        assert finalizer.validate_order(composer.cart, branch.id, "credit", 10) == ("CREDIT", 10)
        assert finalizer.state == STATE_DRAFT
        with pytest.raises(ValidationError):
            finalizer.validate_order(composer.cart, None, "CASH", None)

    def test_unknown_payment_method(self, company, branch, customer, composer, qty_product):
        composer.add_quantity_line(qty_product, 1)
        with pytest.raises(ValidationError) as exc:
            finalize_sale(company.id, composer.cart, customer.id, branch.id, "BITCOIN")
        assert "CASH" in exc.value.details["allowed"]

    def test_unknown_customer(self, company, branch, composer, qty_product):
        composer.add_quantity_line(qty_product, 1)
        with pytest.raises(UnknownCustomer):
            finalize_sale(company.id, composer.cart, 99999, branch.id, "CASH")

    def test_product_of_other_branch(self, db_session, company, branch, second_branch, customer, composer, qty_product):
        qty_product.branch_id = second_branch.id
        db_session.commit()

        composer.add_quantity_line(qty_product, 1)
        with pytest.raises(ValidationError):
            finalize_sale(company.id, composer.cart, customer.id, branch.id, "CASH")

    def test_unit_in_two_lines(self, company, branch, customer, composer, unit_product, units):
        composer.add_unit_line(unit_product, [units[0].id])
        cart = composer.cart
        cart.lines.append(cart.lines[0])

        with pytest.raises(DuplicateUnitSelection):
            finalize_sale(company.id, cart, customer.id, branch.id, "CASH")

    def test_finalizer_is_single_shot(self, company, branch, customer, composer, qty_product):
        composer.add_quantity_line(qty_product, 1)
        finalizer = SaleFinalizer(company.id)
        finalizer.finalize(composer.cart, customer.id, branch.id, "CASH")

        with pytest.raises(IllegalStateTransition):
            finalizer.finalize(composer.cart, customer.id, branch.id, "CASH")

    def test_failed_finalizer_cannot_retry(self, company, branch, customer):
        finalizer = SaleFinalizer(company.id)
        with pytest.raises(ValidationError):
            finalizer.finalize(Cart(), customer.id, branch.id, "CASH")
        with pytest.raises(IllegalStateTransition):
            finalizer.finalize(Cart(), customer.id, branch.id, "CASH")


class TestFrozenSale:

    def test_economics_are_immutable(self, company, branch, customer, composer, qty_product):
        composer.add_quantity_line(qty_product, 1)
        sale = finalize_sale(company.id, composer.cart, customer.id, branch.id, "CASH")

        with pytest.raises(IllegalStateTransition):
            sale.total_cents = 1

    def test_lines_are_immutable(self, db_session, company, branch, customer, composer, qty_product):
        composer.add_quantity_line(qty_product, 1)
        sale = finalize_sale(company.id, composer.cart, customer.id, branch.id, "CASH")

        sale.lines[0].quantity = 5
        with pytest.raises(IllegalStateTransition):
            db_session.flush()
        db_session.rollback()

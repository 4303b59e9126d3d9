# Overview: Pytest coverage for composing a sale draft against the stock model.

import pytest

from stockpool.errors import (
    DuplicateUnitSelection,
    InsufficientStock,
    TrackingModeMismatch,
    UnknownVariant,
    ValidationError,
)
from stockpool.models import Product, ProductUnit
from stockpool.models.inventory import TRACK_UNITS, UNIT_SOLD
from stockpool.services.cart_composer import CartComposer, cart_from_payload


@pytest.fixture
def composer(stock):
    return CartComposer(stock)


class TestQuantityLines:

    def test_add_merges_same_product(self, composer, qty_product):
        composer.add_quantity_line(qty_product, 2)
        line = composer.add_quantity_line(qty_product.id, 3)

        assert len(composer.cart) == 1
        assert line.quantity == 5
        assert composer.total() == 5 * 2_500_000
        assert composer.total_cost() == 5 * 1_200_000
        assert composer.cart.advisories == []

    def test_over_stock_is_advisory_not_error(self, composer, qty_product):
        composer.add_quantity_line(qty_product, 12)

        assert composer.cart.find(qty_product.id).quantity == 12
        [advisory] = composer.cart.advisories
        assert advisory.requested == 12
        assert advisory.available == 10

    def test_rejects_non_positive_quantity(self, composer, qty_product):
        with pytest.raises(ValidationError):
            composer.add_quantity_line(qty_product, 0)
        assert composer.cart.is_empty

    def test_wrong_tracking_mode(self, composer, unit_product):
        with pytest.raises(TrackingModeMismatch):
            composer.add_quantity_line(unit_product, 1)

    def test_inactive_product_rejected(self, db_session, composer, qty_product):
        qty_product.is_active = False
        db_session.commit()
        with pytest.raises(ValidationError):
            composer.add_quantity_line(qty_product, 1)

    def test_price_is_snapshotted_when_added(self, db_session, composer, qty_product):
        composer.add_quantity_line(qty_product, 1)
        qty_product.price_cents = 9_999_900
        db_session.commit()

        line = composer.add_quantity_line(qty_product, 1)
        assert line.unit_price_cents == 2_500_000


class TestUnitLines:

    def test_select_units(self, composer, unit_product, units):
        line = composer.add_unit_line(unit_product, [units[0].id, units[2].id])

        assert line.quantity == 2
        assert line.unit_ids == [units[0].id, units[2].id]
        assert line.unit_labels == ["356938035643809", "356938035643811"]
        assert composer.cart.reserved_unit_ids() == {units[0].id, units[2].id}

    def test_second_selection_merges_into_line(self, composer, unit_product, units):
        composer.add_unit_line(unit_product, [units[0].id])
        line = composer.add_unit_line(unit_product, [units[1].id])

        assert len(composer.cart) == 1
        assert line.quantity == 2
        assert line.unit_ids == [units[0].id, units[1].id]

    def test_unit_already_in_cart(self, composer, unit_product, units):
        composer.add_unit_line(unit_product, [units[0].id])
        before = composer.cart.to_dict()

        with pytest.raises(DuplicateUnitSelection):
            composer.add_unit_line(unit_product, [units[1].id, units[0].id])
        assert composer.cart.to_dict() == before

    def test_unit_repeated_in_one_request(self, composer, unit_product, units):
        with pytest.raises(DuplicateUnitSelection):
            composer.add_unit_line(unit_product, [units[1].id, units[1].id])
        assert composer.cart.is_empty

    def test_sold_unit_is_insufficient_stock(self, db_session, composer, unit_product, units):
        units[1].status = UNIT_SOLD
        db_session.commit()

        with pytest.raises(InsufficientStock) as exc:
            composer.add_unit_line(unit_product, [units[1].id])
        assert exc.value.product_id == unit_product.id

    def test_unit_of_other_product(self, db_session, company, composer, unit_product, units):
        other = Product(company_id=company.id, name="iPhone 12", tracking_mode=TRACK_UNITS)
        db_session.add(other)
        db_session.flush()
        stray = ProductUnit(product_id=other.id, serial_number="F17XK2")
        db_session.add(stray)
        db_session.commit()

        with pytest.raises(ValidationError):
            composer.add_unit_line(unit_product, [stray.id])

    def test_empty_selection(self, composer, unit_product):
        with pytest.raises(ValidationError):
            composer.add_unit_line(unit_product, [])


class TestVariantLines:

    def test_add_variant(self, composer, variant_product, variants):
        line = composer.add_variant_line(variant_product, variants["Rojo"].id, 2)

        assert line.product_name == "Forro Silicona - Rojo"
        assert line.variant_name == "Rojo"
        assert line.line_total_cents == 3_000_000

    def test_over_variant_stock(self, composer, variant_product, variants):
        with pytest.raises(InsufficientStock):
            composer.add_variant_line(variant_product, variants["Rojo"].id, 4)
        assert composer.cart.is_empty

    def test_sold_out_variant(self, composer, variant_product, variants):
        with pytest.raises(InsufficientStock):
            composer.add_variant_line(variant_product, variants["Azul"].id, 1)

    def test_unknown_variant(self, composer, variant_product):
        with pytest.raises(UnknownVariant):
            composer.add_variant_line(variant_product, 99999, 1)

    def test_merge_is_not_capped(self, composer, variant_product, variants):
        composer.add_variant_line(variant_product, variants["Rojo"].id, 2)
        line = composer.add_variant_line(variant_product, variants["Rojo"].id, 2)
        assert line.quantity == 4


class TestRemoveLine:

    def test_remove_line(self, composer, qty_product, variant_product, variants):
        composer.add_quantity_line(qty_product, 1)
        composer.add_variant_line(variant_product, variants["Rojo"].id, 1)

        composer.remove_line(variant_product.id, variants["Rojo"].id)
        assert [line.product_id for line in composer.cart] == [qty_product.id]

    def test_remove_missing_line(self, composer, qty_product):
        with pytest.raises(ValidationError):
            composer.remove_line(qty_product.id)

    def test_remove_drops_advisory(self, composer, qty_product):
        composer.add_quantity_line(qty_product, 20)
        composer.remove_line(qty_product.id)
        assert composer.cart.advisories == []


def test_cart_from_payload(stock, qty_product, unit_product, units, variant_product, variants):
    cart = cart_from_payload(stock, [
        {"product_id": qty_product.id},
        {"product_id": str(unit_product.id), "unit_ids": [units[0].id]},
        {"product_id": variant_product.id, "variant_id": variants["Rojo"].id, "quantity": 2},
    ])

    assert [line.quantity for line in cart] == [1, 1, 2]
    assert cart.total_cents() == 2_500_000 + 80_000_000 + 2 * 1_500_000


def test_cart_from_payload_requires_variant(stock, variant_product):
    with pytest.raises(ValidationError):
        cart_from_payload(stock, [{"product_id": variant_product.id, "quantity": 1}])


def test_cart_from_payload_rejects_non_list(stock):
    with pytest.raises(ValidationError):
        cart_from_payload(stock, {"product_id": 1})

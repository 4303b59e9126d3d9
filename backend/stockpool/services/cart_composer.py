# Overview: In-memory sale draft built against the stock model.

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from ..errors import (
    DuplicateUnitSelection,
    InsufficientStock,
    TrackingModeMismatch,
    UnknownVariant,
    ValidationError,
)
from ..models import Product
from ..models.inventory import TRACK_QUANTITY, TRACK_UNITS, TRACK_VARIANTS
from ..validation import coerce_int, int_list, optional_int
from .stock_model import StockModel

logger = logging.getLogger(__name__)


@dataclass
class CartLine:
    """
    One line of the draft.

    Price and cost are snapshotted when the line is first added so later
    product edits do not change the economics of the sale.
    """
    product_id: int
    product_name: str
    tracking_mode: str
    unit_price_cents: int
    unit_cost_cents: int
    quantity: int
    unit_ids: list[int] = field(default_factory=list)
    unit_labels: list[str] = field(default_factory=list)
    variant_id: int | None = None
    variant_name: str | None = None

    @property
    def key(self) -> tuple[int, int | None]:
        return (self.product_id, self.variant_id)

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    @property
    def line_cost_cents(self) -> int:
        return self.unit_cost_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "tracking_mode": self.tracking_mode,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "quantity": self.quantity,
            "unit_ids": list(self.unit_ids),
            "unit_labels": list(self.unit_labels),
            "variant_id": self.variant_id,
            "variant_name": self.variant_name,
            "line_total_cents": self.line_total_cents,
        }


@dataclass(frozen=True)
class StockAdvisory:
    """Non-fatal warning: the line asks for more than was last seen in stock."""
    product_id: int
    variant_id: int | None
    requested: int
    available: int

    @property
    def message(self) -> str:
        return (
            f"Requested {self.requested} of product {self.product_id} "
            f"but only {self.available} available"
        )

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "requested": self.requested,
            "available": self.available,
            "message": self.message,
        }


@dataclass
class Cart:
    lines: list[CartLine] = field(default_factory=list)
    advisories: list[StockAdvisory] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.lines)

    def __iter__(self):
        return iter(self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def find(self, product_id: int, variant_id: int | None = None) -> CartLine | None:
        for line in self.lines:
            if line.key == (product_id, variant_id):
                return line
        return None

    def reserved_unit_ids(self) -> set[int]:
        return {uid for line in self.lines for uid in line.unit_ids}

    def total_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    def total_cost_cents(self) -> int:
        return sum(line.line_cost_cents for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "lines": [line.to_dict() for line in self.lines],
            "advisories": [a.to_dict() for a in self.advisories],
            "total_cents": self.total_cents(),
            "total_cost_cents": self.total_cost_cents(),
        }


class CartComposer:
    """
    Builds a Cart from stock model reads.

    Every operation validates first and only then touches the cart, so a
    rejected call leaves the cart exactly as it was. Stock checks here are
    advisory; the finalizer re-checks everything against live stock.
    """

    def __init__(self, stock: StockModel, cart: Cart | None = None):
        self.stock = stock
        self.cart = cart if cart is not None else Cart()

    def _product(self, product: Product | int, expected_mode: str) -> Product:
        product = self.stock.resolve(product)
        if not product.is_active:
            raise ValidationError("Product is inactive", {"product_id": product.id})
        if product.tracking_mode != expected_mode:
            raise TrackingModeMismatch(
                f"Product {product.id} is tracked by {product.tracking_mode}, not {expected_mode}",
                {"product_id": product.id, "tracking_mode": product.tracking_mode},
            )
        return product

    def _put(self, line: CartLine) -> CartLine:
        for i, existing in enumerate(self.cart.lines):
            if existing.key == line.key:
                self.cart.lines[i] = line
                return line
        self.cart.lines.append(line)
        return line

    def _new_line(self, product: Product, quantity: int, *, name: str | None = None, **extra) -> CartLine:
        return CartLine(
            product_id=product.id,
            product_name=name or product.name,
            tracking_mode=product.tracking_mode,
            unit_price_cents=product.price_cents or 0,
            unit_cost_cents=product.cost_cents or 0,
            quantity=quantity,
            **extra,
        )

    def add_quantity_line(self, product: Product | int, qty: int) -> CartLine:
        product = self._product(product, TRACK_QUANTITY)
        if qty < 1:
            raise ValidationError("quantity must be >= 1", {"product_id": product.id})

        existing = self.cart.find(product.id)
        if existing is not None:
            line = replace(existing, quantity=existing.quantity + qty)
        else:
            line = self._new_line(product, qty)

        available = self.stock.available_quantity(product)
        self.cart.advisories = [a for a in self.cart.advisories if (a.product_id, a.variant_id) != line.key]
        if line.quantity > available:
            advisory = StockAdvisory(product.id, None, line.quantity, available)
            self.cart.advisories.append(advisory)
            logger.warning(advisory.message)

        return self._put(line)

    def add_unit_line(self, product: Product | int, unit_ids: list[int]) -> CartLine:
        product = self._product(product, TRACK_UNITS)
        if not unit_ids:
            raise ValidationError("Select at least one unit", {"product_id": product.id})

        requested = list(unit_ids)
        repeated = sorted({uid for uid in requested if requested.count(uid) > 1})
        if repeated:
            raise DuplicateUnitSelection("Unit selected more than once", {"unit_ids": repeated})

        in_cart = sorted(set(requested) & self.cart.reserved_unit_ids())
        if in_cart:
            raise DuplicateUnitSelection("Unit already in cart", {"unit_ids": in_cart})

        snap = self.stock.snapshot(product)
        by_id = {u.id: u for u in snap.units}

        foreign = sorted(uid for uid in requested if uid not in by_id)
        if foreign:
            raise ValidationError(
                "Unit does not belong to product",
                {"product_id": product.id, "unit_ids": foreign},
            )
        available_ids = {u.id for u in snap.available_units}
        unavailable = sorted(uid for uid in requested if uid not in available_ids)
        if unavailable:
            raise InsufficientStock(product.id, "Unit is no longer available", {"unit_ids": unavailable})

        labels = [by_id[uid].label for uid in requested]
        existing = self.cart.find(product.id)
        if existing is not None:
            line = replace(
                existing,
                quantity=existing.quantity + len(requested),
                unit_ids=existing.unit_ids + requested,
                unit_labels=existing.unit_labels + labels,
            )
        else:
            line = self._new_line(product, len(requested), unit_ids=requested, unit_labels=labels)
        return self._put(line)

    def add_variant_line(self, product: Product | int, variant_id: int, qty: int) -> CartLine:
        product = self._product(product, TRACK_VARIANTS)
        if qty < 1:
            raise ValidationError("quantity must be >= 1", {"product_id": product.id})

        snap = self.stock.snapshot(product)
        variant = snap.get(variant_id)
        if variant is None:
            raise UnknownVariant(variant_id)
        if qty > variant.stock:
            raise InsufficientStock(
                product.id,
                f"Only {variant.stock} of {variant.name} in stock",
                {"variant_id": variant.id, "requested": qty, "available": variant.stock},
            )

        # Merged totals are not capped here; the commit-time re-check decides
        existing = self.cart.find(product.id, variant.id)
        if existing is not None:
            line = replace(existing, quantity=existing.quantity + qty)
        else:
            line = self._new_line(
                product,
                qty,
                name=f"{product.name} - {variant.name}",
                variant_id=variant.id,
                variant_name=variant.name,
            )
        return self._put(line)

    def remove_line(self, product_id: int, variant_id: int | None = None) -> CartLine:
        line = self.cart.find(product_id, variant_id)
        if line is None:
            raise ValidationError(
                "Line not in cart",
                {"product_id": product_id, "variant_id": variant_id},
            )
        self.cart.lines.remove(line)
        self.cart.advisories = [a for a in self.cart.advisories if (a.product_id, a.variant_id) != line.key]
        return line

    def clear(self) -> None:
        self.cart.lines.clear()
        self.cart.advisories.clear()

    def total(self) -> int:
        return self.cart.total_cents()

    def total_cost(self) -> int:
        return self.cart.total_cost_cents()


def _quantity(item: dict) -> int:
    qty = optional_int(item, "quantity")
    return 1 if qty is None else qty


def cart_from_payload(stock: StockModel, items: list) -> Cart:
    """
    Rebuild a cart from a JSON line list:
    [{"product_id": 1, "quantity": 2}, {"product_id": 2, "unit_ids": [5, 6]},
     {"product_id": 3, "variant_id": 9, "quantity": 1}]
    """
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    composer = CartComposer(stock)
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object")
        product = stock.get_product(coerce_int("product_id", item.get("product_id")))

        if product.tracking_mode == TRACK_UNITS:
            composer.add_unit_line(product, int_list("unit_ids", item.get("unit_ids")))
        elif product.tracking_mode == TRACK_VARIANTS:
            variant_id = optional_int(item, "variant_id")
            if variant_id is None:
                raise ValidationError("variant_id required", {"product_id": product.id})
            composer.add_variant_line(product, variant_id, _quantity(item))
        else:
            composer.add_quantity_line(product, _quantity(item))
    return composer.cart

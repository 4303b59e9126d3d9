# Overview: Read view and mutation primitive for a product's stock pool.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Union

from sqlalchemy import or_

from ..extensions import db
from ..errors import InsufficientStock, TrackingModeMismatch, UnknownProduct, UnknownVariant
from ..models import Product, ProductUnit, ProductVariant
from ..models.inventory import (
    TRACK_QUANTITY,
    TRACK_UNITS,
    TRACK_VARIANTS,
    UNIT_AVAILABLE,
    UNIT_SOLD,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update
"""
Stock pool model (authoritative)

- A product's pool is exactly one of QuantityStock | SerializedStock | VariantStock,
  chosen by Product.tracking_mode and dispatched once per operation.
- Reads never mutate. apply_stock_delta() is the only mutation path and is
  called by the sale finalizer inside its locked transaction.
- Every mutation bumps Product.stock_version (optimistic version counter).
"""


@dataclass(frozen=True)
class UnitSnapshot:
    id: int
    imei: str | None
    serial_number: str | None
    status: str

    @property
    def label(self) -> str:
        return self.imei or self.serial_number or f"Unit #{self.id}"

    def matches(self, search: str) -> bool:
        needle = search.strip().lower()
        return any(
            needle in value.lower()
            for value in (self.imei, self.serial_number)
            if value
        )


@dataclass(frozen=True)
class VariantSnapshot:
    id: int
    name: str
    sku: str | None
    stock: int


@dataclass(frozen=True)
class QuantityStock:
    count: int

    @property
    def available(self) -> int:
        return self.count


@dataclass(frozen=True)
class SerializedStock:
    units: tuple[UnitSnapshot, ...]

    @property
    def available_units(self) -> tuple[UnitSnapshot, ...]:
        return tuple(u for u in self.units if u.status == UNIT_AVAILABLE)

    @property
    def available(self) -> int:
        return len(self.available_units)


@dataclass(frozen=True)
class VariantStock:
    variants: tuple[VariantSnapshot, ...]

    def get(self, variant_id: int) -> VariantSnapshot | None:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None

    @property
    def available(self) -> int:
        return sum(v.stock for v in self.variants)


StockSnapshot = Union[QuantityStock, SerializedStock, VariantStock]


@dataclass(frozen=True)
class SelectionOption:
    """One pickable entry of a UNITS or VARIANTS product."""
    kind: str  # "unit" | "variant"
    id: int
    label: str
    selectable: bool
    stock: int = 1
    imei: str | None = None
    serial_number: str | None = None
    sku: str | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "id": self.id,
            "label": self.label,
            "selectable": self.selectable,
            "stock": self.stock,
            "imei": self.imei,
            "serial_number": self.serial_number,
            "sku": self.sku,
        }


@dataclass(frozen=True)
class QuantityDelta:
    quantity: int


@dataclass(frozen=True)
class UnitStatusDelta:
    unit_ids: tuple[int, ...]
    new_status: str = UNIT_SOLD


@dataclass(frozen=True)
class VariantDelta:
    variant_id: int
    quantity: int


StockDelta = Union[QuantityDelta, UnitStatusDelta, VariantDelta]

_DELTA_MODES = {
    QuantityDelta: TRACK_QUANTITY,
    UnitStatusDelta: TRACK_UNITS,
    VariantDelta: TRACK_VARIANTS,
}


def snapshot_to_dict(snapshot: StockSnapshot) -> dict:
    if isinstance(snapshot, QuantityStock):
        return {"mode": TRACK_QUANTITY, "count": snapshot.count}
    if isinstance(snapshot, SerializedStock):
        return {
            "mode": TRACK_UNITS,
            "units": [
                {"id": u.id, "label": u.label, "imei": u.imei,
                 "serial_number": u.serial_number, "status": u.status}
                for u in snapshot.units
            ],
        }
    return {
        "mode": TRACK_VARIANTS,
        "variants": [
            {"id": v.id, "name": v.name, "sku": v.sku, "stock": v.stock}
            for v in snapshot.variants
        ],
    }


class StockModel:
    """
    Stock pool access for one company (or any company when company_id is None).

    Product arguments accept either a Product instance or a product id.
    """

    def __init__(self, company_id: int | None = None):
        self.company_id = company_id

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_product(self, product_id: int, *, lock: bool = False) -> Product:
        query = db.session.query(Product).filter_by(id=product_id)
        if lock:
            query = lock_for_update(query).populate_existing()
        product = query.first()
        if product is None:
            raise UnknownProduct(product_id)
        if self.company_id is not None and product.company_id != self.company_id:
            raise UnknownProduct(product_id)
        return product

    def resolve(self, product: Product | int) -> Product:
        if isinstance(product, Product):
            return product
        return self.get_product(product)

    # ------------------------------------------------------------------
    # Read view
    # ------------------------------------------------------------------

    def snapshot(self, product: Product | int) -> StockSnapshot:
        product = self.resolve(product)
        mode = product.tracking_mode
        if mode == TRACK_QUANTITY:
            return QuantityStock(count=product.quantity or 0)
        if mode == TRACK_UNITS:
            rows = (
                db.session.query(ProductUnit)
                .filter_by(product_id=product.id)
                .order_by(ProductUnit.id)
                .populate_existing()
                .all()
            )
            return SerializedStock(units=tuple(
                UnitSnapshot(id=u.id, imei=u.imei, serial_number=u.serial_number, status=u.status)
                for u in rows
            ))
        rows = (
            db.session.query(ProductVariant)
            .filter_by(product_id=product.id)
            .order_by(ProductVariant.id)
            .populate_existing()
            .all()
        )
        return VariantStock(variants=tuple(
            VariantSnapshot(id=v.id, name=v.name, sku=v.sku, stock=v.stock)
            for v in rows
        ))

    def available_quantity(self, product: Product | int) -> int:
        return self.snapshot(product).available

    def list_selectable(self, product: Product | int, search: str | None = None) -> list[SelectionOption]:
        """
        UNITS: available units, optionally filtered by IMEI/serial substring.
        VARIANTS: in-stock variants first, then out-of-stock ones flagged
        selectable=False (display only). QUANTITY: nothing to pick.
        """
        snap = self.snapshot(product)

        if isinstance(snap, SerializedStock):
            units = snap.available_units
            if search and search.strip():
                units = tuple(u for u in units if u.matches(search))
            return [
                SelectionOption(
                    kind="unit",
                    id=u.id,
                    label=u.label,
                    selectable=True,
                    imei=u.imei,
                    serial_number=u.serial_number,
                )
                for u in units
            ]

        if isinstance(snap, VariantStock):
            in_stock = [v for v in snap.variants if v.stock > 0]
            sold_out = [v for v in snap.variants if v.stock <= 0]
            return [
                SelectionOption(kind="variant", id=v.id, label=v.name, selectable=True, stock=v.stock, sku=v.sku)
                for v in in_stock
            ] + [
                SelectionOption(kind="variant", id=v.id, label=v.name, selectable=False, stock=0, sku=v.sku)
                for v in sold_out
            ]

        return []

    def list_sellable_products(self, branch_ids: Iterable[int] | None = None) -> list[Product]:
        """
        Active products with stock left. With branch_ids, only products of
        those branches plus company-wide products are returned.
        """
        query = db.session.query(Product).filter(Product.is_active.is_(True))
        if self.company_id is not None:
            query = query.filter(Product.company_id == self.company_id)
        if branch_ids is not None:
            ids = list(branch_ids)
            query = query.filter(
                or_(Product.branch_id.in_(ids), Product.branch_id.is_(None))
            )
        products = query.order_by(Product.name.asc(), Product.id.asc()).all()
        return [p for p in products if self.available_quantity(p) > 0]

    # ------------------------------------------------------------------
    # Mutation (finalizer commit path only)
    # ------------------------------------------------------------------

    def apply_stock_delta(self, product: Product | int, delta: StockDelta, *, now: datetime | None = None) -> None:
        """
        Apply one typed delta to the pool. Raises InsufficientStock instead of
        letting any count go negative or a unit leave a non-AVAILABLE state.

        Does not commit; the caller owns the transaction.
        """
        product = self.resolve(product)
        expected_mode = _DELTA_MODES.get(type(delta))
        if expected_mode != product.tracking_mode:
            raise TrackingModeMismatch(
                f"{type(delta).__name__} does not apply to {product.tracking_mode} product",
                {"product_id": product.id},
            )

        if isinstance(delta, QuantityDelta):
            current = product.quantity or 0
            if current < delta.quantity:
                raise InsufficientStock(product.id, details={"requested": delta.quantity, "available": current})
            product.quantity = current - delta.quantity

        elif isinstance(delta, UnitStatusDelta):
            units = (
                db.session.query(ProductUnit)
                .filter(ProductUnit.product_id == product.id, ProductUnit.id.in_(delta.unit_ids))
                .populate_existing()
                .all()
            )
            found = {u.id: u for u in units}
            unavailable = sorted(
                uid for uid in delta.unit_ids
                if uid not in found or found[uid].status != UNIT_AVAILABLE
            )
            if unavailable:
                raise InsufficientStock(product.id, details={"unit_ids": unavailable})
            for unit in units:
                unit.status = delta.new_status

        else:
            variant = (
                db.session.query(ProductVariant)
                .filter_by(id=delta.variant_id, product_id=product.id)
                .populate_existing()
                .first()
            )
            if variant is None:
                raise UnknownVariant(delta.variant_id)
            if variant.stock < delta.quantity:
                raise InsufficientStock(
                    product.id,
                    details={"variant_id": variant.id, "requested": delta.quantity, "available": variant.stock},
                )
            variant.stock = variant.stock - delta.quantity

        # Touching the header row bumps stock_version for every kind of delta
        product.stock_updated_at = now or utcnow()

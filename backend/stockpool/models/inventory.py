from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..errors import IllegalStateTransition, ValidationError
from ..time_utils import to_utc_z


TRACK_QUANTITY = "QUANTITY"
TRACK_UNITS = "UNITS"
TRACK_VARIANTS = "VARIANTS"
TRACKING_MODES = (TRACK_QUANTITY, TRACK_UNITS, TRACK_VARIANTS)

UNIT_AVAILABLE = "AVAILABLE"
UNIT_SOLD = "SOLD"
UNIT_IN_REPAIR = "IN_REPAIR"
UNIT_STATUSES = (UNIT_AVAILABLE, UNIT_SOLD, UNIT_IN_REPAIR)


class Product(db.Model):
    """
    Product master data plus its stock pool header.

    TRACKING MODE:
    Every product tracks stock in exactly one way, fixed at creation:
    - QUANTITY: plain count stored in Product.quantity
    - UNITS: individually serialized ProductUnit rows (IMEI / serial)
    - VARIANTS: named ProductVariant rows, each with its own stock

    CONCURRENCY:
    stock_version is the optimistic version counter of the whole pool. Every
    stock mutation (including unit and variant rows) bumps it, so two writers
    that validated the same pool cannot both commit.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_company_name", "company_id", "name"),
        db.Index("ix_products_company_branch", "company_id", "branch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    # NULL means the product is stocked company-wide
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(128), nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)

    tracking_mode = db.Column(db.String(16), nullable=False, default=TRACK_QUANTITY)

    # Only meaningful for QUANTITY products
    quantity = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    stock_version = db.Column(db.Integer, nullable=False, default=1)
    stock_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("products", lazy=True))
    branch = db.relationship("Branch", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": stock_version}

    @validates("tracking_mode")
    def _validate_tracking_mode(self, key, value):
        if value not in TRACKING_MODES:
            raise ValidationError(f"Unknown tracking mode {value!r}")
        current = self.tracking_mode
        if current is not None and current != value:
            raise IllegalStateTransition(
                "Tracking mode cannot change",
                {"product_id": self.id, "from": current, "to": value},
            )
        return value

    @validates("quantity")
    def _validate_quantity(self, key, value):
        if value is not None and value < 0:
            raise ValidationError("quantity must be >= 0", {"product_id": self.id})
        return value

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} mode={self.tracking_mode}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "branch_id": self.branch_id,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "tracking_mode": self.tracking_mode,
            "is_active": self.is_active,
            "stock_version": self.stock_version,
            "stock_updated_at": to_utc_z(self.stock_updated_at),
        }


class ProductUnit(db.Model):
    """
    One serialized physical item (phone, device) of a UNITS product.

    Lifecycle: AVAILABLE -> SOLD on sale commit. AVAILABLE -> IN_REPAIR
    happens in the repair workflow. Neither terminal state returns here.
    """
    __tablename__ = "product_units"
    __table_args__ = (
        db.Index("ix_product_units_product_status", "product_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    imei = db.Column(db.String(32), nullable=True, index=True)
    serial_number = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=UNIT_AVAILABLE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship(
        "Product",
        backref=db.backref("units", lazy=True, order_by="ProductUnit.id"),
    )

    @validates("status")
    def _validate_status(self, key, value):
        if value not in UNIT_STATUSES:
            raise ValidationError(f"Unknown unit status {value!r}")
        return value

    @property
    def label(self) -> str:
        return self.imei or self.serial_number or f"Unit #{self.id}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "imei": self.imei,
            "serial_number": self.serial_number,
            "status": self.status,
            "label": self.label,
        }


class ProductVariant(db.Model):
    """Named sub-SKU (e.g. a color) of a VARIANTS product with its own stock."""
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_product_variants_stock_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship(
        "Product",
        backref=db.backref("variants", lazy=True, order_by="ProductVariant.id"),
    )

    @validates("stock")
    def _validate_stock(self, key, value):
        if value is not None and value < 0:
            raise ValidationError("variant stock must be >= 0", {"variant_id": self.id})
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "stock": self.stock,
        }

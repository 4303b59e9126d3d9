# Overview: Engine error taxonomy shared by services and routes.

from __future__ import annotations


class EngineError(Exception):
    """
    Base class for every error raised by the stock/sales engine.

    Each error is scoped to one operation. Routes translate it to a JSON body
    of {"error": message, "details": {...}} with http_status.
    """
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": type(self).__name__,
            "details": self.details,
        }


class ValidationError(EngineError, ValueError):
    """400-level input problem (empty cart, missing branch, missing credit days)."""


class TrackingModeMismatch(ValidationError):
    """Operation does not apply to the product's tracking mode."""


class MissingIdentification(ValidationError):
    """Explicit customer creation without identification type and number."""


class InsufficientStock(EngineError):
    """Requested slice of a stock pool is not available."""
    http_status = 409

    def __init__(self, product_id: int, message: str | None = None, details: dict | None = None):
        merged = {"product_id": product_id}
        merged.update(details or {})
        super().__init__(message or f"Insufficient stock for product {product_id}", merged)
        self.product_id = product_id


class DuplicateUnitSelection(EngineError):
    """A serialized unit is already reserved by another line of the cart."""
    http_status = 409


class IllegalStateTransition(EngineError):
    """Lifecycle violation (cancelling twice, re-using a finalizer, mutating frozen fields)."""
    http_status = 409


class UnknownReference(EngineError, LookupError):
    """Dangling id reference."""
    http_status = 404
    entity = "record"

    def __init__(self, entity_id, message: str | None = None):
        super().__init__(
            message or f"{self.entity.capitalize()} {entity_id} not found",
            {f"{self.entity}_id": entity_id},
        )
        self.entity_id = entity_id


class UnknownProduct(UnknownReference):
    entity = "product"


class UnknownVariant(UnknownReference):
    entity = "variant"


class UnknownCustomer(UnknownReference):
    entity = "customer"


class UnknownSale(UnknownReference):
    entity = "sale"


class UnknownBranch(UnknownReference):
    entity = "branch"

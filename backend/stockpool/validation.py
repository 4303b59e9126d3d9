from __future__ import annotations

from typing import Any

from .errors import ValidationError


def coerce_int(key: str, value: Any) -> int:
    """
    Strict integer coercion for JSON/query input.

    Rejects bools, floats, decimals and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def require_int(data: dict, key: str, *, minimum: int | None = None) -> int:
    if data.get(key) is None:
        raise ValidationError(f"{key} required")
    value = coerce_int(key, data[key])
    if minimum is not None and value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return value


def optional_int(data: dict, key: str, *, minimum: int | None = None) -> int | None:
    if data.get(key) in (None, ""):
        return None
    return require_int(data, key, minimum=minimum)


def optional_str(data: dict, key: str, *, max_length: int | None = None) -> str | None:
    raw = data.get(key)
    if raw is None:
        return None
    value = str(raw).strip()
    if max_length and len(value) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return value or None


def int_list(key: str, value: Any) -> list[int]:
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list of integers")
    return [coerce_int(key, v) for v in value]

# Overview: Customer identity resolution (find-or-create) and explicit creation.

from __future__ import annotations

import re
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..errors import MissingIdentification, UnknownCustomer, ValidationError
from ..models import Customer
from ..validation import optional_str
from .concurrency import customer_locks, run_with_retry
"""
Customer resolution rules (authoritative)

Match tiers, in priority order, within one company:
1. exact name, case-insensitive
2. phone, whitespace ignored (only when the candidate has one)
3. identification number, case- and whitespace-insensitive (only when given)

Dedup is best-effort. There is no uniqueness constraint on the lookup keys;
find-then-create is serialized per (company, normalized name) inside this
process only, so separate processes can still race and create two records.
"""

_PHONE_PLACEHOLDERS = {"n/a", "na", "-"}
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class CustomerCandidate:
    name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    identification_type: str | None = None
    identification_number: str | None = None

    @classmethod
    def from_payload(cls, data: dict) -> "CustomerCandidate":
        return cls(
            name=optional_str(data, "name", max_length=255) or "",
            email=optional_str(data, "email", max_length=255),
            phone=optional_str(data, "phone", max_length=32),
            address=optional_str(data, "address", max_length=255),
            identification_type=optional_str(data, "identification_type", max_length=32),
            identification_number=optional_str(data, "identification_number", max_length=64),
        )


def normalize_name(name: str | None) -> str:
    return (name or "").strip().lower()


def normalize_phone(phone: str | None) -> str | None:
    if not phone:
        return None
    key = "".join(phone.split())
    if not key or key.lower() in _PHONE_PLACEHOLDERS:
        return None
    return key


def normalize_id_number(number: str | None) -> str | None:
    if not number:
        return None
    return "".join(number.split()).lower() or None


def placeholder_email(name: str, domain: str) -> str:
    """'Ana María Pérez' -> 'ana.maría.pérez@<domain>'"""
    local = _WHITESPACE.sub(".", name.strip().lower())
    return f"{local}@{domain}"


def get_customer(customer_id: int, company_id: int | None = None) -> Customer:
    customer = db.session.query(Customer).filter_by(id=customer_id).first()
    if customer is None:
        raise UnknownCustomer(customer_id)
    if company_id is not None and customer.company_id != company_id:
        raise UnknownCustomer(customer_id)
    return customer


def find_match(company_id: int, candidate: CustomerCandidate) -> Customer | None:
    base = db.session.query(Customer).filter(Customer.company_id == company_id)

    name_key = normalize_name(candidate.name)
    if name_key:
        match = base.filter(Customer.name_key == name_key).order_by(Customer.id.asc()).first()
        if match:
            return match

    phone_key = normalize_phone(candidate.phone)
    if phone_key:
        match = base.filter(Customer.phone_key == phone_key).order_by(Customer.id.asc()).first()
        if match:
            return match

    id_key = normalize_id_number(candidate.identification_number)
    if id_key:
        match = base.filter(Customer.id_number_key == id_key).order_by(Customer.id.asc()).first()
        if match:
            return match

    return None


def _require_name(candidate: CustomerCandidate) -> str:
    name = (candidate.name or "").strip()
    if not name:
        raise ValidationError("Customer name required")
    return name


def _build_customer(company_id: int, candidate: CustomerCandidate) -> Customer:
    name = _require_name(candidate)
    email = candidate.email or placeholder_email(name, current_app.config["CUSTOMER_EMAIL_DOMAIN"])
    customer = Customer(
        company_id=company_id,
        name=name,
        email=email,
        phone=candidate.phone,
        address=candidate.address,
        identification_type=candidate.identification_type,
        identification_number=candidate.identification_number,
        name_key=normalize_name(name),
        phone_key=normalize_phone(candidate.phone),
        id_number_key=normalize_id_number(candidate.identification_number),
    )
    db.session.add(customer)
    db.session.flush()
    return customer


def resolve_or_create(company_id: int, candidate: CustomerCandidate) -> int:
    """
    Return the id of the first customer matching the candidate, creating one
    when nothing matches. Calling twice with the same data yields the same id.
    """
    _require_name(candidate)
    # Name is always present and is the first match tier
    key = (company_id, normalize_name(candidate.name))

    def _op() -> int:
        existing = find_match(company_id, candidate)
        if existing is not None:
            return existing.id
        customer = _build_customer(company_id, candidate)
        db.session.commit()
        return customer.id

    with customer_locks.hold([key]):
        return run_with_retry(_op)


def create_explicit(company_id: int, candidate: CustomerCandidate) -> int:
    """
    Create a customer without matching, for operators who deliberately add a
    near-duplicate. Identification type and number are mandatory here.
    """
    _require_name(candidate)
    if not (candidate.identification_type or "").strip() or not (candidate.identification_number or "").strip():
        raise MissingIdentification(
            "Identification type and number are required",
            {
                "identification_type": candidate.identification_type,
                "identification_number": candidate.identification_number,
            },
        )

    def _op() -> int:
        customer = _build_customer(company_id, candidate)
        db.session.commit()
        return customer.id

    return run_with_retry(_op)


def search_customers(company_id: int, text: str | None, *, limit: int = 20) -> list[Customer]:
    """Case-insensitive substring search over name, phone, id number and email."""
    query = db.session.query(Customer).filter(Customer.company_id == company_id)
    needle = (text or "").strip().lower()
    if needle:
        pattern = f"%{needle}%"
        query = query.filter(or_(
            Customer.name_key.like(pattern),
            func.lower(Customer.phone).like(pattern),
            func.lower(Customer.identification_number).like(pattern),
            func.lower(Customer.email).like(pattern),
        ))
    return query.order_by(Customer.name.asc(), Customer.id.asc()).limit(limit).all()

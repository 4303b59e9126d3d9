# Overview: Invoice number allocation; monotonic per company.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Company, InvoiceSequence


INVOICE_DOCUMENT_TYPE = "INVOICE"


def invoice_prefix_for(company: Company) -> str:
    return company.invoice_prefix or current_app.config["INVOICE_PREFIX"]


def allocate_sequence_number(*, company_id: int, document_type: str) -> int:
    """
    Allocate the next number of a company/type sequence.

    Runs inside the caller's transaction and never commits or rolls back:
    the number is only consumed if the caller's transaction commits.
    The UPDATE takes the row lock on (company_id, document_type).
    """
    stmt = (
        update(InvoiceSequence)
        .where(
            InvoiceSequence.company_id == company_id,
            InvoiceSequence.document_type == document_type,
        )
        .values(next_number=InvoiceSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        seq = InvoiceSequence(company_id=company_id, document_type=document_type, next_number=2)
        try:
            # Savepoint keeps the caller's transaction usable if the insert loses
            with db.session.begin_nested():
                db.session.add(seq)
            return 1
        except IntegrityError:
            # Another transaction created the row first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(InvoiceSequence.next_number)
        .filter_by(company_id=company_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_invoice_number(company: Company) -> str:
    """Format: {prefix}-{sequence}."""
    number = allocate_sequence_number(company_id=company.id, document_type=INVOICE_DOCUMENT_TYPE)
    return f"{invoice_prefix_for(company)}-{number}"

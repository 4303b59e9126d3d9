from __future__ import annotations

from typing import Iterable

from flask import current_app

from ..extensions import db
from ..errors import UnknownBranch
from ..models import Branch


def get_branch(branch_id: int, company_id: int | None = None) -> Branch:
    branch = db.session.query(Branch).filter_by(id=branch_id).first()
    if branch is None:
        raise UnknownBranch(branch_id)
    if company_id is not None and branch.company_id != company_id:
        raise UnknownBranch(branch_id)
    return branch


def list_branches(
    company_id: int,
    role: str | None = None,
    assigned_branch_ids: Iterable[int] | None = None,
    legacy_branch_id: int | None = None,
) -> list[Branch]:
    """
    Active branches of the company.

    Advisors only see their assigned branches, or their single legacy
    branch when they have no assignments. An advisor with neither sees
    every branch.
    """
    branches = (
        db.session.query(Branch)
        .filter(Branch.company_id == company_id, Branch.is_active.is_(True))
        .order_by(Branch.name.asc(), Branch.id.asc())
        .all()
    )

    if role and role == current_app.config["ADVISOR_ROLE"]:
        assigned = set(assigned_branch_ids or [])
        if assigned:
            branches = [b for b in branches if b.id in assigned]
        elif legacy_branch_id:
            branches = [b for b in branches if b.id == legacy_branch_id]

    return branches


def create_branch(company_id: int, name: str, address: str | None = None) -> Branch:
    branch = Branch(company_id=company_id, name=name.strip(), address=address)
    db.session.add(branch)
    db.session.commit()
    return branch

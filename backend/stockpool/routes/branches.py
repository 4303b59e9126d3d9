# Overview: Flask API route for the branch directory.

# backend/stockpool/routes/branches.py
from flask import Blueprint, current_app, jsonify, request

from ..errors import EngineError
from ..services import branch_service
from ..validation import coerce_int


branches_bp = Blueprint("branches", __name__, url_prefix="/api/branches")


@branches_bp.get("")
def list_branches_route():
    """
    Query params:
    - company_id: int (required)
    - role: str (optional) - advisors only see their assigned branches
    - assigned: comma-separated branch ids (optional)
    - legacy_branch_id: int (optional) - used when assigned is empty
    """
    company_id = request.args.get("company_id", type=int)
    if not company_id:
        return jsonify({"error": "company_id required"}), 400

    try:
        raw = request.args.get("assigned", "")
        assigned = [coerce_int("assigned", part) for part in raw.split(",") if part.strip()]
        branches = branch_service.list_branches(
            company_id,
            role=request.args.get("role"),
            assigned_branch_ids=assigned,
            legacy_branch_id=request.args.get("legacy_branch_id", type=int),
        )
        return jsonify({"items": [b.to_dict() for b in branches]}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list branches")
        return jsonify({"error": "Internal server error"}), 500

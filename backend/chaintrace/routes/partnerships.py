# Overview: Flask API routes for partnership operations; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import ChainTraceError
from ..extensions import db
from ..services import partnership_service
from ..validation import json_body


partnerships_bp = Blueprint("partnerships", __name__, url_prefix="/api/partnerships")


@partnerships_bp.post("/request")
@require_auth
def request_partnership_route():
    """Request body: { "receiverId": int }"""
    try:
        data = json_body(request.get_json(silent=True))
        partnership = partnership_service.request_partnership(g.current_user, data.get("receiverId"))
        return jsonify(partnership.to_dict()), 201
    except ChainTraceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to request partnership")
        return jsonify({"error": "Internal server error"}), 500


@partnerships_bp.post("/<int:partnership_id>/accept")
@require_auth
def respond_partnership_route(partnership_id: int):
    """Request body: { "status": "accepted" | "rejected" }"""
    try:
        data = json_body(request.get_json(silent=True))
        partnership = partnership_service.respond_to_partnership(
            g.current_user, partnership_id, data.get("status")
        )
        return jsonify(partnership.to_dict()), 200
    except ChainTraceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to respond to partnership %s", partnership_id)
        return jsonify({"error": "Internal server error"}), 500


@partnerships_bp.get("/list")
@require_auth
def list_partnerships_route():
    partnerships = partnership_service.list_partnerships(g.current_user)
    return jsonify([p.to_dict() for p in partnerships]), 200


@partnerships_bp.get("/requests")
@require_auth
def pending_requests_route():
    requests = partnership_service.pending_requests(g.current_user)
    return jsonify([p.to_dict() for p in requests]), 200

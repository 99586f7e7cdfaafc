# Overview: Flask API routes for QR access requests; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import ChainTraceError
from ..extensions import db
from ..services import qr_access_service
from ..validation import json_body


qr_access_bp = Blueprint("qr_access", __name__, url_prefix="/api/qr-access")


@qr_access_bp.post("/request")
@require_auth
@require_role("retailer")
def request_qr_access_route():
    """Request body: { "batchId": int (chain batch id), "manufacturerId": int }"""
    try:
        data = json_body(request.get_json(silent=True))
        access_request = qr_access_service.request_qr_access(
            g.current_user, data.get("batchId"), data.get("manufacturerId")
        )
        return jsonify(access_request.to_dict()), 201
    except ChainTraceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create QR access request")
        return jsonify({"error": "Internal server error"}), 500


@qr_access_bp.post("/<int:request_id>/grant")
@require_auth
@require_role("manufacturer")
def grant_qr_access_route(request_id: int):
    """Request body: { "status": "approved" | "rejected" }"""
    try:
        data = json_body(request.get_json(silent=True))
        access_request = qr_access_service.respond_to_request(
            g.current_user, request_id, data.get("status")
        )
        return jsonify(access_request.to_dict()), 200
    except ChainTraceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to respond to QR access request %s", request_id)
        return jsonify({"error": "Internal server error"}), 500


@qr_access_bp.get("/requests")
@require_auth
@require_role("manufacturer")
def list_qr_requests_route():
    try:
        requests = qr_access_service.list_requests(g.current_user)
        return jsonify([r.to_dict() for r in requests]), 200
    except ChainTraceError as e:
        return jsonify(e.to_dict()), e.status_code

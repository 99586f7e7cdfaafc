# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/chaintrace/routes/auth.py
"""
Authentication API routes

- Self-registration with role and wallet address
- Session management with opaque bearer tokens
"""

from flask import Blueprint, g, jsonify, request, current_app

from ..decorators import bearer_token, require_auth
from ..errors import ChainTraceError
from ..extensions import db
from ..services import auth_service, session_service
from ..validation import json_body


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _issue_session(user):
    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return {
        "token": token,
        "user": user.to_dict(),
        "session": session.to_dict(),
    }


@auth_bp.post("/register")
def register_route():
    """
    Register a user and open a session.

    Request body:
    {
        "name": str, "email": str, "password": str,
        "walletAddress": str, "role": "manufacturer|distributor|warehouse|retailer",
        "companyName": str (optional)
    }
    """
    try:
        data = json_body(request.get_json(silent=True))
        user = auth_service.register_user(
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            wallet_address=data.get("walletAddress"),
            role=data.get("role"),
            company_name=data.get("companyName"),
        )
        return jsonify(_issue_session(user)), 201

    except ChainTraceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    try:
        data = json_body(request.get_json(silent=True))
        user = auth_service.authenticate(data.get("email"), data.get("password"))
        response = _issue_session(user)
        response["message"] = "Login successful"
        return jsonify(response), 200

    except ChainTraceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """Revoke the presented session token."""
    try:
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authorization header required"}), 401

        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200

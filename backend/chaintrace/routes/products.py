# Overview: Flask API routes for product and batch operations; parses input and returns JSON responses.

# backend/chaintrace/routes/products.py
"""
Product and batch API routes.

Creation and transfer go through the registry first; responses are only
sent after the chain has confirmed and the off-chain record is written.

Errors map to status codes via ChainTraceError.status_code:
400 validation / chain rejection, 401, 403 role / holder / partnership,
404, 409, 500 consistency (body carries defectId), 503 registry unavailable.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import ChainTraceError
from ..extensions import db
from ..services import product_service, qr_access_service, transfer_service, visibility_service
from ..validation import json_body


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _error(e: ChainTraceError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def _unexpected(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
@require_auth
@require_role("manufacturer")
def create_products_route():
    """
    Create one or more standalone products.

    Request body:
    {
        "name": str,
        "description": str (optional),
        "manufactureDate": "YYYY-MM-DD" (optional),
        "quantity": int (optional, 1-100)
    }
    """
    try:
        data = json_body(request.get_json(silent=True))
        result = product_service.create_products(
            g.current_user,
            name=data.get("name"),
            description=data.get("description"),
            manufacture_date=data.get("manufactureDate"),
            quantity=data.get("quantity", 1),
        )
        return jsonify(result.to_dict()), 201
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected("Failed to create products")


@products_bp.get("")
@require_auth
def list_products_route():
    try:
        products = visibility_service.list_visible_products(g.current_user)
        return jsonify([p.to_dict() for p in products]), 200
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected("Failed to fetch products")


@products_bp.get("/grouped-by-sender")
@require_auth
def grouped_by_sender_route():
    try:
        return jsonify(visibility_service.group_by_sender(g.current_user)), 200
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected("Failed to fetch grouped products")


@products_bp.post("/authorize-manufacturer")
@require_auth
@require_role("manufacturer")
def authorize_manufacturer_route():
    """Authorize {address} (default: caller's wallet) as a manufacturer on chain."""
    try:
        data = json_body(request.get_json(silent=True))
        return jsonify(product_service.authorize_manufacturer(g.current_user, data.get("address"))), 200
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected("Failed to authorize manufacturer")


@products_bp.post("/batch")
@require_auth
@require_role("manufacturer")
def create_batch_route():
    """
    Create a batch (one NFT, N products) in one chain transaction.

    Request body, either:
    { "products": [{"name", "description", "manufactureDate"}, ...], "metadataURI": str (optional) }
    or a template repeated quantity times:
    { "products": [{...}], "quantity": int, "metadataURI": str (optional) }
    """
    try:
        data = json_body(request.get_json(silent=True))
        result = product_service.create_batch(
            g.current_user,
            products=data.get("products"),
            quantity=data.get("quantity"),
            metadata_uri=data.get("metadataURI"),
        )
        return jsonify(result.to_dict()), 201
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected("Failed to create batch")


@products_bp.get("/batch/list")
@require_auth
def list_batches_route():
    try:
        batches = visibility_service.list_visible_batches(g.current_user)
        return jsonify([b.to_dict() for b in batches]), 200
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected("Failed to fetch batches")


@products_bp.get("/batch/<int:batch_id>")
def get_batch_route(batch_id: int):
    """Public: on-chain batch state joined with the off-chain record."""
    try:
        return jsonify(visibility_service.get_batch_detail(batch_id)), 200
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected(f"Failed to fetch batch {batch_id}")


@products_bp.post("/batch/<int:batch_id>/transfer")
@require_auth
def transfer_batch_route(batch_id: int):
    """
    Transfer every product of a batch.

    Returns:
        200: all transferred
        207: some transferred, then a failure (body says where; defectId
             when a confirmed transfer could not be mirrored)
        400: none transferred
        403: caller does not hold every product, partnership missing or signer mismatch
    """
    try:
        data = json_body(request.get_json(silent=True))
        result = transfer_service.transfer_batch(
            g.current_user,
            batch_id,
            to_address=data.get("toAddress"),
            location=data.get("location"),
        )
        return jsonify(result.to_dict()), result.http_status
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected(f"Batch {batch_id} transfer failed")


@products_bp.post("/<int:product_id>/transfer")
@require_auth
def transfer_product_route(product_id: int):
    """
    Transfer product_id and up to quantity-1 following consecutive ids.

    Request body: { "toAddress": str, "location": str (optional), "quantity": int (optional, 1-50) }
    """
    try:
        data = json_body(request.get_json(silent=True))
        result = transfer_service.transfer_products(
            g.current_user,
            product_id,
            to_address=data.get("toAddress"),
            location=data.get("location"),
            quantity=data.get("quantity", 1),
        )
        return jsonify(result.to_dict()), 200
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected(f"Transfer of product {product_id} failed")


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    """Public: on-chain state, transfer history, off-chain record and batch."""
    try:
        return jsonify(visibility_service.get_product_detail(product_id)), 200
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected(f"Failed to fetch product {product_id}")


@products_bp.get("/<product_ref>/qrcode")
@require_auth
def product_qrcode_route(product_ref: str):
    """QR code by chain id or unique product id (manufacturer or granted users)."""
    try:
        product = qr_access_service.get_product_qr_code(g.current_user, product_ref)
        return jsonify({"qrCodeUrl": product.qr_code_url}), 200
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected(f"Failed to fetch QR code for {product_ref}")


@products_bp.post("/<int:product_id>/zk-proof")
@require_auth
def generate_zk_proof_route(product_id: int):
    try:
        data = json_body(request.get_json(silent=True))
        return jsonify(product_service.generate_zk_proof(product_id, secret=data.get("secret"))), 200
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected(f"Failed to generate proof for product {product_id}")


@products_bp.post("/<int:product_id>/zk-verify")
def verify_zk_proof_route(product_id: int):
    """Request body: { "proof": {a, b, c, publicSignals}, "batchId": int }"""
    try:
        data = json_body(request.get_json(silent=True))
        result = product_service.verify_zk_proof(product_id, data.get("batchId"), data.get("proof"))
        return jsonify(result), 200
    except ChainTraceError as e:
        return _error(e)
    except Exception:
        return _unexpected(f"Failed to verify proof for product {product_id}")

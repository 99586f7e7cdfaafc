# Overview: QR payload and batch-membership proof issuance for registry products.

"""
QR codes and placeholder membership proofs.

The proof payload has the shape a Groth16 verifier expects
({a, b, c, publicSignals}) but carries no cryptographic guarantee: the
curve points are zeros and only the public signals are derived from the
product. Replace generate_batch_membership_proof with a real prover when
compiled circuits are available.
"""
from __future__ import annotations

import base64
import io
import secrets

import qrcode
from flask import current_app
from web3 import Web3

from ..errors import ValidationError


def verify_url(blockchain_id: int) -> str:
    """Public verify page for a product, keyed by its chain id."""
    base = (current_app.config.get("FRONTEND_URL") or "http://localhost:5173").rstrip("/")
    return f"{base}/verify/{blockchain_id}"


def qr_data_url(data: str) -> str:
    """Render data as a PNG QR code and return it as a base64 data URL."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def product_qr_code(blockchain_id: int) -> str:
    return qr_data_url(verify_url(blockchain_id))


def keccak_text(value: str) -> str:
    return Web3.keccak(text=value).to_0x_hex()


def derive_secret(product_id: int, batch_id: int) -> str:
    """Fresh per-product secret. Never reused across products."""
    nonce = secrets.token_hex(16)
    return keccak_text(f"secret-{product_id}-{batch_id}-{nonce}")


def generate_batch_membership_proof(product_id: int, batch_id: int, secret: str) -> dict:
    """
    Placeholder proof that product_id belongs to batch_id.

    Returns {"proof", "publicSignals", "productHash"}; publicSignals is
    [str(batch_id), productHash].
    """
    secret_hash = keccak_text(f"{product_id}-{batch_id}-{secret}")
    product_hash = keccak_text(f"{product_id}-{secret_hash}")
    public_signals = [str(batch_id), product_hash]

    proof = {
        "a": ["0", "0"],
        "b": [["0", "0"], ["0", "0"]],
        "c": ["0", "0"],
        "publicSignals": public_signals,
    }
    return {
        "proof": proof,
        "publicSignals": public_signals,
        "productHash": product_hash,
    }


def validate_proof_shape(proof) -> dict:
    """Check {a[2], b[2][2], c[2], publicSignals[]} before it goes to the chain."""
    if not isinstance(proof, dict):
        raise ValidationError("proof must be an object")

    def _pair(value, field):
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise ValidationError(f"proof.{field} must have two elements")
        return value

    _pair(proof.get("a"), "a")
    _pair(proof.get("c"), "c")
    for row in _pair(proof.get("b"), "b"):
        _pair(row, "b[]")

    signals = proof.get("publicSignals")
    if not isinstance(signals, (list, tuple)) or not signals:
        raise ValidationError("proof.publicSignals is required")

    return proof

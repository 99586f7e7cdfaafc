# Overview: Retailer requests for batch QR visibility, and QR code reads.

from sqlalchemy.exc import IntegrityError

from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Batch, Product, QRAccessRequest, User
from ..models.network import QR_ACCESS_APPROVED, QR_ACCESS_PENDING, QR_ACCESS_REJECTED
from chaintrace.time_utils import utcnow


def _as_int(value, field: str) -> int:
    if value in (None, ""):
        raise ValidationError(f"{field} is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def request_qr_access(user: User, batch_id, manufacturer_id) -> QRAccessRequest:
    """
    Retailer asks a manufacturer for QR visibility on one batch.

    batch_id is the chain batch id, as exposed in batch payloads.
    """
    if user.role != "retailer":
        raise AuthorizationError("Only retailers can request QR access")

    batch_id = _as_int(batch_id, "batchId")
    manufacturer_id = _as_int(manufacturer_id, "manufacturerId")

    manufacturer = db.session.get(User, manufacturer_id)
    if not manufacturer or manufacturer.role != "manufacturer":
        raise NotFoundError("Manufacturer not found")

    batch = db.session.query(Batch).filter_by(batch_id=batch_id, manufacturer_id=manufacturer.id).first()
    if not batch:
        raise NotFoundError("Batch not found")

    existing = db.session.query(QRAccessRequest).filter_by(
        batch_id=batch.id,
        retailer_id=user.id,
        manufacturer_id=manufacturer.id,
    ).first()
    if existing:
        raise ConflictError("Request already exists")

    access_request = QRAccessRequest(
        batch_id=batch.id,
        retailer_id=user.id,
        manufacturer_id=manufacturer.id,
        status=QR_ACCESS_PENDING,
    )
    db.session.add(access_request)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Request already exists")
    return access_request


def respond_to_request(user: User, request_id: int, status: str) -> QRAccessRequest:
    """
    Approve or reject a pending request addressed to this manufacturer.

    Approval grants the retailer QR visibility on every product of the batch,
    in the same transaction as the status change.
    """
    if status not in (QR_ACCESS_APPROVED, QR_ACCESS_REJECTED):
        raise ValidationError("Status must be approved or rejected")
    if user.role != "manufacturer":
        raise AuthorizationError("Only manufacturers can grant access")

    access_request = db.session.get(QRAccessRequest, request_id)
    if not access_request:
        raise NotFoundError("Request not found")
    if access_request.manufacturer_id != user.id:
        raise AuthorizationError("Not your request")
    if access_request.status != QR_ACCESS_PENDING:
        raise ValidationError("Already responded")

    access_request.status = status
    access_request.responded_at = utcnow()

    if status == QR_ACCESS_APPROVED:
        retailer = access_request.retailer
        products = db.session.query(Product).filter_by(
            batch_id=access_request.batch_id,
            manufacturer_id=user.id,
        ).all()
        for product in products:
            if retailer not in product.qr_access_granted_to:
                product.qr_access_granted_to.append(retailer)
            product.qr_visible = True

    db.session.commit()
    return access_request


def list_requests(user: User) -> list[QRAccessRequest]:
    """All requests addressed to a manufacturer, newest first."""
    if user.role != "manufacturer":
        raise AuthorizationError("Forbidden")
    return (
        db.session.query(QRAccessRequest)
        .filter_by(manufacturer_id=user.id)
        .order_by(QRAccessRequest.created_at.desc(), QRAccessRequest.id.desc())
        .all()
    )


def find_product(product_ref: str) -> Product | None:
    """Resolve a product by chain id, falling back to its unique product id."""
    product = None
    if str(product_ref).isdigit():
        product = db.session.query(Product).filter_by(blockchain_id=int(product_ref)).first()
    if product is None:
        product = db.session.query(Product).filter_by(unique_product_id=str(product_ref)).first()
    return product


def can_view_qr(user: User, product: Product) -> bool:
    if product.manufacturer_id == user.id:
        return True
    return product.qr_visible and user in product.qr_access_granted_to


def get_product_qr_code(user: User, product_ref: str) -> Product:
    product = find_product(product_ref)
    if not product:
        raise NotFoundError("Not found")
    if not can_view_qr(user, product):
        raise AuthorizationError("QR codes are only visible to the manufacturer")
    return product

# Overview: Read paths that join off-chain records with on-chain ownership.

"""
Visibility rules

- A manufacturer sees the products it made, whatever the chain says, and
  keeps seeing them when the chain cannot be queried (fail open).
- Any other role sees a product only while the chain reports its wallet as
  current holder; a failed chain lookup hides the product (fail closed).
- A non-manufacturer sees a batch only when it holds every member.
"""
from __future__ import annotations

import logging
from typing import Optional

from ..errors import ChainRejectionError, ChainUnavailableError, NotFoundError
from ..extensions import db
from ..models import Batch, Product, User
from .chain_registry import ChainRegistry, get_chain_registry

logger = logging.getLogger(__name__)

CANDIDATE_LIMIT = 500


def _registry_or_none() -> Optional[ChainRegistry]:
    try:
        return get_chain_registry()
    except ChainUnavailableError as exc:
        logger.warning("Registry unavailable for read filter: %s", exc)
        return None


def _holds(registry: ChainRegistry, product: Product, user: User) -> bool:
    """True iff the chain reports user's wallet as holder. Lookup errors propagate."""
    return registry.get_product(product.blockchain_id).is_held_by(user.wallet_address)


def _is_visible(registry: Optional[ChainRegistry], product: Product, user: User) -> bool:
    is_manufacturer = user.role == "manufacturer" and product.manufacturer_id == user.id
    if is_manufacturer:
        return True
    if registry is None:
        return False
    try:
        return _holds(registry, product, user)
    except (ChainRejectionError, ChainUnavailableError) as exc:
        logger.info("Holder lookup failed for product %s: %s", product.blockchain_id, exc)
        return False


def list_visible_products(user: User) -> list[Product]:
    query = db.session.query(Product)
    if user.role == "manufacturer":
        query = query.filter(Product.manufacturer_id == user.id)

    candidates = (
        query.order_by(Product.created_at.desc(), Product.id.desc())
        .limit(CANDIDATE_LIMIT)
        .all()
    )

    registry = _registry_or_none()
    return [p for p in candidates if _is_visible(registry, p, user)]


def group_by_sender(user: User) -> dict:
    """
    Visible products keyed by the id of whoever sent them (the manufacturer
    for products that were never transferred).
    """
    grouped: dict[str, dict] = {}
    for product in list_visible_products(user):
        origin = product.sender or product.manufacturer
        key = str(origin.id) if origin else "unknown"
        if key not in grouped:
            grouped[key] = {
                "sender": origin.to_summary() if origin else None,
                "products": [],
            }
        grouped[key]["products"].append(product.to_dict())
    return grouped


def list_visible_batches(user: User) -> list[Batch]:
    if user.role == "manufacturer":
        return (
            db.session.query(Batch)
            .filter_by(manufacturer_id=user.id)
            .order_by(Batch.created_at.desc(), Batch.id.desc())
            .all()
        )

    registry = _registry_or_none()
    if registry is None:
        return []

    visible = []
    batches = db.session.query(Batch).order_by(Batch.created_at.desc(), Batch.id.desc()).all()
    for batch in batches:
        if not batch.products:
            continue
        try:
            holds_all = all(_holds(registry, p, user) for p in batch.products)
        except (ChainRejectionError, ChainUnavailableError) as exc:
            logger.info("Holder lookup failed for batch %s: %s", batch.batch_id, exc)
            holds_all = False
        if holds_all:
            visible.append(batch)
    return visible


def get_product_detail(product_id: int) -> dict:
    """Public view: chain state and history, mirror record, batch info."""
    registry = get_chain_registry()
    try:
        state = registry.get_product(product_id)
        history = registry.get_transfer_history(product_id)
    except ChainRejectionError as exc:
        raise NotFoundError("Not found") from exc

    batch_info = None
    if state.batch_id:
        try:
            batch_info = registry.get_batch(state.batch_id).to_dict(batch_id=state.batch_id)
        except (ChainRejectionError, ChainUnavailableError) as exc:
            logger.warning("Error fetching batch %s for product %s: %s", state.batch_id, product_id, exc)

    record = db.session.query(Product).filter_by(blockchain_id=product_id).first()

    onchain = state.to_dict()
    onchain["history"] = [h.to_dict() for h in history]
    return {
        "onchain": onchain,
        "db": record.to_dict() if record else None,
        "batch": batch_info,
    }


def get_batch_detail(batch_id: int) -> dict:
    registry = get_chain_registry()
    try:
        state = registry.get_batch(batch_id)
    except ChainRejectionError as exc:
        raise NotFoundError("Batch not found") from exc

    record = db.session.query(Batch).filter_by(batch_id=batch_id).first()
    return {
        "onchain": state.to_dict(batch_id=batch_id),
        "db": record.to_dict() if record else None,
    }

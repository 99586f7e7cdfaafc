# Overview: Product and batch creation: commit to the registry first, then mirror off-chain.

"""
Product Creation Service

ORDERING GUARANTEE: a Product or Batch row is written only after the chain
transaction that created it has confirmed. Chain ids (blockchain_id,
batch_id) are taken from the confirmed transaction, never guessed.

FAILURE MODEL:
- Chain failure before anything confirmed: surfaced as-is, nothing written.
- Chain failure at step i of a quantity create: products 1..i-1 stay
  committed; the error is reported alongside them.
- Mirror failure after a confirmed chain call: rolled back, recorded as a
  ReconciliationDefect, raised as ConsistencyError.
- Receipt timeout on a creation: the transaction is in doubt; an
  "<op>.in_doubt" defect carrying the tx hash is recorded before the
  ChainTimeoutError propagates.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..errors import (
    AuthorizationError,
    ChainRejectionError,
    ChainTimeoutError,
    ChainUnavailableError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Batch, Product, User
from ..validation import (
    MAX_CREATE_QUANTITY,
    clamp_quantity,
    parse_manufacture_date,
    require_address,
)
from chaintrace.time_utils import to_iso_date, unix_millis, unix_timestamp, utcnow
from .chain_registry import get_chain_registry
from .counter_service import NFT_TOKEN_COUNTER, next_batch_number, next_counter
from .proof_service import (
    derive_secret,
    generate_batch_membership_proof,
    product_qr_code,
    validate_proof_shape,
)
from .reconciliation_service import mirror_failure, record_in_doubt

logger = logging.getLogger(__name__)


@dataclass
class CreationResult:
    products: list[Product] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "message": f"Successfully created {len(self.products)} product(s)",
            "products": [p.to_dict() for p in self.products],
            "count": len(self.products),
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class BatchCreationResult:
    batch: Batch
    products: list[Product]
    tx_hash: str
    nft_token_id: int
    manufacturer_batch_number: int

    def to_dict(self) -> dict:
        return {
            "batch": self.batch.to_dict(include_products=False),
            "products": [p.to_dict() for p in self.products],
            "txHash": self.tx_hash,
            "nftTokenId": self.nft_token_id,
            "manufacturerBatchNumber": self.manufacturer_batch_number,
        }


def _require_manufacturer(user: User) -> None:
    if user.role != "manufacturer":
        raise AuthorizationError("Forbidden")


def standalone_unique_product_id(manufacturer_id: int) -> str:
    """
    MFR_{manufacturerId}_{unixTimestamp}_{NNN}

    NNN is one more than the manufacturer's current count of standalone
    products. It is not reserved atomically, so two concurrent creations
    in the same second can produce the same label. blockchain_id remains
    the unique key.
    """
    count = db.session.query(Product).filter(
        Product.manufacturer_id == manufacturer_id,
        Product.batch_id.is_(None),
    ).count()
    return f"MFR_{manufacturer_id}_{unix_timestamp()}_{count + 1:03d}"


def batch_unique_product_id(manufacturer_id: int, batch_number: int, position: int) -> str:
    return f"MFR_{manufacturer_id}_BATCH{batch_number}_PROD{position}"


def create_products(
    user: User,
    name: str,
    description: str | None = None,
    manufacture_date=None,
    quantity=1,
) -> CreationResult:
    """
    Create quantity products, one chain transaction each.

    Names get a " #i" suffix when more than one is created. Each product is
    committed as soon as its own transaction confirms.
    """
    _require_manufacturer(user)
    if not name or not str(name).strip():
        raise ValidationError("name is required")

    qty = clamp_quantity(quantity, MAX_CREATE_QUANTITY)
    made_at = parse_manufacture_date(manufacture_date)
    date_iso = to_iso_date(made_at)

    registry = get_chain_registry()
    registry.ensure_signer_authorized()

    logger.info("Creating %d product(s) for manufacturer %s", qty, user.id)

    result = CreationResult()
    for i in range(qty):
        product_name = f"{name} #{i + 1}" if qty > 1 else name

        try:
            blockchain_id, receipt = registry.create_product(product_name, date_iso)
        except (ChainRejectionError, ChainUnavailableError) as exc:
            if isinstance(exc, ChainTimeoutError):
                record_in_doubt(
                    exc,
                    "product.create",
                    actor_user_id=user.id,
                    payload={
                        "name": product_name,
                        "manufactureDate": date_iso,
                        "createdSoFar": [p.blockchain_id for p in result.products],
                    },
                )
            if not result.products:
                raise
            logger.warning(
                "Product creation stopped after %d of %d: %s", len(result.products), qty, exc
            )
            result.error = str(exc)
            break

        try:
            product = Product(
                blockchain_id=blockchain_id,
                unique_product_id=standalone_unique_product_id(user.id),
                name=product_name,
                description=description,
                manufacture_date=made_at,
                manufacturer_id=user.id,
                current_holder_id=user.id,
                requires_partnership=True,
                qr_code_url=product_qr_code(blockchain_id),
            )
            db.session.add(product)
            db.session.commit()
        except Exception as exc:
            raise mirror_failure(
                exc,
                "product.create",
                chain_ref=f"product:{blockchain_id} tx:{receipt.tx_hash}",
                actor_user_id=user.id,
                payload={
                    "blockchainId": blockchain_id,
                    "txHash": receipt.tx_hash,
                    "name": product_name,
                    "manufactureDate": date_iso,
                    "createdSoFar": [p.blockchain_id for p in result.products],
                },
            ) from exc

        result.products.append(product)

    return result


def _expand_batch_entries(products, quantity) -> list[dict]:
    """
    Either a template (products[0]) repeated quantity times, or the explicit list.

    Each entry becomes {name, description, manufactureDate}.
    """
    if products is not None and not isinstance(products, list):
        raise ValidationError("products must be an array")

    entries: list[dict] = []
    qty = clamp_quantity(quantity, MAX_CREATE_QUANTITY) if quantity not in (None, "") else 1

    if qty > 1 and products:
        template = products[0]
        if not isinstance(template, dict):
            raise ValidationError("products entries must be objects")
        base_name = template.get("name") or "Product"
        for i in range(qty):
            entries.append({
                "name": f"{base_name} #{i + 1}",
                "description": template.get("description") or "",
                "manufactureDate": template.get("manufactureDate"),
            })
    elif products:
        if len(products) > MAX_CREATE_QUANTITY:
            raise ValidationError(f"A batch holds at most {MAX_CREATE_QUANTITY} products")
        for entry in products:
            if not isinstance(entry, dict):
                raise ValidationError("products entries must be objects")
            entries.append({
                "name": entry.get("name") or "",
                "description": entry.get("description") or "",
                "manufactureDate": entry.get("manufactureDate"),
            })
    else:
        raise ValidationError("Products array or quantity required")

    return entries


def create_batch(user: User, products=None, quantity=None, metadata_uri: str | None = None) -> BatchCreationResult:
    """
    Mint one batch NFT and its products in a single chain transaction,
    then mirror the batch and every member in a single commit.
    """
    _require_manufacturer(user)

    entries = _expand_batch_entries(products, quantity)
    made_at = [parse_manufacture_date(e["manufactureDate"]) for e in entries]
    names = [e["name"] for e in entries]
    dates_iso = [to_iso_date(d) for d in made_at]
    uri = metadata_uri or f"ipfs://batch-{unix_millis()}"

    registry = get_chain_registry()
    registry.ensure_signer_authorized()

    # Atomicity boundary: the NFT and all products exist on chain, or none do
    try:
        batch_chain_id, product_ids, receipt = registry.create_batch(uri, names, dates_iso)
    except ChainTimeoutError as exc:
        record_in_doubt(
            exc,
            "batch.create",
            actor_user_id=user.id,
            payload={"metadataURI": uri, "names": names, "manufactureDates": dates_iso},
        )
        raise
    logger.info("Batch %s created on chain, tx %s", batch_chain_id, receipt.tx_hash)

    payload = {
        "batchId": batch_chain_id,
        "productIds": list(product_ids),
        "txHash": receipt.tx_hash,
        "metadataURI": uri,
        "names": names,
        "manufactureDates": dates_iso,
    }

    try:
        if len(product_ids) != len(entries):
            raise ValidationError(
                f"Chain returned {len(product_ids)} product ids for {len(entries)} entries"
            )

        # Each allocation commits on its own so a retried step never hands out a value twice
        nft_token_id = next_counter(NFT_TOKEN_COUNTER)
        db.session.commit()
        manufacturer_batch_number = next_batch_number(user.id)
        db.session.commit()

        batch = Batch(
            batch_id=batch_chain_id,
            manufacturer_id=user.id,
            manufacturer_batch_number=manufacturer_batch_number,
            metadata_uri=uri,
            nft_token_id=nft_token_id,
            quantity=0,
        )
        db.session.add(batch)
        db.session.flush()

        created: list[Product] = []
        for position, (blockchain_id, entry, made) in enumerate(zip(product_ids, entries, made_at), start=1):
            secret = derive_secret(blockchain_id, batch_chain_id)
            product = Product(
                blockchain_id=blockchain_id,
                unique_product_id=batch_unique_product_id(user.id, manufacturer_batch_number, position),
                name=entry["name"],
                description=entry["description"],
                manufacture_date=made,
                manufacturer_id=user.id,
                batch_id=batch.id,
                batch_blockchain_id=batch_chain_id,
                product_number_in_batch=position,
                current_holder_id=user.id,
                requires_partnership=True,
                qr_code_url=product_qr_code(blockchain_id),
                zk_proof=generate_batch_membership_proof(blockchain_id, batch_chain_id, secret),
                zk_proof_generated=True,
                zk_proof_generated_at=utcnow(),
            )
            db.session.add(product)
            created.append(product)

        batch.quantity = len(created)
        db.session.commit()
    except Exception as exc:
        raise mirror_failure(
            exc,
            "batch.create",
            chain_ref=f"batch:{batch_chain_id} tx:{receipt.tx_hash}",
            actor_user_id=user.id,
            payload=payload,
        ) from exc

    return BatchCreationResult(
        batch=batch,
        products=created,
        tx_hash=receipt.tx_hash,
        nft_token_id=nft_token_id,
        manufacturer_batch_number=manufacturer_batch_number,
    )


def generate_zk_proof(product_id: int, secret: str | None = None) -> dict:
    """
    Issue a fresh membership proof for a batch product and store it on the
    mirror record (when one exists).
    """
    registry = get_chain_registry()
    try:
        state = registry.get_product(product_id)
    except ChainRejectionError as exc:
        raise NotFoundError(f"Product {product_id} not found") from exc

    batch_id = int(state.batch_id or 0)
    if batch_id == 0:
        raise ValidationError("Product is not part of a batch. ZK proof requires batch membership.")

    secret = secret or derive_secret(product_id, batch_id)
    proof_data = generate_batch_membership_proof(product_id, batch_id, secret)

    product = db.session.query(Product).filter_by(blockchain_id=product_id).first()
    if product:
        product.zk_proof = proof_data
        product.zk_proof_generated = True
        product.zk_proof_generated_at = utcnow()
        db.session.commit()

    return {
        "productId": product_id,
        "batchId": batch_id,
        "proof": proof_data["proof"],
        "publicSignals": proof_data["publicSignals"],
        "message": "ZK proof generated successfully and saved",
    }


def verify_zk_proof(product_id: int, batch_id, proof) -> dict:
    if not proof or batch_id in (None, "", 0):
        raise ValidationError("Proof and batchId required")
    try:
        batch_id = int(batch_id)
    except (TypeError, ValueError):
        raise ValidationError("batchId must be an integer")
    validate_proof_shape(proof)

    receipt = get_chain_registry().verify_zk_proof(product_id, batch_id, proof)
    return {
        "verified": True,
        "txHash": receipt.tx_hash,
        "productId": product_id,
        "batchId": batch_id,
    }


def authorize_manufacturer(user: User, address: str | None = None) -> dict:
    """Authorize a wallet (default: the caller's) as a manufacturer on chain."""
    target = require_address(address or user.wallet_address, "address")
    receipt = get_chain_registry().set_manufacturer(target, True)
    logger.info("Authorized manufacturer %s (tx %s) at request of user %s", target, receipt.tx_hash, user.id)
    return {"txHash": receipt.tx_hash, "authorized": target}

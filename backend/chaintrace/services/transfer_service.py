# Overview: Holder-checked, partnership-gated product and batch transfers on the registry.

"""
Transfer Service

WHY: Ownership lives on chain. Every transfer re-reads the current holder
from the chain right before submitting, and the off-chain holder/sender
fields are only an advisory cache updated after confirmation.

TWO ITERATION SHAPES:
- Consecutive ids (single-product endpoint): walk start..start+k-1 and stop
  at the first id the caller does not hold or that fails on chain. Nothing
  is validated up-front beyond the first id.
- Batch: every member is validated up-front (all-or-nothing precondition),
  then transferred sequentially. A failure midway is reported as partial.

GATING: a product whose mirror record has requires_partnership set may only
go to a registered user with an accepted partnership with the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

from ..errors import (
    AuthorizationError,
    ChainRejectionError,
    ChainUnavailableError,
    ConsistencyError,
    NotFoundError,
    PartnershipRequiredError,
    TransferFailedError,
    ValidationError,
)
from ..extensions import db
from ..models import Product, User
from ..validation import MAX_TRANSFER_QUANTITY, clamp_quantity, require_address
from .auth_service import find_user_by_wallet
from .chain_registry import ChainRegistry, get_chain_registry, same_address
from .partnership_service import check_partnership_for_transfer
from .reconciliation_service import mirror_failure

logger = logging.getLogger(__name__)


OUTCOME_TRANSFERRED = "transferred"
OUTCOME_NOT_HOLDER = "not_holder"
OUTCOME_FAILED = "failed"

BATCH_COMPLETE = "complete"
BATCH_PARTIAL = "partial"
BATCH_FAILED = "failed"


@dataclass(frozen=True)
class TransferOutcome:
    status: str
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == OUTCOME_TRANSFERRED


@dataclass
class ProductTransferResult:
    to_address: str
    location: str
    transfers: list[dict] = field(default_factory=list)
    failed_product_id: Optional[int] = None
    error: Optional[str] = None
    manufacturer: Optional[dict] = None

    def to_dict(self) -> dict:
        data = {
            "message": f"Successfully transferred {len(self.transfers)} product(s)",
            "transfers": self.transfers,
            "manufacturer": self.manufacturer,
            "toAddress": self.to_address,
            "location": self.location,
        }
        if self.failed_product_id is not None:
            data["stoppedAt"] = {"productId": self.failed_product_id, "error": self.error}
        return data


@dataclass
class BatchTransferResult:
    batch_id: int
    to_address: str
    location: str
    total: int
    transfers: list[dict] = field(default_factory=list)
    failed_product_id: Optional[int] = None
    error: Optional[str] = None
    manufacturer: Optional[dict] = None
    defect_id: Optional[int] = None

    @property
    def status(self) -> str:
        if self.failed_product_id is None:
            return BATCH_COMPLETE
        return BATCH_PARTIAL if self.transfers else BATCH_FAILED

    @property
    def http_status(self) -> int:
        return {BATCH_COMPLETE: 200, BATCH_PARTIAL: 207, BATCH_FAILED: 400}[self.status]

    def to_dict(self) -> dict:
        data = {
            "status": self.status,
            "batchId": self.batch_id,
            "transfers": self.transfers,
            "manufacturer": self.manufacturer,
            "toAddress": self.to_address,
            "location": self.location,
        }
        if self.status == BATCH_COMPLETE:
            data["message"] = f"Successfully transferred entire batch ({len(self.transfers)} products)"
        elif self.status == BATCH_PARTIAL:
            data["message"] = (
                f"Partially transferred: {len(self.transfers)} of {self.total} products transferred"
            )
            data["error"] = f"Failed at product {self.failed_product_id}: {self.error}"
            data["failedProductId"] = self.failed_product_id
        else:
            data["error"] = f"Failed to transfer product {self.failed_product_id}: {self.error}"
            data["failedProductId"] = self.failed_product_id
        if self.defect_id is not None:
            data["defectId"] = self.defect_id
        return data


def manufacturer_info(address: str) -> dict:
    """Display info for an on-chain manufacturer address."""
    user = find_user_by_wallet(address)
    if not user:
        return {"address": address}
    return {"name": user.name, "companyName": user.company_name, "address": address}


def _update_mirror(
    product_id: int,
    sender: User,
    recipient: Optional[User],
    tx_hash: str,
    context: Optional[dict] = None,
) -> None:
    """
    Cache the confirmed transfer on the mirror record.

    Unregistered recipients leave the cache untouched; the chain still
    records the transfer. context is merged into the defect payload.
    """
    product = db.session.query(Product).filter_by(blockchain_id=product_id).first()
    if not product or not recipient:
        return
    try:
        product.current_holder_id = recipient.id
        product.sender_id = sender.id
        db.session.commit()
    except Exception as exc:
        raise mirror_failure(
            exc,
            "product.transfer",
            chain_ref=f"product:{product_id} tx:{tx_hash}",
            actor_user_id=sender.id,
            payload={
                "blockchainId": product_id,
                "txHash": tx_hash,
                "currentHolderId": recipient.id,
                "senderId": sender.id,
                **(context or {}),
            },
        ) from exc


def _is_gated(product_id: int) -> bool:
    requires = db.session.query(Product.requires_partnership).filter_by(blockchain_id=product_id).scalar()
    return bool(requires)


def _submit(registry: ChainRegistry, product_id: int, to_address: str, location: str) -> TransferOutcome:
    try:
        receipt = registry.transfer_product(product_id, to_address, location)
    except (ChainRejectionError, ChainUnavailableError) as exc:
        logger.warning("Transfer of product %s failed: %s", product_id, exc)
        return TransferOutcome(OUTCOME_FAILED, error=str(exc))
    return TransferOutcome(OUTCOME_TRANSFERRED, tx_hash=receipt.tx_hash)


def iter_consecutive_transfers(
    registry: ChainRegistry,
    user: User,
    start_id: int,
    count: int,
    to_address: str,
    location: str = "",
) -> Iterator[tuple[int, TransferOutcome]]:
    """
    Transfer start_id, start_id+1, ... while the caller holds each one.

    Yields (product_id, outcome) and stops after the first outcome that is
    not "transferred". Raises PartnershipRequiredError when a gated product
    is reached without an accepted partnership.
    """
    recipient = find_user_by_wallet(to_address)

    for product_id in range(start_id, start_id + count):
        try:
            state = registry.get_product(product_id)
        except (ChainRejectionError, ChainUnavailableError) as exc:
            yield product_id, TransferOutcome(OUTCOME_FAILED, error=str(exc))
            return

        if not state.is_held_by(user.wallet_address):
            yield product_id, TransferOutcome(
                OUTCOME_NOT_HOLDER,
                error=f"Product {product_id} is not held by {user.wallet_address}",
            )
            return

        if _is_gated(product_id):
            recipient = check_partnership_for_transfer(user, to_address)

        outcome = _submit(registry, product_id, to_address, location)
        if outcome.ok:
            _update_mirror(product_id, user, recipient, outcome.tx_hash)
        yield product_id, outcome
        if not outcome.ok:
            return


def transfer_products(user: User, product_id: int, to_address, location=None, quantity=1) -> ProductTransferResult:
    """
    Transfer up to quantity consecutive products starting at product_id.

    The first product must be held by the caller (AuthorizationError). If
    none is transferred the call fails with TransferFailedError; otherwise
    it succeeds and the result records where the run stopped.
    """
    to_address = require_address(to_address)
    location = location or ""
    count = clamp_quantity(quantity, MAX_TRANSFER_QUANTITY)

    registry = get_chain_registry()
    try:
        first = registry.get_product(product_id)
    except ChainRejectionError as exc:
        raise NotFoundError(f"Product {product_id} not found") from exc

    if not first.is_held_by(user.wallet_address):
        raise AuthorizationError("You are not the current holder of this product")

    result = ProductTransferResult(
        to_address=to_address,
        location=location,
        manufacturer=manufacturer_info(first.manufacturer),
    )

    signer = registry.for_wallet(user.wallet_address)
    try:
        for pid, outcome in iter_consecutive_transfers(signer, user, product_id, count, to_address, location):
            if outcome.ok:
                result.transfers.append({"productId": pid, "txHash": outcome.tx_hash})
            else:
                result.failed_product_id = pid
                result.error = outcome.error
    except PartnershipRequiredError as exc:
        # A gated product later in the run ends it like any other stop
        if not result.transfers:
            raise
        result.failed_product_id = product_id + len(result.transfers)
        result.error = str(exc)

    if not result.transfers:
        detail = f": {result.error}" if result.error else ""
        raise TransferFailedError(f"Transfer failed - no products transferred{detail}")

    logger.info(
        "User %s transferred %d product(s) starting at %s to %s",
        user.id, len(result.transfers), product_id, to_address,
    )
    return result


def transfer_batch(user: User, batch_id: int, to_address, location=None) -> BatchTransferResult:
    """
    Transfer every product of a batch.

    Preconditions (checked before the first transfer, nothing submitted
    if any fails): the batch has members, the caller holds all of them,
    the recipient passes the partnership gate for gated members, and the
    chain signer is the caller's own wallet.
    """
    to_address = require_address(to_address)
    location = location or ""

    registry = get_chain_registry()
    try:
        batch_state = registry.get_batch(batch_id)
    except ChainRejectionError as exc:
        raise NotFoundError(f"Batch {batch_id} not found") from exc

    product_ids = list(batch_state.product_ids)
    if not product_ids:
        raise ValidationError("Batch has no products")

    wallet = user.wallet_address
    for pid in product_ids:
        try:
            state = registry.get_product(pid)
        except ChainRejectionError as exc:
            raise ValidationError(f"Failed to verify product {pid}") from exc
        if not state.is_held_by(wallet):
            raise AuthorizationError(
                f"You are not the current holder of product {pid} in this batch. "
                f"Current holder: {state.current_holder.lower()}, Your wallet: {wallet}"
            )

    # Members share the manufacturer-set flag, so the gate is checked once
    recipient = find_user_by_wallet(to_address)
    if any(_is_gated(pid) for pid in product_ids):
        recipient = check_partnership_for_transfer(user, to_address)

    signer = registry.for_wallet(wallet)
    if not same_address(signer.signer_address, wallet):
        raise AuthorizationError(
            f"Signer mismatch: Backend signer ({(signer.signer_address or 'none').lower()}) "
            f"does not match your wallet ({wallet})."
        )

    result = BatchTransferResult(
        batch_id=batch_id,
        to_address=to_address,
        location=location,
        total=len(product_ids),
        manufacturer=manufacturer_info(batch_state.manufacturer),
    )

    for pid in product_ids:
        try:
            state = signer.get_product(pid)
        except (ChainRejectionError, ChainUnavailableError) as exc:
            result.failed_product_id, result.error = pid, str(exc)
            break
        if not state.is_held_by(wallet):
            result.failed_product_id = pid
            result.error = (
                f"Product {pid} is no longer owned by {wallet}. "
                f"Current holder: {state.current_holder.lower()}"
            )
            break

        outcome = _submit(signer, pid, to_address, location)
        if not outcome.ok:
            result.failed_product_id, result.error = pid, outcome.error
            break
        result.transfers.append({"productId": pid, "txHash": outcome.tx_hash})
        try:
            _update_mirror(
                pid, user, recipient, outcome.tx_hash,
                context={"batchId": batch_id, "transferredProductIds": [t["productId"] for t in result.transfers]},
            )
        except ConsistencyError as exc:
            # pid moved on chain but not in the mirror; stop and report the defect
            result.failed_product_id, result.error = pid, str(exc)
            result.defect_id = exc.defect_id
            break

    log = logger.info if result.status == BATCH_COMPLETE else logger.warning
    log(
        "Batch %s transfer by user %s: %s (%d of %d)",
        batch_id, user.id, result.status, len(result.transfers), result.total,
    )
    return result

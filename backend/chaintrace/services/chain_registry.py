# Overview: Typed client for the on-chain product/batch registry contract.

"""
Registry Client

WHY: The contract is the source of truth for current holder, transfer
history, authenticity and customer verification. Everything else in the
service talks to it through this interface so the reconciliation logic can
be exercised against an in-memory registry in tests.

CONFIRMATION RULE: every mutating call returns only after its transaction
receipt has been observed, bounded by CHAIN_TX_TIMEOUT_SECONDS. Callers may
mirror chain state off-chain only after the call returns.

ERRORS:
- ChainUnavailableError: not configured, RPC unreachable
- ChainTimeoutError: receipt not observed in time
- ChainRejectionError: reverted call/transaction (message from the chain)
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from flask import current_app
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.logs import DISCARD
from web3.middleware import ExtraDataToPOAMiddleware
from eth_account import Account

from ..errors import ChainRejectionError, ChainTimeoutError, ChainUnavailableError

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive wallet comparison; None never matches."""
    if not a or not b:
        return False
    return a.lower() == b.lower()


@dataclass(frozen=True)
class ChainReceipt:
    tx_hash: str
    block_number: Optional[int] = None
    status: int = 1


@dataclass(frozen=True)
class ProductState:
    manufacturer: str
    current_holder: str
    verified_by_customer: bool
    is_authentic: bool
    customer: str
    batch_id: int = 0

    def is_held_by(self, wallet_address: Optional[str]) -> bool:
        return same_address(self.current_holder, wallet_address)

    def to_dict(self) -> dict:
        return {
            "manufacturer": self.manufacturer,
            "currentHolder": self.current_holder,
            "verifiedByCustomer": self.verified_by_customer,
            "isAuthentic": self.is_authentic,
            "customer": self.customer,
            "batchId": self.batch_id,
        }


@dataclass(frozen=True)
class BatchState:
    manufacturer: str
    metadata_uri: str
    created_at: int
    product_ids: tuple[int, ...] = field(default_factory=tuple)
    nft_owner: str = ZERO_ADDRESS

    def to_dict(self, batch_id: int | None = None) -> dict:
        data = {
            "manufacturer": self.manufacturer,
            "metadataURI": self.metadata_uri,
            "createdAt": self.created_at,
            "productIds": list(self.product_ids),
            "nftOwner": self.nft_owner,
        }
        if batch_id is not None:
            data = {"batchId": batch_id, **data}
        return data


@dataclass(frozen=True)
class TransferRecord:
    from_address: str
    to_address: str
    location: str
    timestamp: int

    def to_dict(self) -> dict:
        return {
            "from": self.from_address,
            "to": self.to_address,
            "location": self.location,
            "timestamp": self.timestamp,
        }


class ChainRegistry(ABC):
    """Operations the reconciliation engine needs from the registry contract."""

    @property
    @abstractmethod
    def signer_address(self) -> Optional[str]:
        """Address that signs mutating transactions (None if read-only)."""

    @abstractmethod
    def create_product(self, name: str, manufacture_date_iso: str) -> tuple[int, ChainReceipt]:
        """Create one product; returns the chain-assigned sequential id."""

    @abstractmethod
    def create_batch(
        self, metadata_uri: str, names: list[str], dates_iso: list[str]
    ) -> tuple[int, list[int], ChainReceipt]:
        """Mint one batch NFT and N products in a single transaction."""

    @abstractmethod
    def get_product(self, product_id: int) -> ProductState:
        pass

    @abstractmethod
    def get_batch(self, batch_id: int) -> BatchState:
        pass

    @abstractmethod
    def transfer_product(self, product_id: int, to_address: str, location: str) -> ChainReceipt:
        """Reverts unless the signer is the current holder."""

    @abstractmethod
    def get_transfer_history(self, product_id: int) -> list[TransferRecord]:
        pass

    @abstractmethod
    def is_authorized_manufacturer(self, address: str) -> bool:
        pass

    @abstractmethod
    def set_manufacturer(self, address: str, authorized: bool) -> ChainReceipt:
        """Privileged: only the contract owner may call this."""

    @abstractmethod
    def verify_zk_proof(self, product_id: int, batch_id: int, proof: dict) -> ChainReceipt:
        pass

    def for_wallet(self, wallet_address: str) -> "ChainRegistry":
        """
        Registry whose transactions are signed by wallet_address, when the
        node allows it. The default is the backend signer; callers that need
        the two to match must compare signer_address themselves.
        """
        return self

    def ensure_signer_authorized(self) -> bool:
        """
        Authorize the signer as a manufacturer if the contract does not know it yet.

        Authorization is enforced by the contract itself, so a failure here is
        logged and left for the following write to surface with the chain's
        own message. Returns True when the signer is known to be authorized.
        """
        signer = self.signer_address
        if not signer:
            return False
        try:
            if self.is_authorized_manufacturer(signer):
                return True
            logger.info("Authorizing registry signer %s as manufacturer", signer)
            self.set_manufacturer(signer, True)
            return True
        except (ChainRejectionError, ChainUnavailableError) as exc:
            logger.warning("Signer authorization failed for %s: %s", signer, exc)
            return False

    def status(self) -> dict:
        return {"connected": True, "signerAddress": self.signer_address}


class Web3ChainRegistry(ChainRegistry):
    """
    web3.py implementation against an EVM JSON-RPC node.

    Signing: with CHAIN_PRIVATE_KEY the transaction is signed locally with
    eth_account and sent raw; without it the node's first unlocked account
    signs (local development nodes only).
    """

    def __init__(
        self,
        w3: Web3,
        contract,
        *,
        account_address: Optional[str],
        private_key: Optional[str] = None,
        tx_timeout: float = 120.0,
        is_local: bool = False,
    ):
        self.w3 = w3
        self.contract = contract
        self._account = Web3.to_checksum_address(account_address) if account_address else None
        self._private_key = private_key
        self._tx_timeout = tx_timeout
        self._is_local = is_local

    @classmethod
    def from_config(cls, config) -> Optional["Web3ChainRegistry"]:
        """Build from Flask config; None when CONTRACT_ADDRESS is missing."""
        contract_address = config.get("CONTRACT_ADDRESS")
        if not contract_address:
            logger.warning("CONTRACT_ADDRESS missing; registry client disabled")
            return None

        rpc_url = config.get("CHAIN_RPC_URL") or "http://127.0.0.1:8545"
        w3 = Web3(Web3.HTTPProvider(rpc_url))
        if config.get("CHAIN_POA"):
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        abi = load_contract_abi(config.get("CONTRACT_ABI_PATH"))
        contract = w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=abi)

        is_local = "127.0.0.1" in rpc_url or "localhost" in rpc_url.lower()
        private_key = config.get("CHAIN_PRIVATE_KEY")

        if private_key:
            account_address = Account.from_key(private_key).address
        elif is_local:
            try:
                accounts = w3.eth.accounts
            except OSError as exc:
                raise ChainUnavailableError(f"Registry node unreachable at {rpc_url}") from exc
            account_address = accounts[0] if accounts else None
        else:
            account_address = None

        if account_address is None:
            logger.warning("No signer available. Set CHAIN_PRIVATE_KEY or use a local node.")
        else:
            logger.info("Registry client initialized: contract=%s signer=%s", contract_address, account_address)

        return cls(
            w3,
            contract,
            account_address=account_address,
            private_key=private_key,
            tx_timeout=float(config.get("CHAIN_TX_TIMEOUT_SECONDS") or 120),
            is_local=is_local,
        )

    # ------------------------------------------------------------------
    # Low-level call/transact with error mapping
    # ------------------------------------------------------------------

    @property
    def signer_address(self) -> Optional[str]:
        return self._account

    def _call(self, fn):
        try:
            return fn.call()
        except ContractLogicError as exc:
            raise ChainRejectionError(_revert_message(exc)) from exc
        except OSError as exc:
            raise ChainUnavailableError(f"Registry node unreachable: {exc}") from exc
        except Web3Exception as exc:
            raise ChainRejectionError(str(exc)) from exc

    def _transact(self, fn) -> tuple[ChainReceipt, Any]:
        if not self._account:
            raise ChainUnavailableError("No signer available")
        try:
            if self._private_key:
                tx = fn.build_transaction({
                    "from": self._account,
                    "nonce": self.w3.eth.get_transaction_count(self._account),
                })
                signed = self.w3.eth.account.sign_transaction(tx, self._private_key)
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            else:
                tx_hash = fn.transact({"from": self._account})
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._tx_timeout)
        except TimeExhausted as exc:
            raise ChainTimeoutError(
                f"Transaction not confirmed within {self._tx_timeout:g}s",
                tx_hash=Web3.to_hex(tx_hash),
            ) from exc
        except ContractLogicError as exc:
            raise ChainRejectionError(_revert_message(exc)) from exc
        except OSError as exc:
            raise ChainUnavailableError(f"Registry node unreachable: {exc}") from exc
        except Web3Exception as exc:
            raise ChainRejectionError(str(exc)) from exc

        if receipt["status"] != 1:
            raise ChainRejectionError(f"Transaction {receipt['transactionHash'].to_0x_hex()} reverted")

        return ChainReceipt(
            tx_hash=receipt["transactionHash"].to_0x_hex(),
            block_number=receipt.get("blockNumber"),
            status=receipt["status"],
        ), receipt

    def _event_arg(self, receipt, event_name: str, arg_name: str) -> Optional[int]:
        """First event arg from a receipt, if the ABI declares the event."""
        if not any(item.get("type") == "event" and item.get("name") == event_name for item in self.contract.abi):
            return None
        events = getattr(self.contract.events, event_name)().process_receipt(receipt, errors=DISCARD)
        for event in events:
            if arg_name in event["args"]:
                return int(event["args"][arg_name])
        return None

    # ------------------------------------------------------------------
    # Registry operations
    # ------------------------------------------------------------------

    def create_product(self, name: str, manufacture_date_iso: str) -> tuple[int, ChainReceipt]:
        receipt, raw = self._transact(self.contract.functions.createProduct(name, manufacture_date_iso))
        product_id = self._event_arg(raw, "ProductCreated", "productId")
        if product_id is None:
            product_id = int(self._call(self.contract.functions.nextProductId())) - 1
        return product_id, receipt

    def create_batch(
        self, metadata_uri: str, names: list[str], dates_iso: list[str]
    ) -> tuple[int, list[int], ChainReceipt]:
        receipt, raw = self._transact(self.contract.functions.createBatch(metadata_uri, names, dates_iso))
        batch_id = self._event_arg(raw, "BatchCreated", "batchId")
        if batch_id is None:
            batch_id = int(self._call(self.contract.functions.nextBatchId())) - 1
        product_ids = [int(pid) for pid in self._call(self.contract.functions.getBatchProductIds(batch_id))]
        return batch_id, product_ids, receipt

    def get_product(self, product_id: int) -> ProductState:
        result = self._call(self.contract.functions.getProduct(int(product_id)))
        return ProductState(
            manufacturer=result[0],
            current_holder=result[1],
            verified_by_customer=bool(result[2]),
            is_authentic=bool(result[3]),
            customer=result[4],
            batch_id=int(result[5] or 0) if len(result) > 5 else 0,
        )

    def get_batch(self, batch_id: int) -> BatchState:
        manufacturer, metadata_uri, created_at, product_ids, nft_owner = self._call(
            self.contract.functions.getBatch(int(batch_id))
        )
        return BatchState(
            manufacturer=manufacturer,
            metadata_uri=metadata_uri,
            created_at=int(created_at),
            product_ids=tuple(int(pid) for pid in product_ids),
            nft_owner=nft_owner,
        )

    def transfer_product(self, product_id: int, to_address: str, location: str) -> ChainReceipt:
        receipt, _ = self._transact(
            self.contract.functions.transferProduct(
                int(product_id), Web3.to_checksum_address(to_address), location or ""
            )
        )
        return receipt

    def get_transfer_history(self, product_id: int) -> list[TransferRecord]:
        rows = self._call(self.contract.functions.getTransferHistory(int(product_id)))
        return [
            TransferRecord(
                from_address=row[0],
                to_address=row[1],
                location=row[2],
                timestamp=int(row[3]),
            )
            for row in rows
        ]

    def is_authorized_manufacturer(self, address: str) -> bool:
        return bool(self._call(
            self.contract.functions.authorizedManufacturer(Web3.to_checksum_address(address))
        ))

    def set_manufacturer(self, address: str, authorized: bool) -> ChainReceipt:
        receipt, _ = self._transact(
            self.contract.functions.setManufacturer(Web3.to_checksum_address(address), bool(authorized))
        )
        return receipt

    def verify_zk_proof(self, product_id: int, batch_id: int, proof: dict) -> ChainReceipt:
        zk_proof = (
            [int(v) for v in proof["a"]],
            [[int(v) for v in row] for row in proof["b"]],
            [int(v) for v in proof["c"]],
            [int(s, 0) if isinstance(s, str) else int(s) for s in proof["publicSignals"]],
        )
        receipt, _ = self._transact(
            self.contract.functions.verifyZKProof(int(product_id), int(batch_id), zk_proof)
        )
        return receipt

    def for_wallet(self, wallet_address: str) -> "ChainRegistry":
        if same_address(wallet_address, self._account):
            return self
        if not self._is_local or self._private_key:
            return self

        # Local development node: impersonate the caller's wallet
        checksum = Web3.to_checksum_address(wallet_address)
        try:
            self.w3.provider.make_request("hardhat_impersonateAccount", [checksum])
            self.w3.provider.make_request("hardhat_setBalance", [checksum, "0x1000000000000000000000"])
        except (OSError, Web3Exception) as exc:
            logger.info("Could not impersonate %s: %s", checksum, exc)
            return self

        return Web3ChainRegistry(
            self.w3,
            self.contract,
            account_address=checksum,
            tx_timeout=self._tx_timeout,
            is_local=self._is_local,
        )

    def status(self) -> dict:
        try:
            next_id = int(self._call(self.contract.functions.nextProductId()))
        except (ChainUnavailableError, ChainRejectionError) as exc:
            return {
                "connected": False,
                "contractAddress": self.contract.address,
                "signerAddress": self._account,
                "error": str(exc),
            }
        return {
            "connected": True,
            "contractAddress": self.contract.address,
            "signerAddress": self._account,
            "nextProductId": next_id,
        }


def _revert_message(exc: ContractLogicError) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message.replace("execution reverted: ", "") or "Transaction reverted"


def load_contract_abi(path: Optional[str]) -> list:
    """
    Load a contract ABI from a JSON artifact (Hardhat style {"abi": [...]}) or
    a bare ABI list. Relative paths resolve against the backend directory.
    """
    if not path:
        raise ChainUnavailableError("CONTRACT_ABI_PATH is not set")
    abi_path = Path(path)
    if not abi_path.is_absolute():
        abi_path = Path(__file__).resolve().parents[2] / abi_path
    try:
        data = json.loads(abi_path.read_text())
    except OSError as exc:
        raise ChainUnavailableError(f"Contract ABI not readable: {abi_path}") from exc
    return data["abi"] if isinstance(data, dict) else data


def get_chain_registry() -> ChainRegistry:
    """
    Registry for the current app, built lazily from config.

    Raises ChainUnavailableError when the contract is not configured.
    Tests install their own registry in app.extensions["chain_registry"].
    """
    registry = current_app.extensions.get("chain_registry")
    if registry is None:
        registry = Web3ChainRegistry.from_config(current_app.config)
        if registry is None:
            raise ChainUnavailableError("Contract not configured")
        current_app.extensions["chain_registry"] = registry
    return registry


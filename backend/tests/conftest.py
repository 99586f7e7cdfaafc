"""
Pytest fixtures for ChainTrace backend tests.

Provides the test app (in-memory SQLite), test client, an in-memory
registry installed in place of the web3 client, and user factories.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Callable, Optional

import pytest

from chaintrace import create_app
from chaintrace.errors import ChainRejectionError, ChainTimeoutError, ChainUnavailableError
from chaintrace.extensions import db
from chaintrace.models import User
from chaintrace.services import session_service
from chaintrace.services.auth_service import hash_password
from chaintrace.services.chain_registry import (
    BatchState,
    ChainReceipt,
    ChainRegistry,
    ProductState,
    TransferRecord,
    ZERO_ADDRESS,
    same_address,
)


PASSWORD = "Password123"

MANUFACTURER_WALLET = "0x" + "a1" * 20
MANUFACTURER_B_WALLET = "0x" + "a2" * 20
DISTRIBUTOR_WALLET = "0x" + "d1" * 20
WAREHOUSE_WALLET = "0x" + "e1" * 20
RETAILER_WALLET = "0x" + "c1" * 20
OUTSIDER_WALLET = "0x" + "f1" * 20


# =============================================================================
# IN-MEMORY REGISTRY
# =============================================================================


@dataclass
class ChainState:
    """Contract storage shared by every signer view of the fake registry."""
    owner: str
    products: dict = field(default_factory=dict)
    batches: dict = field(default_factory=dict)
    history: dict = field(default_factory=dict)
    authorized: set = field(default_factory=set)
    next_product_id: int = 1
    next_batch_id: int = 1
    tx_counter: itertools.count = field(default_factory=lambda: itertools.count(1))
    calls: list = field(default_factory=list)

    # Failure injection
    create_limit: Optional[int] = None
    transfer_failures: dict = field(default_factory=dict)
    unreadable: set = field(default_factory=set)
    unavailable: bool = False
    after_transfer: Optional[Callable[[int], None]] = None
    # Mint, then report a receipt timeout
    create_timeout: bool = False


class InMemoryChainRegistry(ChainRegistry):
    """
    Registry fake with the contract's rules: only authorized manufacturers
    create, only the current holder transfers, ids are sequential from 1.
    """

    def __init__(self, signer: Optional[str], state: Optional[ChainState] = None, impersonate: bool = True):
        self._signer = signer
        self.state = state or ChainState(owner=signer)
        self.impersonate = impersonate

    @property
    def signer_address(self):
        return self._signer

    def _receipt(self) -> ChainReceipt:
        return ChainReceipt(tx_hash=f"0x{next(self.state.tx_counter):064x}", block_number=1)

    def _check_available(self):
        if self.state.unavailable:
            raise ChainUnavailableError("Registry node unreachable")

    # ---- writes ----------------------------------------------------------

    def create_product(self, name, manufacture_date_iso):
        self._check_available()
        self.state.calls.append(("create_product", name))
        if not any(same_address(self._signer, a) for a in self.state.authorized):
            raise ChainRejectionError("Not authorized manufacturer")
        if self.state.create_limit is not None and self.state.next_product_id > self.state.create_limit:
            raise ChainRejectionError("create limit reached")
        product_id = self._mint(name, batch_id=0)
        receipt = self._receipt()
        if self.state.create_timeout:
            raise ChainTimeoutError("Transaction not confirmed within 60s", tx_hash=receipt.tx_hash)
        return product_id, receipt

    def _mint(self, name, batch_id):
        product_id = self.state.next_product_id
        self.state.next_product_id += 1
        self.state.products[product_id] = {
            "name": name,
            "manufacturer": self._signer,
            "holder": self._signer,
            "batch_id": batch_id,
        }
        self.state.history[product_id] = []
        return product_id

    def create_batch(self, metadata_uri, names, dates_iso):
        self._check_available()
        self.state.calls.append(("create_batch", metadata_uri, tuple(names)))
        if not any(same_address(self._signer, a) for a in self.state.authorized):
            raise ChainRejectionError("Not authorized manufacturer")
        batch_id = self.state.next_batch_id
        self.state.next_batch_id += 1
        product_ids = [self._mint(name, batch_id=batch_id) for name in names]
        self.state.batches[batch_id] = {
            "manufacturer": self._signer,
            "metadata_uri": metadata_uri,
            "product_ids": product_ids,
        }
        receipt = self._receipt()
        if self.state.create_timeout:
            raise ChainTimeoutError("Transaction not confirmed within 60s", tx_hash=receipt.tx_hash)
        return batch_id, product_ids, receipt

    def transfer_product(self, product_id, to_address, location):
        self._check_available()
        self.state.calls.append(("transfer_product", product_id, to_address))
        if product_id in self.state.transfer_failures:
            raise self.state.transfer_failures[product_id]
        product = self.state.products.get(product_id)
        if product is None:
            raise ChainRejectionError("Product does not exist")
        if not same_address(product["holder"], self._signer):
            raise ChainRejectionError("Not current holder")
        self.state.history[product_id].append(
            TransferRecord(product["holder"], to_address, location, 1_700_000_000 + product_id)
        )
        product["holder"] = to_address
        if self.state.after_transfer:
            self.state.after_transfer(product_id)
        return self._receipt()

    def set_manufacturer(self, address, authorized):
        self._check_available()
        self.state.calls.append(("set_manufacturer", address))
        if not same_address(self._signer, self.state.owner):
            raise ChainRejectionError("Ownable: caller is not the owner")
        if authorized:
            self.state.authorized.add(address.lower())
        else:
            self.state.authorized.discard(address.lower())
        return self._receipt()

    def verify_zk_proof(self, product_id, batch_id, proof):
        self._check_available()
        product = self.state.products.get(product_id)
        if product is None or product["batch_id"] != batch_id:
            raise ChainRejectionError("Invalid batch membership")
        return self._receipt()

    # ---- reads -----------------------------------------------------------

    def get_product(self, product_id):
        self._check_available()
        if product_id in self.state.unreadable:
            raise ChainUnavailableError(f"read of {product_id} timed out")
        product = self.state.products.get(product_id)
        if product is None:
            raise ChainRejectionError("Product does not exist")
        return ProductState(
            manufacturer=product["manufacturer"],
            current_holder=product["holder"],
            verified_by_customer=False,
            is_authentic=True,
            customer=ZERO_ADDRESS,
            batch_id=product["batch_id"],
        )

    def get_batch(self, batch_id):
        self._check_available()
        batch = self.state.batches.get(batch_id)
        if batch is None:
            raise ChainRejectionError("Batch does not exist")
        return BatchState(
            manufacturer=batch["manufacturer"],
            metadata_uri=batch["metadata_uri"],
            created_at=1_700_000_000,
            product_ids=tuple(batch["product_ids"]),
            nft_owner=batch["manufacturer"],
        )

    def get_transfer_history(self, product_id):
        self._check_available()
        return list(self.state.history.get(product_id, []))

    def is_authorized_manufacturer(self, address):
        self._check_available()
        return address.lower() in self.state.authorized

    def for_wallet(self, wallet_address):
        if not self.impersonate or same_address(wallet_address, self._signer):
            return self
        return InMemoryChainRegistry(wallet_address, self.state, impersonate=self.impersonate)

    # ---- helpers for tests ----------------------------------------------

    def holder_of(self, product_id) -> str:
        return self.state.products[product_id]["holder"].lower()

    def move(self, product_id, to_address):
        """Change the holder directly, as if transferred outside this service."""
        self.state.products[product_id]["holder"] = to_address

    def calls_named(self, name):
        return [c for c in self.state.calls if c[0] == name]


# =============================================================================
# APP / DATABASE
# =============================================================================


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CONTRACT_ADDRESS': None,
        'FRONTEND_URL': 'http://verify.test',
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def chain(app, db_session):
    """In-memory registry whose owner/signer is the manufacturer's wallet."""
    registry = InMemoryChainRegistry(MANUFACTURER_WALLET)
    app.extensions['chain_registry'] = registry
    yield registry
    app.extensions.pop('chain_registry', None)


@pytest.fixture(scope='session')
def password_hash():
    return hash_password(PASSWORD)


# =============================================================================
# USERS
# =============================================================================


@pytest.fixture(scope='function')
def make_user(db_session, password_hash):
    def _make(role: str, wallet: str, name: str | None = None, email: str | None = None) -> User:
        name = name or f"{role.title()} {wallet[-4:]}"
        user = User(
            name=name,
            email=email or f"{role}-{wallet[-6:]}@chaintrace.test",
            company_name=f"{name} Ltd",
            password_hash=password_hash,
            role=role,
            wallet_address=wallet.lower(),
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def manufacturer(make_user):
    return make_user("manufacturer", MANUFACTURER_WALLET, name="Acme Foods")


@pytest.fixture(scope='function')
def distributor(make_user):
    return make_user("distributor", DISTRIBUTOR_WALLET, name="Fast Freight")


@pytest.fixture(scope='function')
def warehouse(make_user):
    return make_user("warehouse", WAREHOUSE_WALLET, name="Cold Store")


@pytest.fixture(scope='function')
def retailer(make_user):
    return make_user("retailer", RETAILER_WALLET, name="Corner Shop")


def auth_headers(user: User) -> dict:
    """Open a session for user and return the Authorization header."""
    _, token = session_service.create_session(user.id)
    return {'Authorization': f'Bearer {token}'}


def accept_partnership(client, sender: User, receiver: User) -> None:
    resp = client.post(
        '/api/partnerships/request',
        json={'receiverId': receiver.id},
        headers=auth_headers(sender),
    )
    assert resp.status_code == 201, resp.json
    resp = client.post(
        f"/api/partnerships/{resp.json['id']}/accept",
        json={'status': 'accepted'},
        headers=auth_headers(receiver),
    )
    assert resp.status_code == 200, resp.json

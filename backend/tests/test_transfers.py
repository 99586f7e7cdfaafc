"""
Tests for product and batch transfers.

Rules exercised:
- the chain is authoritative for the current holder
- gated products only move to registered partners
- consecutive transfers stop at the first id the caller cannot move
- batch transfers validate every member before submitting anything
"""

import pytest

from chaintrace.errors import ChainRejectionError, ChainUnavailableError
from chaintrace.models import Product
from chaintrace.services import product_service

from conftest import OUTSIDER_WALLET, accept_partnership, auth_headers


def _standalone(manufacturer, quantity=1):
    return product_service.create_products(manufacturer, "Crate", quantity=quantity).products


def _batch(manufacturer, size=3):
    return product_service.create_batch(
        manufacturer, products=[{"name": "Pallet"}], quantity=size
    )


def _transfer(client, user, product_id, to_address, **extra):
    return client.post(
        f'/api/products/{product_id}/transfer',
        json={'toAddress': to_address, 'location': 'Dock 4', **extra},
        headers=auth_headers(user),
    )


def _transfer_batch(client, user, batch_id, to_address):
    return client.post(
        f'/api/products/batch/{batch_id}/transfer',
        json={'toAddress': to_address, 'location': 'Dock 4'},
        headers=auth_headers(user),
    )


# =============================================================================
# PARTNERSHIP GATE
# =============================================================================


class TestPartnershipGate:

    def test_no_partnership_blocks_transfer(self, client, chain, manufacturer, distributor, db_session):
        _standalone(manufacturer)

        resp = _transfer(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 403
        assert resp.json['error'] == 'Partnership required. Request partnership first.'
        assert chain.holder_of(1) == manufacturer.wallet_address
        assert chain.calls_named('transfer_product') == []

        db_session.expire_all()
        record = db_session.query(Product).filter_by(blockchain_id=1).one()
        assert record.current_holder_id == manufacturer.id
        assert record.sender_id is None

    def test_pending_partnership_is_not_enough(self, client, chain, manufacturer, distributor):
        _standalone(manufacturer)
        client.post('/api/partnerships/request', json={'receiverId': distributor.id},
                    headers=auth_headers(manufacturer))

        resp = _transfer(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 403
        assert chain.holder_of(1) == manufacturer.wallet_address

    def test_unregistered_recipient_blocked(self, client, chain, manufacturer):
        _standalone(manufacturer)

        resp = _transfer(client, manufacturer, 1, OUTSIDER_WALLET)

        assert resp.status_code == 403
        assert resp.json['error'] == 'Receiver not found in system'

    def test_accepted_partnership_allows_transfer(self, client, chain, manufacturer, distributor, db_session):
        _standalone(manufacturer)
        accept_partnership(client, manufacturer, distributor)

        resp = _transfer(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 200, resp.json
        assert [t['productId'] for t in resp.json['transfers']] == [1]
        assert resp.json['manufacturer']['name'] == 'Acme Foods'
        assert 'stoppedAt' not in resp.json
        assert chain.holder_of(1) == distributor.wallet_address

        record = db_session.query(Product).filter_by(blockchain_id=1).one()
        assert record.current_holder_id == distributor.id
        assert record.sender_id == manufacturer.id

        history = chain.get_transfer_history(1)
        assert len(history) == 1
        assert history[0].location == 'Dock 4'

    def test_partnership_works_in_either_direction(self, client, chain, manufacturer, distributor):
        _standalone(manufacturer)
        accept_partnership(client, distributor, manufacturer)

        resp = _transfer(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 200

    def test_legacy_ungated_product_to_unregistered_wallet(self, client, chain, manufacturer, db_session):
        _standalone(manufacturer)
        record = db_session.query(Product).filter_by(blockchain_id=1).one()
        record.requires_partnership = False
        db_session.commit()

        resp = _transfer(client, manufacturer, 1, OUTSIDER_WALLET)

        assert resp.status_code == 200
        assert chain.holder_of(1) == OUTSIDER_WALLET

        # Chain moved; the mirror cache has no user to point at
        db_session.expire_all()
        record = db_session.query(Product).filter_by(blockchain_id=1).one()
        assert record.current_holder_id == manufacturer.id

    def test_onward_transfer_signed_by_holder(self, client, chain, manufacturer, distributor, retailer):
        _standalone(manufacturer)
        accept_partnership(client, manufacturer, distributor)
        accept_partnership(client, distributor, retailer)
        assert _transfer(client, manufacturer, 1, distributor.wallet_address).status_code == 200

        resp = _transfer(client, distributor, 1, retailer.wallet_address)

        assert resp.status_code == 200, resp.json
        assert chain.holder_of(1) == retailer.wallet_address
        history = chain.get_transfer_history(1)
        assert [h.from_address.lower() for h in history] == [
            manufacturer.wallet_address,
            distributor.wallet_address,
        ]


# =============================================================================
# CONSECUTIVE TRANSFERS
# =============================================================================


class TestConsecutiveTransfer:

    @pytest.fixture(autouse=True)
    def _partners(self, client, chain, manufacturer, distributor):
        accept_partnership(client, manufacturer, distributor)

    def test_quantity_moves_consecutive_ids(self, client, chain, manufacturer, distributor):
        _standalone(manufacturer, quantity=4)

        resp = _transfer(client, manufacturer, 2, distributor.wallet_address, quantity=3)

        assert resp.status_code == 200
        assert [t['productId'] for t in resp.json['transfers']] == [2, 3, 4]
        assert chain.holder_of(1) == manufacturer.wallet_address

    def test_stops_at_first_product_not_held(self, client, chain, manufacturer, distributor):
        _standalone(manufacturer, quantity=4)
        chain.move(3, OUTSIDER_WALLET)

        resp = _transfer(client, manufacturer, 1, distributor.wallet_address, quantity=4)

        assert resp.status_code == 200
        assert [t['productId'] for t in resp.json['transfers']] == [1, 2]
        assert resp.json['stoppedAt']['productId'] == 3
        # Nothing after the stop is attempted, even though product 4 is held
        assert chain.holder_of(4) == manufacturer.wallet_address
        assert [c[1] for c in chain.calls_named('transfer_product')] == [1, 2]

    def test_stops_past_last_product(self, client, chain, manufacturer, distributor):
        _standalone(manufacturer, quantity=2)

        resp = _transfer(client, manufacturer, 1, distributor.wallet_address, quantity=5)

        assert resp.status_code == 200
        assert len(resp.json['transfers']) == 2
        assert resp.json['stoppedAt'] == {'productId': 3, 'error': 'Product does not exist'}

    def test_tail_chain_failure_reported(self, client, chain, manufacturer, distributor):
        _standalone(manufacturer, quantity=3)
        chain.state.transfer_failures[2] = ChainRejectionError("Paused")

        resp = _transfer(client, manufacturer, 1, distributor.wallet_address, quantity=3)

        assert resp.status_code == 200
        assert [t['productId'] for t in resp.json['transfers']] == [1]
        assert resp.json['stoppedAt'] == {'productId': 2, 'error': 'Paused'}

    def test_first_chain_failure_is_an_error(self, client, chain, manufacturer, distributor):
        _standalone(manufacturer)
        chain.state.transfer_failures[1] = ChainRejectionError("Paused")

        resp = _transfer(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 400
        assert resp.json['error'] == 'Transfer failed - no products transferred: Paused'

    def test_first_product_not_held(self, client, chain, manufacturer, distributor):
        _standalone(manufacturer)
        chain.move(1, OUTSIDER_WALLET)

        resp = _transfer(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 403
        assert resp.json['error'] == 'You are not the current holder of this product'

    def test_unknown_product(self, client, chain, manufacturer, distributor):
        resp = _transfer(client, manufacturer, 77, distributor.wallet_address)
        assert resp.status_code == 404

    @pytest.mark.parametrize('address', [None, '', 'not-an-address', '0x1234'])
    def test_invalid_to_address(self, client, chain, manufacturer, address):
        _standalone(manufacturer)
        resp = client.post('/api/products/1/transfer', json={'toAddress': address},
                           headers=auth_headers(manufacturer))
        assert resp.status_code == 400
        assert chain.calls_named('transfer_product') == []


# =============================================================================
# BATCH TRANSFERS
# =============================================================================


class TestBatchTransfer:

    def test_complete_transfer(self, client, chain, manufacturer, distributor, db_session):
        _batch(manufacturer, size=3)
        accept_partnership(client, manufacturer, distributor)

        resp = _transfer_batch(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 200, resp.json
        assert resp.json['status'] == 'complete'
        assert [t['productId'] for t in resp.json['transfers']] == [1, 2, 3]
        assert all(chain.holder_of(pid) == distributor.wallet_address for pid in (1, 2, 3))
        holders = {p.current_holder_id for p in db_session.query(Product).all()}
        assert holders == {distributor.id}

    def test_member_not_held_aborts_before_any_transfer(self, client, chain, manufacturer, distributor):
        _batch(manufacturer, size=3)
        accept_partnership(client, manufacturer, distributor)
        chain.move(3, OUTSIDER_WALLET)

        resp = _transfer_batch(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 403
        assert 'product 3' in resp.json['error']
        assert chain.calls_named('transfer_product') == []
        assert chain.holder_of(1) == manufacturer.wallet_address

    def test_partnership_required(self, client, chain, manufacturer, distributor):
        _batch(manufacturer, size=2)

        resp = _transfer_batch(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 403
        assert chain.calls_named('transfer_product') == []

    def test_signer_mismatch(self, client, chain, manufacturer, distributor, retailer):
        _batch(manufacturer, size=2)
        accept_partnership(client, distributor, retailer)
        for pid in (1, 2):
            chain.move(pid, distributor.wallet_address)
        chain.impersonate = False

        resp = _transfer_batch(client, distributor, 1, retailer.wallet_address)

        assert resp.status_code == 403
        assert resp.json['error'].startswith('Signer mismatch')
        assert chain.calls_named('transfer_product') == []

    def test_holder_changes_midway_is_partial(self, client, chain, manufacturer, distributor):
        _batch(manufacturer, size=3)
        accept_partnership(client, manufacturer, distributor)

        def steal_next(product_id):
            if product_id == 1:
                chain.move(2, OUTSIDER_WALLET)

        chain.state.after_transfer = steal_next

        resp = _transfer_batch(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 207
        assert resp.json['status'] == 'partial'
        assert resp.json['failedProductId'] == 2
        assert [t['productId'] for t in resp.json['transfers']] == [1]
        assert resp.json['message'] == 'Partially transferred: 1 of 3 products transferred'
        assert chain.holder_of(3) == manufacturer.wallet_address

    def test_chain_failure_midway_is_partial(self, client, chain, manufacturer, distributor):
        _batch(manufacturer, size=3)
        accept_partnership(client, manufacturer, distributor)
        chain.state.transfer_failures[3] = ChainRejectionError("Paused")

        resp = _transfer_batch(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 207
        assert resp.json['error'] == 'Failed at product 3: Paused'

    def test_second_transfer_fails_third_not_attempted(self, client, chain, manufacturer, distributor, db_session):
        _batch(manufacturer, size=3)
        accept_partnership(client, manufacturer, distributor)
        chain.state.transfer_failures[2] = ChainRejectionError("Paused")

        resp = _transfer_batch(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 207
        assert resp.json['status'] == 'partial'
        assert resp.json['failedProductId'] == 2
        assert [t['productId'] for t in resp.json['transfers']] == [1]
        assert [c[1] for c in chain.calls_named('transfer_product')] == [1, 2]
        assert chain.holder_of(1) == distributor.wallet_address
        assert chain.holder_of(2) == manufacturer.wallet_address
        assert chain.holder_of(3) == manufacturer.wallet_address

        db_session.expire_all()
        holders = {p.blockchain_id: p.current_holder_id for p in db_session.query(Product).all()}
        assert holders == {1: distributor.id, 2: manufacturer.id, 3: manufacturer.id}

    def test_failure_on_first_member_is_failed(self, client, chain, manufacturer, distributor):
        _batch(manufacturer, size=2)
        accept_partnership(client, manufacturer, distributor)
        chain.state.transfer_failures[1] = ChainUnavailableError("node down")

        resp = _transfer_batch(client, manufacturer, 1, distributor.wallet_address)

        assert resp.status_code == 400
        assert resp.json['status'] == 'failed'
        assert resp.json['failedProductId'] == 1
        assert resp.json['transfers'] == []

    def test_unknown_batch(self, client, chain, manufacturer, distributor):
        resp = _transfer_batch(client, manufacturer, 5, distributor.wallet_address)
        assert resp.status_code == 404

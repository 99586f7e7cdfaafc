"""
Tests for partnership requests and retailer QR access.
"""

import pytest

from chaintrace.models import Partnership, Product
from chaintrace.services import product_service

from conftest import MANUFACTURER_B_WALLET, auth_headers


def _request(client, sender, receiver_id):
    return client.post('/api/partnerships/request', json={'receiverId': receiver_id},
                       headers=auth_headers(sender))


def _respond(client, user, partnership_id, status):
    return client.post(f'/api/partnerships/{partnership_id}/accept', json={'status': status},
                       headers=auth_headers(user))


# =============================================================================
# PARTNERSHIPS
# =============================================================================


class TestPartnershipRequests:

    def test_request_creates_pending(self, client, manufacturer, distributor):
        resp = _request(client, manufacturer, distributor.id)

        assert resp.status_code == 201
        assert resp.json['status'] == 'pending'
        assert resp.json['sender']['id'] == manufacturer.id
        assert resp.json['receiver']['id'] == distributor.id

    def test_duplicate_in_either_direction(self, client, manufacturer, distributor, db_session):
        assert _request(client, manufacturer, distributor.id).status_code == 201

        same = _request(client, manufacturer, distributor.id)
        reverse = _request(client, distributor, manufacturer.id)

        assert same.status_code == 409
        assert reverse.status_code == 409
        assert db_session.query(Partnership).count() == 1

    def test_cannot_partner_with_self(self, client, manufacturer):
        resp = _request(client, manufacturer, manufacturer.id)
        assert resp.status_code == 400

    def test_unknown_receiver(self, client, manufacturer):
        assert _request(client, manufacturer, 9999).status_code == 404

    @pytest.mark.parametrize('receiver_id', [None, '', 'abc'])
    def test_receiver_id_validation(self, client, manufacturer, receiver_id):
        assert _request(client, manufacturer, receiver_id).status_code == 400


class TestPartnershipResponses:

    @pytest.fixture
    def pending(self, client, manufacturer, distributor):
        return _request(client, manufacturer, distributor.id).json

    def test_receiver_accepts(self, client, distributor, pending):
        resp = _respond(client, distributor, pending['id'], 'accepted')

        assert resp.status_code == 200
        assert resp.json['status'] == 'accepted'
        assert resp.json['respondedAt'] is not None

    def test_sender_cannot_respond(self, client, manufacturer, pending):
        resp = _respond(client, manufacturer, pending['id'], 'accepted')
        assert resp.status_code == 403

    def test_respond_only_once(self, client, distributor, pending):
        assert _respond(client, distributor, pending['id'], 'rejected').status_code == 200

        again = _respond(client, distributor, pending['id'], 'accepted')

        assert again.status_code == 400
        assert again.json['error'] == 'Already responded'

    def test_invalid_status(self, client, distributor, pending):
        assert _respond(client, distributor, pending['id'], 'maybe').status_code == 400

    def test_unknown_partnership(self, client, distributor, pending):
        assert _respond(client, distributor, pending['id'] + 100, 'accepted').status_code == 404

    def test_lists(self, client, manufacturer, distributor, retailer, pending):
        _request(client, retailer, distributor.id)

        incoming = client.get('/api/partnerships/requests', headers=auth_headers(distributor))
        outgoing = client.get('/api/partnerships/requests', headers=auth_headers(manufacturer))
        all_for_distributor = client.get('/api/partnerships/list', headers=auth_headers(distributor))

        assert len(incoming.json) == 2
        assert outgoing.json == []
        assert len(all_for_distributor.json) == 2

        _respond(client, distributor, pending['id'], 'accepted')
        incoming = client.get('/api/partnerships/requests', headers=auth_headers(distributor))
        assert [p['sender']['id'] for p in incoming.json] == [retailer.id]


# =============================================================================
# QR ACCESS
# =============================================================================


class TestQrAccess:

    @pytest.fixture
    def batch(self, chain, manufacturer):
        return product_service.create_batch(manufacturer, products=[{"name": "A"}, {"name": "B"}])

    def _ask(self, client, retailer, manufacturer, batch_id=1):
        return client.post('/api/qr-access/request',
                           json={'batchId': batch_id, 'manufacturerId': manufacturer.id},
                           headers=auth_headers(retailer))

    def test_retailer_cannot_see_qr_before_grant(self, client, retailer, batch):
        resp = client.get('/api/products/1/qrcode', headers=auth_headers(retailer))
        assert resp.status_code == 403

    def test_manufacturer_sees_own_qr(self, client, manufacturer, batch):
        by_chain_id = client.get('/api/products/2/qrcode', headers=auth_headers(manufacturer))
        by_unique_id = client.get(f'/api/products/MFR_{manufacturer.id}_BATCH1_PROD2/qrcode',
                                  headers=auth_headers(manufacturer))

        assert by_chain_id.status_code == 200
        assert by_chain_id.json['qrCodeUrl'].startswith('data:image/png;base64,')
        assert by_unique_id.json == by_chain_id.json

    def test_grant_flow(self, client, manufacturer, retailer, batch, db_session):
        requested = self._ask(client, retailer, manufacturer)
        assert requested.status_code == 201
        assert requested.json['status'] == 'pending'

        listed = client.get('/api/qr-access/requests', headers=auth_headers(manufacturer))
        assert [r['id'] for r in listed.json] == [requested.json['id']]

        granted = client.post(f"/api/qr-access/{requested.json['id']}/grant", json={'status': 'approved'},
                              headers=auth_headers(manufacturer))
        assert granted.status_code == 200
        assert granted.json['status'] == 'approved'

        for product in db_session.query(Product).all():
            assert retailer in product.qr_access_granted_to

        resp = client.get('/api/products/1/qrcode', headers=auth_headers(retailer))
        assert resp.status_code == 200

    def test_rejection_grants_nothing(self, client, manufacturer, retailer, batch):
        requested = self._ask(client, retailer, manufacturer)
        client.post(f"/api/qr-access/{requested.json['id']}/grant", json={'status': 'rejected'},
                    headers=auth_headers(manufacturer))

        assert client.get('/api/products/1/qrcode', headers=auth_headers(retailer)).status_code == 403

    def test_duplicate_request(self, client, manufacturer, retailer, batch):
        assert self._ask(client, retailer, manufacturer).status_code == 201
        assert self._ask(client, retailer, manufacturer).status_code == 409

    def test_only_retailers_request(self, client, manufacturer, distributor, batch):
        resp = self._ask(client, distributor, manufacturer)
        assert resp.status_code == 403

    def test_unknown_batch(self, client, manufacturer, retailer, batch):
        assert self._ask(client, retailer, manufacturer, batch_id=9).status_code == 404

    def test_other_manufacturer_cannot_grant(self, client, manufacturer, retailer, make_user, batch):
        other = make_user('manufacturer', MANUFACTURER_B_WALLET)
        requested = self._ask(client, retailer, manufacturer)

        resp = client.post(f"/api/qr-access/{requested.json['id']}/grant", json={'status': 'approved'},
                           headers=auth_headers(other))

        assert resp.status_code == 403
        assert resp.json['error'] == 'Not your request'

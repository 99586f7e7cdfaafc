"""
Tests for read paths: who sees which products and batches.

A manufacturer always sees what it made (fail open when the chain cannot
be read). Everyone else sees a product only while the chain names them as
holder (fail closed).
"""

from chaintrace.models import Product
from chaintrace.services import product_service

from conftest import MANUFACTURER_B_WALLET, accept_partnership, auth_headers


def _ids(resp):
    return sorted(p['blockchainId'] for p in resp.json)


# =============================================================================
# PRODUCT LISTING
# =============================================================================


class TestProductListing:

    def test_manufacturer_sees_only_own_products(self, client, chain, manufacturer, make_user):
        other = make_user('manufacturer', MANUFACTURER_B_WALLET)
        product_service.create_products(manufacturer, "Mine", quantity=2)
        product_service.create_products(other, "Theirs")

        resp = client.get('/api/products', headers=auth_headers(manufacturer))

        assert resp.status_code == 200
        assert _ids(resp) == [1, 2]

    def test_manufacturer_keeps_seeing_transferred_products(self, client, chain, manufacturer, retailer):
        product_service.create_products(manufacturer, "Jar")
        chain.move(1, retailer.wallet_address)

        resp = client.get('/api/products', headers=auth_headers(manufacturer))

        assert _ids(resp) == [1]

    def test_holder_sees_product(self, client, chain, manufacturer, retailer):
        product_service.create_products(manufacturer, "Jar", quantity=2)
        chain.move(2, retailer.wallet_address)

        resp = client.get('/api/products', headers=auth_headers(retailer))

        assert _ids(resp) == [2]

    def test_read_failure_fails_open_for_manufacturer(self, client, chain, manufacturer):
        product_service.create_products(manufacturer, "Jar")
        chain.state.unreadable.add(1)

        resp = client.get('/api/products', headers=auth_headers(manufacturer))

        assert _ids(resp) == [1]

    def test_read_failure_fails_closed_for_retailer(self, client, chain, manufacturer, retailer):
        product_service.create_products(manufacturer, "Jar", quantity=2)
        chain.move(1, retailer.wallet_address)
        chain.move(2, retailer.wallet_address)
        chain.state.unreadable.add(1)

        resp = client.get('/api/products', headers=auth_headers(retailer))

        assert _ids(resp) == [2]

    def test_chain_not_configured(self, client, app, chain, manufacturer, retailer):
        product_service.create_products(manufacturer, "Jar")
        chain.move(1, retailer.wallet_address)
        app.extensions.pop('chain_registry')

        as_manufacturer = client.get('/api/products', headers=auth_headers(manufacturer))
        as_retailer = client.get('/api/products', headers=auth_headers(retailer))

        assert _ids(as_manufacturer) == [1]
        assert as_retailer.json == []

    def test_grouped_by_sender(self, client, chain, manufacturer, distributor, retailer):
        product_service.create_products(manufacturer, "Jar", quantity=3)
        accept_partnership(client, manufacturer, distributor)
        accept_partnership(client, distributor, retailer)
        client.post('/api/products/1/transfer', json={'toAddress': distributor.wallet_address, 'quantity': 2},
                    headers=auth_headers(manufacturer))
        client.post('/api/products/1/transfer', json={'toAddress': retailer.wallet_address},
                    headers=auth_headers(distributor))

        as_distributor = client.get('/api/products/grouped-by-sender', headers=auth_headers(distributor))
        as_retailer = client.get('/api/products/grouped-by-sender', headers=auth_headers(retailer))

        assert as_distributor.status_code == 200
        assert list(as_distributor.json) == [str(manufacturer.id)]
        assert [p['blockchainId'] for p in as_distributor.json[str(manufacturer.id)]['products']] == [2]

        group = as_retailer.json[str(distributor.id)]
        assert group['sender']['name'] == 'Fast Freight'
        assert [p['blockchainId'] for p in group['products']] == [1]


# =============================================================================
# BATCH LISTING
# =============================================================================


class TestBatchListing:

    def test_manufacturer_lists_own_batches(self, client, chain, manufacturer):
        product_service.create_batch(manufacturer, products=[{"name": "A"}, {"name": "B"}])

        resp = client.get('/api/products/batch/list', headers=auth_headers(manufacturer))

        assert resp.status_code == 200
        assert [b['batchId'] for b in resp.json] == [1]
        assert len(resp.json[0]['products']) == 2

    def test_retailer_needs_every_member(self, client, chain, manufacturer, retailer):
        product_service.create_batch(manufacturer, products=[{"name": "A"}, {"name": "B"}])
        chain.move(1, retailer.wallet_address)

        partial = client.get('/api/products/batch/list', headers=auth_headers(retailer))
        chain.move(2, retailer.wallet_address)
        full = client.get('/api/products/batch/list', headers=auth_headers(retailer))

        assert partial.json == []
        assert [b['batchId'] for b in full.json] == [1]

    def test_retailer_read_failure_hides_batch(self, client, chain, manufacturer, retailer):
        product_service.create_batch(manufacturer, products=[{"name": "A"}, {"name": "B"}])
        chain.move(1, retailer.wallet_address)
        chain.move(2, retailer.wallet_address)
        chain.state.unreadable.add(2)

        resp = client.get('/api/products/batch/list', headers=auth_headers(retailer))

        assert resp.json == []


# =============================================================================
# PUBLIC DETAIL
# =============================================================================


class TestPublicDetail:

    def test_product_detail(self, client, chain, manufacturer, distributor):
        product_service.create_batch(manufacturer, products=[{"name": "A"}, {"name": "B"}])
        accept_partnership(client, manufacturer, distributor)
        client.post('/api/products/2/transfer', json={'toAddress': distributor.wallet_address, 'location': 'Lyon'},
                    headers=auth_headers(manufacturer))

        resp = client.get('/api/products/2')

        assert resp.status_code == 200
        onchain = resp.json['onchain']
        assert onchain['currentHolder'].lower() == distributor.wallet_address
        assert onchain['batchId'] == 1
        assert onchain['history'][0]['location'] == 'Lyon'
        assert resp.json['db']['uniqueProductId'] == f"MFR_{manufacturer.id}_BATCH1_PROD2"
        assert resp.json['batch']['productIds'] == [1, 2]

    def test_product_without_mirror_record(self, client, chain, manufacturer, db_session):
        product_service.create_products(manufacturer, "Jar")
        db_session.query(Product).delete()
        db_session.commit()

        resp = client.get('/api/products/1')

        assert resp.status_code == 200
        assert resp.json['db'] is None
        assert resp.json['batch'] is None

    def test_unknown_product(self, client, chain, db_session):
        assert client.get('/api/products/404').status_code == 404

    def test_batch_detail(self, client, chain, manufacturer):
        product_service.create_batch(manufacturer, products=[{"name": "A"}], metadata_uri='ipfs://lot')

        resp = client.get('/api/products/batch/1')

        assert resp.status_code == 200
        assert resp.json['onchain']['metadataURI'] == 'ipfs://lot'
        assert resp.json['db']['nftTokenId'] == 1

    def test_unknown_batch(self, client, chain, db_session):
        assert client.get('/api/products/batch/3').status_code == 404


# =============================================================================
# END TO END
# =============================================================================


class TestManufacturerRetailerScenario:

    def test_batch_then_gated_transfer(self, client, chain, manufacturer, retailer, db_session):
        created = client.post(
            '/api/products/batch',
            json={'products': [{'name': 'Cheese A'}, {'name': 'Cheese B'}]},
            headers=auth_headers(manufacturer),
        )
        assert created.status_code == 201
        assert created.json['nftTokenId'] is not None
        assert created.json['manufacturerBatchNumber'] == 1
        unique_ids = [p['uniqueProductId'] for p in created.json['products']]
        assert len(set(unique_ids)) == 2
        assert unique_ids[0].endswith('_PROD1')
        assert unique_ids[1].endswith('_PROD2')

        product_id = created.json['products'][0]['blockchainId']

        blocked = client.post(f'/api/products/{product_id}/transfer',
                              json={'toAddress': retailer.wallet_address},
                              headers=auth_headers(manufacturer))
        assert blocked.status_code == 403
        assert chain.holder_of(product_id) == manufacturer.wallet_address

        accept_partnership(client, manufacturer, retailer)

        moved = client.post(f'/api/products/{product_id}/transfer',
                            json={'toAddress': retailer.wallet_address},
                            headers=auth_headers(manufacturer))
        assert moved.status_code == 200

        record = db_session.query(Product).filter_by(blockchain_id=product_id).one()
        assert record.current_holder_id == retailer.id

        listed = client.get('/api/products', headers=auth_headers(retailer))
        assert _ids(listed) == [product_id]

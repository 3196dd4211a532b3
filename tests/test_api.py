"""
Tests for the HTTP API.
"""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from storesync.api.dependencies import database, sync_service
from storesync.core.exceptions import ConfigurationError, PrefixNotFoundError, TransportError
from storesync.main import create_app
from storesync.sync.connectivity import ConnectionCheck
from storesync.sync.discovery import PrefixDiscovery
from storesync.sync.progress import ProgressTracker
from storesync.sync.service import ALREADY_RUNNING, StartResult, SyncService

from .conftest import make_item, make_order, make_product

DETECT_BODY = {'host': 'db', 'user': 'wp', 'password': 'pw', 'database': 'shop'}


@pytest.fixture
def service(orchestrator):
    service = SyncService(orchestrator, ProgressTracker(), max_workers=2)
    yield service
    service.shutdown()


@pytest.fixture
def client(db, service):
    app = create_app()
    app.dependency_overrides[database] = lambda: db
    app.dependency_overrides[sync_service] = lambda: service
    return TestClient(app)


class TestHealth:

    def test_health(self, client, connection_id):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data['status'] == "healthy"
        assert data['connections'] == 1

    def test_root(self, client):
        assert client.get("/").json()['name'] == "StoreSync API"


class TestSyncEndpoints:

    def test_start_and_poll(self, client, service, connection_id, transport):
        transport.products = [make_product(1)]

        response = client.post(f"/api/sync/{connection_id}")
        assert response.status_code == 200
        assert response.json()['status'] == "started"

        service.wait(connection_id, timeout=10)
        status = client.get(f"/api/sync/{connection_id}/status").json()
        assert status['status'] == "completed"
        assert status['progress'] == 100
        assert status['report']['catalog']['created'] == 1

    def test_unknown_connection_is_bad_request(self, client):
        response = client.post("/api/sync/nope")

        assert response.status_code == 400
        assert "nope" in response.json()['detail']

    def test_already_running(self, db):
        service = MagicMock()
        service.start_sync.return_value = StartResult(status=ALREADY_RUNNING, message="Sync already in progress")
        app = create_app()
        app.dependency_overrides[sync_service] = lambda: service

        response = TestClient(app).post("/api/sync/store-1")

        assert response.status_code == 200
        assert response.json()['status'] == "already running"

    def test_full_flag_passed_to_service(self):
        service = MagicMock()
        service.start_sync.return_value = StartResult(status="started", message="Sync started in background")
        app = create_app()
        app.dependency_overrides[sync_service] = lambda: service

        response = TestClient(app).post("/api/sync/store-1?full=true")

        assert response.status_code == 200
        service.start_sync.assert_called_once_with("store-1", full=True)

    def test_configuration_error_from_service(self):
        service = MagicMock()
        service.start_sync.side_effect = ConfigurationError("API credentials are incomplete")
        app = create_app()
        app.dependency_overrides[sync_service] = lambda: service

        response = TestClient(app).post("/api/sync/store-1")

        assert response.status_code == 400

    def test_idle_status(self, client):
        status = client.get("/api/sync/never-synced/status").json()

        assert status['status'] == "idle"
        assert status['progress'] == 0
        assert status['message'] == "No sync in progress"


class TestConnectionEndpoints:

    def test_list_hides_credentials(self, client, connection_id):
        rows = client.get("/api/connections").json()

        assert [r['id'] for r in rows] == [connection_id]
        assert 'credentials' not in rows[0]

    def test_detect_prefix(self, client):
        result = PrefixDiscovery(prefix='shop_', has_commerce_tables=True, alternatives=['wp_'],
                                 tables=['shop_posts'])
        with patch('storesync.api.routes.connections.discover_prefix', return_value=result):
            response = client.post("/api/connections/detect-prefix", json=DETECT_BODY)

        assert response.status_code == 200
        data = response.json()
        assert data['prefix'] == 'shop_'
        assert data['alternatives'] == ['wp_']

    def test_detect_prefix_not_found(self, client):
        with patch('storesync.api.routes.connections.discover_prefix',
                   side_effect=PrefixNotFoundError("No WordPress tables found")):
            response = client.post("/api/connections/detect-prefix", json=DETECT_BODY)

        assert response.status_code == 404

    def test_detect_prefix_unreachable(self, client):
        with patch('storesync.api.routes.connections.discover_prefix',
                   side_effect=TransportError("Database connection failed")):
            response = client.post("/api/connections/detect-prefix", json=DETECT_BODY)

        assert response.status_code == 502

    def test_detect_prefix_validation(self, client):
        response = client.post("/api/connections/detect-prefix", json={**DETECT_BODY, 'host': ''})
        assert response.status_code == 422


class TestConnectionCheckEndpoint:

    BODY = {'url': 'https://shop.example.com', 'consumer_key': 'ck', 'consumer_secret': 'cs'}

    def test_success(self, client):
        result = ConnectionCheck(store_url='https://shop.example.com', products_found=1)
        with patch('storesync.api.routes.connections.check_api_connection', return_value=result):
            response = client.post("/api/connections/test", json=self.BODY)

        assert response.status_code == 200
        assert response.json()['success'] is True
        assert response.json()['products_found'] == 1

    def test_rejected_credentials(self, client):
        with patch('storesync.api.routes.connections.check_api_connection',
                   side_effect=TransportError("WooCommerce API error 401 for products page 1")):
            response = client.post("/api/connections/test", json=self.BODY)

        assert response.status_code == 400
        assert "check your credentials" in response.json()['detail']

    def test_invalid_url(self, client):
        response = client.post("/api/connections/test", json={**self.BODY, 'url': 'shop.example.com'})

        assert response.status_code == 400
        assert "http" in response.json()['detail']


class TestDiagnostics:

    def test_mismatch_reported(self, client, orchestrator, connection_id, transport):
        transport.products = [make_product(1, vendor_sales=20)]
        transport.orders = [make_order(1, items=[make_item(1, 1, quantity=2)])]
        orchestrator.run(connection_id)

        data = client.get(f"/api/diagnostics/{connection_id}").json()

        assert data['counts']['catalog'] == 1
        assert data['mismatches'][0]['difference'] == 18

    def test_threshold(self, client, orchestrator, connection_id, transport):
        transport.products = [make_product(1, vendor_sales=3)]
        orchestrator.run(connection_id)

        data = client.get(f"/api/diagnostics/{connection_id}?threshold=5").json()

        assert data['mismatches'] == []

    def test_unknown_connection(self, client):
        assert client.get("/api/diagnostics/nope").status_code == 404

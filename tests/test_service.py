"""
Tests for background sync runs.
"""

import threading

import pytest

from storesync.core.exceptions import ConfigurationError
from storesync.sync.orchestrator import SyncOrchestrator
from storesync.sync.progress import ProgressTracker
from storesync.sync.service import ALREADY_RUNNING, STARTED, SyncService

from .conftest import FakeTransport, make_product


class BlockingTransport(FakeTransport):
    """Holds the catalog pass until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def fetch_catalog_page(self, cursor):
        self.entered.set()
        self.release.wait(timeout=10)
        return super().fetch_catalog_page(cursor)


@pytest.fixture
def service(orchestrator):
    service = SyncService(orchestrator, ProgressTracker(), max_workers=2)
    yield service
    service.shutdown()


class TestSyncService:

    def test_start_returns_immediately_and_completes(self, service, connection_id, transport):
        transport.products = [make_product(1)]

        result = service.start_sync(connection_id)
        report = service.wait(connection_id, timeout=10)

        assert result.status == STARTED
        assert report.catalog.created == 1
        status = service.get_status(connection_id)
        assert status.status == "completed"
        assert status.progress == 100
        assert status.report['catalog']['created'] == 1

    def test_no_double_start(self, db, vault, connection_id):
        transport = BlockingTransport()
        orchestrator = SyncOrchestrator(db, vault, transport_factory=lambda *args: transport)
        service = SyncService(orchestrator, max_workers=2)
        try:
            first = service.start_sync(connection_id)
            assert transport.entered.wait(timeout=10)
            second = service.start_sync(connection_id)

            assert first.status == STARTED
            assert second.status == ALREADY_RUNNING
            assert service.get_status(connection_id).status == "running"
        finally:
            transport.release.set()
            service.wait(connection_id, timeout=10)
            service.shutdown()

        assert transport.calls['catalog'] == 1
        assert service.get_status(connection_id).status == "completed"

    def test_configuration_error_fails_the_start(self, service, db):
        with pytest.raises(ConfigurationError):
            service.start_sync("missing")

        status = service.get_status("missing")
        assert status.status == "error"
        assert "not found" in status.error

    def test_entity_failure_reports_error(self, service, connection_id, transport):
        transport.products = [make_product(1)]
        transport.fail('accounts')

        service.start_sync(connection_id)
        report = service.wait(connection_id, timeout=10)

        status = service.get_status(connection_id)
        assert status.status == "error"
        assert "accounts" in status.error
        assert report.catalog.created == 1
        assert status.report['catalog']['created'] == 1

    def test_bare_exception_reports_error(self, service, connection_id, transport):
        transport.fail('transactions', RuntimeError())

        service.start_sync(connection_id)
        service.wait(connection_id, timeout=10)

        status = service.get_status(connection_id)
        assert status.status == "error"
        assert status.error == "transactions: RuntimeError"
        assert status.report['transactions']['error'] == "RuntimeError"

    def test_full_resync_flag_reaches_the_run(self, service, connection_id, transport):
        transport.products = [make_product(1)]
        service.start_sync(connection_id)
        service.wait(connection_id, timeout=10)

        service.start_sync(connection_id, full=True)
        report = service.wait(connection_id, timeout=10)

        assert report.full
        assert report.catalog.updated == 1
        assert service.get_status(connection_id).report['full'] is True

    def test_record_errors_still_complete(self, service, connection_id, transport):
        transport.products = [make_product(1), make_product(2, name=None)]

        service.start_sync(connection_id)
        service.wait(connection_id, timeout=10)

        status = service.get_status(connection_id)
        assert status.status == "completed"
        assert status.report['catalog']['error_count'] == 1

    def test_can_restart_after_completion(self, service, connection_id):
        service.start_sync(connection_id)
        service.wait(connection_id, timeout=10)

        assert service.start_sync(connection_id).status == STARTED
        service.wait(connection_id, timeout=10)

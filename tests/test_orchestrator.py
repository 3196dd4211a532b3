"""
End-to-end sync runs against an in-memory source store.
"""

import base64

import pytest

from storesync.core.exceptions import ConfigurationError
from storesync.core.crypto import EncryptedPayload

from .conftest import make_customer, make_item, make_order, make_product


class TestWorkedExample:
    """Fresh connection: 2 products, 1 order with 1 item, 1 registered customer."""

    @pytest.fixture
    def source(self, transport):
        transport.products = [make_product(101), make_product(102, minutes=1)]
        transport.orders = [make_order(5001, email="Ada@Example.com", items=[make_item(9001, 101, quantity=2)])]
        transport.customers = [make_customer(7, "ada@example.com")]
        return transport

    def test_report_counts(self, orchestrator, connection_id, source):
        report = orchestrator.run(connection_id)

        assert report.catalog.created == 2
        assert report.transactions.created == 1
        assert report.accounts.created == 1
        assert report.errors == []
        assert report.failed_entities == []

    def test_guest_pass_finds_no_new_guest(self, orchestrator, db, connection_id, source):
        report = orchestrator.run(connection_id)

        assert report.accounts.extra['guests_created'] == 0
        assert report.accounts.extra['guests_skipped'] == 1
        assert db.count_rows(connection_id)['guest_accounts'] == 0

    def test_transaction_linked_to_account_and_catalog(self, orchestrator, db, connection_id, source):
        orchestrator.run(connection_id)

        transaction = db.get_transaction(connection_id, 5001)
        assert transaction['account_id'] == db.find_account_id(connection_id, remote_id=7)
        assert len(transaction['items']) == 1
        item = transaction['items'][0]
        assert item['catalog_item_id'] is not None
        assert item['quantity'] == 2

    def test_transport_closed(self, orchestrator, connection_id, source):
        orchestrator.run(connection_id)
        assert source.closed


class TestIdempotence:

    def test_second_run_creates_nothing(self, orchestrator, db, connection_id, transport):
        transport.products = [make_product(i, minutes=i) for i in range(1, 6)]
        transport.orders = [
            make_order(1, minutes=1, customer_id=3, email="c3@example.com", items=[make_item(11, 1)]),
            make_order(2, minutes=2, email="guest@example.com", items=[make_item(21, 2), make_item(22, 3)]),
        ]
        transport.customers = [make_customer(3, "c3@example.com", minutes=1)]

        first = orchestrator.run(connection_id)
        counts = db.count_rows(connection_id)
        second = orchestrator.run(connection_id)

        assert first.catalog.created == 5
        for entity in ('catalog', 'transactions', 'accounts'):
            assert second.result_for(entity).created == 0
        assert second.accounts.extra['guests_created'] == 0
        assert db.count_rows(connection_id) == counts

    def test_natural_keys_stay_unique_across_runs(self, orchestrator, db, connection_id, transport):
        transport.products = [make_product(1), make_product(2)]
        orchestrator.run(connection_id)
        transport.products = [make_product(1, minutes=5, name="Renamed"), make_product(2, minutes=5)]
        report = orchestrator.run(connection_id)

        assert report.catalog.updated == 2
        rows = db.get_modified_since('catalog', connection_id)
        assert sorted(r['remote_id'] for r in rows) == [1, 2]
        assert {r['remote_id']: r['name'] for r in rows}[1] == "Renamed"


class TestLineItemConsistency:

    def test_items_replaced_on_resync(self, orchestrator, db, connection_id, transport):
        transport.orders = [make_order(1, items=[make_item(1, None), make_item(2, None), make_item(3, None)])]
        orchestrator.run(connection_id)

        transport.orders = [make_order(1, minutes=10, items=[make_item(3, None, quantity=4), make_item(4, None)])]
        orchestrator.run(connection_id)

        items = db.get_transaction(connection_id, 1)['items']
        assert [i['remote_id'] for i in items] == [3, 4]
        assert items[0]['quantity'] == 4
        assert db.count_rows(connection_id)['line_items'] == 2


class TestPartialFailure:

    def test_failed_entity_does_not_stop_siblings(self, orchestrator, connection_id, transport):
        transport.products = [make_product(1)]
        transport.customers = [make_customer(1, "a@example.com")]
        transport.fail('transactions')

        report = orchestrator.run(connection_id)

        assert report.failed_entities == ['transactions']
        assert "timed out" in report.transactions.error
        assert report.catalog.created == 1
        assert report.accounts.created == 1
        assert len(report.errors) == 1
        assert transport.closed

    def test_exception_without_message_marks_entity_failed(self, orchestrator, connection_id, transport):
        transport.products = [make_product(1)]
        transport.fail('transactions', RuntimeError())

        report = orchestrator.run(connection_id)

        assert report.failed_entities == ['transactions']
        assert report.transactions.error == "RuntimeError"
        assert report.errors == ["transactions: RuntimeError"]

    def test_failed_entity_keeps_its_cursor(self, orchestrator, db, connection_id, transport):
        transport.orders = [make_order(1, minutes=3)]
        transport.fail('transactions')
        orchestrator.run(connection_id)

        assert db.get_connection(connection_id).cursor_for('transactions') is None


class TestGuestAccounts:

    def test_shared_email_produces_one_guest(self, orchestrator, db, connection_id, transport):
        transport.orders = [
            make_order(1, minutes=1, email="guest@example.com"),
            make_order(2, minutes=2, email="GUEST@example.com"),
        ]

        report = orchestrator.run(connection_id)

        assert report.accounts.extra['guests_created'] == 1
        assert db.count_rows(connection_id)['guest_accounts'] == 1
        # Guest rows count towards the account totals
        assert report.accounts.fetched == 2
        assert report.accounts.created == 1
        assert report.accounts.updated == 1
        guest_id = db.find_account_id(connection_id, email="guest@example.com")
        assert db.get_transaction(connection_id, 1)['account_id'] == guest_id
        assert db.get_transaction(connection_id, 2)['account_id'] == guest_id

    def test_guest_and_registered_never_share_email(self, orchestrator, db, connection_id, transport):
        transport.customers = [make_customer(8, "known@example.com")]
        transport.orders = [make_order(1, email="known@example.com")]

        orchestrator.run(connection_id)

        counts = db.count_rows(connection_id)
        assert counts['accounts'] == 1
        assert counts['guest_accounts'] == 0


class TestCursors:

    def test_cursor_moves_to_latest_modification(self, orchestrator, db, connection_id, transport):
        transport.products = [make_product(1, minutes=5), make_product(2, minutes=9), make_product(3, minutes=2)]
        orchestrator.run(connection_id)

        cursor = db.get_connection(connection_id).cursor_for('catalog')
        assert cursor == transport.products[1].date_modified

    def test_failed_record_holds_cursor(self, orchestrator, db, connection_id, transport):
        # NOT NULL name makes the insert fail
        transport.products = [make_product(1, minutes=1), make_product(2, minutes=4, name=None),
                              make_product(3, minutes=8)]

        report = orchestrator.run(connection_id)

        assert report.catalog.created == 2
        assert report.catalog.error_count == 1
        assert report.failed_entities == []
        assert db.get_connection(connection_id).cursor_for('catalog') == transport.products[1].date_modified

    def test_failed_record_without_timestamp_holds_cursor(self, orchestrator, db, connection_id, transport):
        transport.products = [make_product(1, minutes=1)]
        orchestrator.run(connection_id)
        start = db.get_connection(connection_id).cursor_for('catalog')

        transport.products += [make_product(2, minutes=9), make_product(3, name=None, date_modified=None)]
        report = orchestrator.run(connection_id)

        assert report.catalog.error_count == 1
        assert db.get_connection(connection_id).cursor_for('catalog') == start

    def test_next_run_only_fetches_changes(self, orchestrator, connection_id, transport):
        transport.products = [make_product(i, minutes=i) for i in range(1, 5)]
        orchestrator.run(connection_id)

        transport.products.append(make_product(10, minutes=30))
        report = orchestrator.run(connection_id)

        # Latest already-seen record comes back through the >= filter
        assert report.catalog.fetched == 2
        assert report.catalog.created == 1


class TestPrepare:

    def test_unknown_connection(self, orchestrator):
        with pytest.raises(ConfigurationError):
            orchestrator.prepare("missing")

    def test_tampered_credentials(self, orchestrator, db, vault, connection_id):
        payload = db.get_connection(connection_id).credentials
        raw = bytearray(base64.b64decode(payload.ciphertext))
        raw[0] ^= 0x01
        db.save_connection(connection_id, "Test Store", "remote-api",
                           EncryptedPayload(nonce=payload.nonce, ciphertext=base64.b64encode(bytes(raw)).decode()))

        with pytest.raises(ConfigurationError):
            orchestrator.prepare(connection_id)

    def test_incomplete_credentials_fail_before_fan_out(self, db, vault):
        from storesync.sync.orchestrator import SyncOrchestrator

        db.save_connection("bad", "Bad", "remote-api", vault.encrypt_credentials("bad", {'url': 'https://x.test'}))
        orchestrator = SyncOrchestrator(db, vault)

        with pytest.raises(ConfigurationError, match="consumer_key"):
            orchestrator.run("bad")

    def test_progress_checkpoints(self, orchestrator, connection_id):
        seen = []
        orchestrator.run(connection_id, progress_callback=lambda p, m: seen.append(p))

        assert seen[0] == 10
        assert seen[-1] == 100
        assert seen == sorted(seen)


class TestFullResync:

    @pytest.fixture
    def synced(self, orchestrator, connection_id, transport):
        transport.products = [make_product(1, minutes=5), make_product(2, minutes=9)]
        orchestrator.run(connection_id)
        # Changed upstream without moving its modification time past the cursor
        transport.products[0] = make_product(1, minutes=1, name="Renamed")
        return transport

    def test_incremental_run_misses_old_change(self, orchestrator, db, connection_id, synced):
        report = orchestrator.run(connection_id)

        assert report.catalog.fetched == 1
        assert {r['remote_id']: r['name'] for r in db.get_modified_since('catalog', connection_id)}[1] == "Product 1"

    def test_full_run_ignores_cursor(self, orchestrator, db, connection_id, synced):
        report = orchestrator.run(connection_id, full=True)

        assert report.full
        assert report.catalog.fetched == 2
        assert report.catalog.created == 0
        assert report.catalog.updated == 2
        assert {r['remote_id']: r['name'] for r in db.get_modified_since('catalog', connection_id)}[1] == "Renamed"
        assert db.get_connection(connection_id).cursor_for('catalog') == synced.products[1].date_modified

    def test_full_run_revisits_all_guest_contacts(self, orchestrator, db, connection_id, transport):
        transport.orders = [make_order(1, minutes=1, email="old@example.com"), make_order(2, minutes=9)]
        orchestrator.run(connection_id)

        report = orchestrator.run(connection_id, full=True)

        assert report.accounts.extra['guests_updated'] == 1
        assert db.count_rows(connection_id)['guest_accounts'] == 1

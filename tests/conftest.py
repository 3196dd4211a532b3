# StoreSync Test Fixtures
# Pytest fixtures for sync engine tests

import tempfile
from collections.abc import Generator
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import yaml

from storesync.core.config import CONFIG_ENV_VAR, Config
from storesync.core.crypto import CredentialVault, generate_key
from storesync.core.database import Database
from storesync.core.exceptions import TransportError
from storesync.sync.models import (
    AccountRecord, Address, CatalogRecord, GuestContact, LineItemRecord,
    Page, PageCursor, TransactionRecord
)
from storesync.sync.orchestrator import SyncOrchestrator
from storesync.sync.settings import SyncSettings
from storesync.sync.transports.base import Transport

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

API_CREDENTIALS = {
    'url': 'https://shop.example.com',
    'consumer_key': 'ck_test',
    'consumer_secret': 'cs_test',
}


def at(minutes: int) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


def make_product(remote_id: int, minutes: int = 0, **kwargs) -> CatalogRecord:
    values = dict(name=f"Product {remote_id}", sku=f"SKU-{remote_id}", price=10.0, status='publish',
                  vendor_sales=0, date_created=at(0), date_modified=at(minutes))
    values.update(kwargs)
    return CatalogRecord(remote_id=remote_id, **values)


def make_item(remote_id: int, product_id: Optional[int], quantity: int = 1, line_total: float = 10.0) -> LineItemRecord:
    return LineItemRecord(
        remote_id=remote_id,
        name=f"Item {remote_id}",
        quantity=quantity,
        line_total=line_total,
        unit_price=line_total / quantity if quantity else 0.0,
        product_remote_id=product_id,
    )


def make_order(
    remote_id: int,
    minutes: int = 0,
    customer_id: int = 0,
    email: Optional[str] = None,
    items: Optional[List[LineItemRecord]] = None,
    status: str = 'completed'
) -> TransactionRecord:
    return TransactionRecord(
        remote_id=remote_id,
        number=str(remote_id),
        status=status,
        total=sum(i.line_total for i in items or []),
        customer_remote_id=customer_id,
        billing=Address(first_name='Test', last_name=f"Buyer{remote_id}", email=email),
        line_items=items or [],
        date_created=at(0),
        date_modified=at(minutes),
    )


def make_customer(remote_id: int, email: str, minutes: int = 0) -> AccountRecord:
    return AccountRecord(
        remote_id=remote_id,
        email=email,
        first_name='Reg',
        last_name=f"User{remote_id}",
        date_created=at(0),
        date_modified=at(minutes),
    )


class FakeTransport(Transport):
    """In-memory source store with modified-since filtering and fixed-size pages."""

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.products: List[CatalogRecord] = []
        self.orders: List[TransactionRecord] = []
        self.customers: List[AccountRecord] = []
        self.failures: Dict[str, Exception] = {}
        self.closed = False
        self.calls: Dict[str, int] = {}

    def _page(self, name: str, records: list, cursor: PageCursor) -> Page:
        self.calls[name] = self.calls.get(name, 0) + 1
        if name in self.failures:
            raise self.failures[name]
        if cursor.since is not None:
            records = [r for r in records if r.date_modified is None or r.date_modified >= cursor.since]
        start = (cursor.page - 1) * self.page_size
        chunk = records[start:start + self.page_size]
        done = start + self.page_size >= len(records)
        return Page(items=list(chunk), next_cursor=None if done else replace(cursor, page=cursor.page + 1))

    def fetch_catalog_page(self, cursor: PageCursor) -> Page[CatalogRecord]:
        return self._page('catalog', self.products, cursor)

    def fetch_transactions_page(self, cursor: PageCursor) -> Page[TransactionRecord]:
        return self._page('transactions', self.orders, cursor)

    def fetch_accounts_page(self, cursor: PageCursor) -> Page[AccountRecord]:
        return self._page('accounts', self.customers, cursor)

    def fetch_guest_contacts_page(self, cursor: PageCursor) -> Page[GuestContact]:
        page = self._page('guests', self.orders, cursor)
        page.items = [
            GuestContact(
                email=o.contact_email,
                first_name=o.billing.first_name,
                last_name=o.billing.last_name,
                first_seen_at=o.date_created
            )
            for o in page.items if not o.customer_remote_id and o.contact_email
        ]
        return page

    def close(self) -> None:
        self.closed = True

    def fail(self, entity: str, error: Optional[Exception] = None) -> None:
        self.failures[entity] = error or TransportError(f"{entity} endpoint timed out")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def config_file(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point the config singleton at a throwaway config.yaml."""
    path = temp_dir / "config.yaml"
    path.write_text(yaml.safe_dump({
        'general': {'data_dir': str(temp_dir / "data"), 'log_level': 'DEBUG'},
        'sync': {'max_concurrent_syncs': 2, 'progress_retention_seconds': 60},
        'remote_api': {'per_page': 2},
    }), encoding="utf-8")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    Config.reset()
    yield path
    Config.reset()


@pytest.fixture
def db(temp_dir: Path) -> Database:
    return Database(temp_dir / "test.db")


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(generate_key())


@pytest.fixture
def connection_id(db: Database, vault: CredentialVault) -> str:
    """A stored remote-api connection with encrypted credentials."""
    connection_id = "store-1"
    db.save_connection(connection_id, "Test Store", "remote-api",
                       vault.encrypt_credentials(connection_id, API_CREDENTIALS))
    return connection_id


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def orchestrator(db: Database, vault: CredentialVault, transport: FakeTransport) -> SyncOrchestrator:
    return SyncOrchestrator(db, vault, SyncSettings(), transport_factory=lambda conn, creds, settings: transport)

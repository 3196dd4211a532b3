"""
Data types shared by transports, reconcilers and the orchestrator.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from ..core.crypto import EncryptedPayload
from ..core.exceptions import ConfigurationError
from .attribution import Attribution

T = TypeVar('T')

# Entity names double as SyncReport keys
CATALOG = 'catalog'
TRANSACTIONS = 'transactions'
ACCOUNTS = 'accounts'
ENTITIES = (CATALOG, TRANSACTIONS, ACCOUNTS)

# Sentinel remote id for accounts built from transaction contact data
GUEST_REMOTE_ID = 0


class TransportMode(str, Enum):
    REMOTE_API = 'remote-api'
    DIRECT_DATASTORE = 'direct-datastore'


# ==================== Connection & Credentials ====================

@dataclass
class Connection:
    """Configured link to one source store."""
    id: str
    name: str
    mode: str
    credentials: Optional[EncryptedPayload] = None
    cursors: Dict[str, Optional[datetime]] = field(default_factory=dict)

    def cursor_for(self, entity: str) -> Optional[datetime]:
        return self.cursors.get(entity)


def _require(data: Dict[str, Any], keys: List[str], kind: str) -> None:
    missing = [k for k in keys if not str(data.get(k) or '').strip()]
    if missing:
        raise ConfigurationError(f"{kind} credentials are incomplete (missing: {', '.join(missing)})")


@dataclass
class ApiCredentials:
    url: str
    consumer_key: str
    consumer_secret: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApiCredentials':
        _require(data, ['url', 'consumer_key', 'consumer_secret'], "API")
        url = str(data['url']).strip()
        if not url.startswith(('http://', 'https://')):
            raise ConfigurationError(f"API url must start with http:// or https://: {url}")
        return cls(url=url, consumer_key=str(data['consumer_key']), consumer_secret=str(data['consumer_secret']))


@dataclass
class DatastoreCredentials:
    host: str
    user: str
    password: str
    database: str
    port: int = 3306
    prefix: str = 'wp_'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DatastoreCredentials':
        _require(data, ['host', 'user', 'password', 'database'], "Database")
        try:
            port = int(data.get('port') or 3306)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Database port is not a number: {data.get('port')!r}")
        return cls(
            host=str(data['host']),
            user=str(data['user']),
            password=str(data['password']),
            database=str(data['database']),
            port=port,
            prefix=str(data.get('prefix') or 'wp_')
        )


# ==================== Source Records ====================

@dataclass
class Address:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address_1: Optional[str] = None
    address_2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = None
    country: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Address':
        data = data or {}
        values = {}
        for name in cls.__dataclass_fields__:
            value = data.get(name)
            values[name] = str(value).strip() if value not in (None, '') else None
        return cls(**values)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class CatalogRecord:
    remote_id: int
    name: str
    sku: Optional[str] = None
    price: Optional[float] = None
    status: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    vendor_sales: Optional[int] = None
    date_created: Optional[datetime] = None
    date_modified: Optional[datetime] = None


@dataclass
class LineItemRecord:
    remote_id: int
    name: str
    quantity: int
    line_total: float
    unit_price: float
    product_remote_id: Optional[int] = None
    sku: Optional[str] = None


@dataclass
class TransactionRecord:
    remote_id: int
    status: str
    total: float
    currency: str = 'USD'
    number: Optional[str] = None
    subtotal: Optional[float] = None
    discount_total: Optional[float] = None
    shipping_total: Optional[float] = None
    tax_total: Optional[float] = None
    payment_method: Optional[str] = None
    payment_method_title: Optional[str] = None
    transaction_ref: Optional[str] = None
    customer_remote_id: Optional[int] = None
    billing: Address = field(default_factory=Address)
    shipping: Address = field(default_factory=Address)
    attribution: Attribution = field(default_factory=Attribution)
    line_items: List[LineItemRecord] = field(default_factory=list)
    date_created: Optional[datetime] = None
    date_modified: Optional[datetime] = None

    @property
    def contact_email(self) -> Optional[str]:
        return self.billing.email


@dataclass
class AccountRecord:
    remote_id: int
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_created: Optional[datetime] = None
    date_modified: Optional[datetime] = None


@dataclass
class GuestContact:
    """Contact data of a transaction placed without a registered account."""
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    first_seen_at: Optional[datetime] = None


# ==================== Paging ====================

@dataclass
class PageCursor:
    """
    Position within one entity's source collection.

    `since` is the modified-since watermark the pass started from.
    Remote API pages advance `page`; direct datastore pages use keyset
    pagination on (`last_modified`, `last_key`).
    """
    since: Optional[datetime] = None
    page: int = 1
    last_modified: Optional[datetime] = None
    last_key: Any = None


@dataclass
class Page(Generic[T]):
    items: List[T]
    next_cursor: Optional[PageCursor] = None
    errors: List[str] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.next_cursor is None


# ==================== Results ====================

@dataclass
class EntityResult:
    fetched: int = 0
    created: int = 0
    updated: int = 0
    error_count: int = 0
    error: Optional[str] = None
    extra: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncReport:
    connection_id: str
    mode: str
    full: bool = False
    catalog: EntityResult = field(default_factory=EntityResult)
    transactions: EntityResult = field(default_factory=EntityResult)
    accounts: EntityResult = field(default_factory=EntityResult)
    duration: float = 0.0
    errors: List[str] = field(default_factory=list)

    def result_for(self, entity: str) -> EntityResult:
        return getattr(self, entity)

    @property
    def failed_entities(self) -> List[str]:
        return [e for e in ENTITIES if self.result_for(e).error is not None]

    @property
    def record_errors(self) -> int:
        return sum(self.result_for(e).error_count for e in ENTITIES)

    def summary(self) -> str:
        parts = []
        for entity in ENTITIES:
            result = self.result_for(entity)
            parts.append(f"{entity.capitalize()}: {result.created} new, {result.updated} updated")
        return "; ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

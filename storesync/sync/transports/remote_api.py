"""
WooCommerce REST API transport.
Pages products, orders and customers from the wc/v3 endpoints.
"""

import logging
import threading
from dataclasses import replace
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import requests

from ...core.exceptions import ParseError, RecordError, TransportError
from ..attribution import Attribution
from ..fixtures import fixture_for
from ..models import (
    AccountRecord, Address, ApiCredentials, CatalogRecord, GuestContact,
    LineItemRecord, Page, PageCursor, TransactionRecord, TransportMode
)
from ..parsing import parse_datetime, parse_float, parse_int
from ..payload import decode_json_list
from ..settings import SyncSettings
from .base import Transport

logger = logging.getLogger(__name__)

# Statuses that mean "no store / no API here" rather than a failure
FALLBACK_STATUSES = (401, 404)


def _as_dict(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise RecordError(f"Expected an object, got {type(raw).__name__}")
    return raw


def _remote_id(raw: Dict[str, Any]) -> int:
    remote_id = parse_int(raw.get('id'))
    if not remote_id:
        raise RecordError(f"Missing or invalid id: {raw.get('id')!r}")
    return remote_id


def _modified(raw: Dict[str, Any]):
    return parse_datetime(raw.get('date_modified_gmt') or raw.get('date_modified'))


def _created(raw: Dict[str, Any]):
    return parse_datetime(raw.get('date_created_gmt') or raw.get('date_created'))


def to_catalog_record(raw: Any) -> CatalogRecord:
    raw = _as_dict(raw)
    images = raw.get('images') or []
    image_url = images[0].get('src') if images and isinstance(images[0], dict) else None
    return CatalogRecord(
        remote_id=_remote_id(raw),
        name=raw.get('name') or '',
        sku=raw.get('sku') or None,
        price=parse_float(raw.get('price')),
        status=raw.get('status') or None,
        description=raw.get('short_description') or None,
        image_url=image_url,
        vendor_sales=parse_int(raw.get('total_sales')),
        date_created=_created(raw),
        date_modified=_modified(raw),
    )


def to_line_item_record(raw: Any) -> LineItemRecord:
    raw = _as_dict(raw)
    quantity = parse_int(raw.get('quantity'), 0)
    line_total = parse_float(raw.get('total'), 0.0)
    unit_price = line_total / quantity if quantity else 0.0
    return LineItemRecord(
        remote_id=_remote_id(raw),
        name=raw.get('name') or 'Unknown Product',
        quantity=quantity,
        line_total=line_total,
        unit_price=unit_price,
        product_remote_id=parse_int(raw.get('product_id')) or None,
        sku=raw.get('sku') or None,
    )


def to_transaction_record(raw: Any) -> TransactionRecord:
    raw = _as_dict(raw)
    total = parse_float(raw.get('total'), 0.0)
    discount = parse_float(raw.get('discount_total'))
    shipping = parse_float(raw.get('shipping_total'))
    tax = parse_float(raw.get('total_tax'))
    return TransactionRecord(
        remote_id=_remote_id(raw),
        number=str(raw.get('number') or raw.get('id')),
        status=raw.get('status') or 'pending',
        total=total,
        currency=raw.get('currency') or 'USD',
        subtotal=total - (shipping or 0) - (tax or 0) + (discount or 0),
        discount_total=discount,
        shipping_total=shipping,
        tax_total=tax,
        payment_method=raw.get('payment_method') or None,
        payment_method_title=raw.get('payment_method_title') or None,
        transaction_ref=raw.get('transaction_id') or None,
        customer_remote_id=parse_int(raw.get('customer_id'), 0),
        billing=Address.from_dict(raw.get('billing')),
        shipping=Address.from_dict(raw.get('shipping')),
        attribution=Attribution.from_meta_list(raw.get('meta_data'), raw),
        line_items=[to_line_item_record(item) for item in raw.get('line_items') or []],
        date_created=_created(raw),
        date_modified=_modified(raw),
    )


def to_account_record(raw: Any) -> AccountRecord:
    raw = _as_dict(raw)
    return AccountRecord(
        remote_id=_remote_id(raw),
        email=raw.get('email') or None,
        first_name=raw.get('first_name') or None,
        last_name=raw.get('last_name') or None,
        date_created=_created(raw),
        date_modified=_modified(raw),
    )


def to_guest_contact(raw: Any) -> Optional[GuestContact]:
    """Guest contact for an order without a registered customer, else None."""
    raw = _as_dict(raw)
    if parse_int(raw.get('customer_id'), 0):
        return None
    billing = Address.from_dict(raw.get('billing'))
    if not billing.email:
        return None
    return GuestContact(
        email=billing.email,
        first_name=billing.first_name,
        last_name=billing.last_name,
        first_seen_at=_created(raw),
    )


class RemoteApiTransport(Transport):
    """Client for the WooCommerce REST API."""

    mode = TransportMode.REMOTE_API.value

    def __init__(self, credentials: ApiCredentials, settings: SyncSettings):
        self.base_url = credentials.url.rstrip('/') + '/wp-json/wc/v3/'
        self.auth = (credentials.consumer_key, credentials.consumer_secret)
        self.per_page = settings.remote_per_page
        self.timeout = (settings.remote_connect_timeout, settings.remote_read_timeout)
        self.fixture_fallback = settings.fixture_fallback
        self.user_agent = settings.user_agent
        # requests.Session is not thread-safe; each reconciler thread gets its own
        self._local = threading.local()
        self._sessions: List[requests.Session] = []
        self._sessions_lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        session = getattr(self._local, 'session', None)
        if session is None:
            session = requests.Session()
            session.auth = self.auth
            session.headers.update({'Accept': 'application/json', 'User-Agent': self.user_agent})
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def _get_page(
        self,
        endpoint: str,
        cursor: PageCursor,
        params: Optional[Dict[str, Any]] = None,
        supports_since: bool = True
    ) -> Tuple[List[Any], bool]:
        """
        Fetch one page of raw items.

        Returns:
            Tuple(raw items, is_last_page)
        """
        url = urljoin(self.base_url, endpoint)
        query = {
            'per_page': self.per_page,
            'page': cursor.page,
            'orderby': 'id',
            'order': 'asc',
        }
        if supports_since and cursor.since:
            # modified_after is exclusive; one second back re-reads the boundary record
            after = cursor.since - timedelta(seconds=1)
            query['modified_after'] = after.replace(tzinfo=None, microsecond=0).isoformat()
            query['dates_are_gmt'] = 'true'
        query.update(params or {})

        logger.info(f"Fetching {endpoint} - page {cursor.page}, per_page: {self.per_page}")
        try:
            response = self.session.get(url, params=query, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise TransportError(f"Timed out fetching {endpoint} page {cursor.page}: {e}")
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed for {endpoint} page {cursor.page}: {e}")

        if response.status_code in FALLBACK_STATUSES and cursor.page == 1 and self.fixture_fallback:
            logger.warning(
                f"WooCommerce API not available for {endpoint} "
                f"(status {response.status_code}), using fixture data"
            )
            return fixture_for(endpoint), True

        if not response.ok:
            raise TransportError(f"WooCommerce API error {response.status_code} for {endpoint} page {cursor.page}")

        try:
            items, recovered = decode_json_list(response.text)
        except ParseError as e:
            logger.error(f"Unreadable response for {endpoint} page {cursor.page}, stopping pagination: {e}")
            return [], True

        if recovered:
            logger.warning(f"Page {cursor.page} of {endpoint} needed recovery ({len(items)} items)")
        return items, len(items) < self.per_page

    def _fetch(
        self,
        endpoint: str,
        cursor: PageCursor,
        convert: Callable[[Any], Any],
        params: Optional[Dict[str, Any]] = None,
        supports_since: bool = True
    ) -> Page:
        raw_items, last = self._get_page(endpoint, cursor, params, supports_since)

        items, errors = [], []
        for raw in raw_items:
            try:
                record = convert(raw)
            except (RecordError, KeyError, TypeError, ValueError) as e:
                raw_id = raw.get('id') if isinstance(raw, dict) else None
                errors.append(f"{endpoint} item {raw_id}: {e}")
                logger.warning(f"Rejected {endpoint} item {raw_id}: {e}")
                continue
            if record is not None:
                items.append(record)

        next_cursor = None if last else replace(cursor, page=cursor.page + 1)
        return Page(items=items, next_cursor=next_cursor, errors=errors)

    def fetch_catalog_page(self, cursor: PageCursor) -> Page[CatalogRecord]:
        return self._fetch('products', cursor, to_catalog_record)

    def fetch_transactions_page(self, cursor: PageCursor) -> Page[TransactionRecord]:
        return self._fetch('orders', cursor, to_transaction_record)

    def fetch_accounts_page(self, cursor: PageCursor) -> Page[AccountRecord]:
        # The customers endpoint has no date filter; every run pages all of them
        return self._fetch('customers', cursor, to_account_record, params={'role': 'all'}, supports_since=False)

    def fetch_guest_contacts_page(self, cursor: PageCursor) -> Page[GuestContact]:
        return self._fetch('orders', cursor, to_guest_contact, params={'customer': 0})

    def close(self) -> None:
        with self._sessions_lock:
            for session in self._sessions:
                session.close()
            self._sessions.clear()

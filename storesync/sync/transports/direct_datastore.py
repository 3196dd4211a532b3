"""
Direct MySQL transport.
Reads products, orders and users straight from the WordPress/WooCommerce
schema. Used when the REST API is too slow or disabled on the store.
"""

import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import pymysql
import pymysql.cursors

from ...core.exceptions import TransportError
from ..attribution import Attribution
from ..models import (
    AccountRecord, Address, CatalogRecord, DatastoreCredentials, GuestContact,
    LineItemRecord, Page, PageCursor, TransactionRecord, TransportMode
)
from ..parsing import parse_datetime, parse_float, parse_int, to_mysql
from ..settings import SyncSettings
from .base import Transport
from .tables import WPTables

logger = logging.getLogger(__name__)

PRODUCT_STATUSES = ('publish', 'private', 'draft')

PRODUCT_META_KEYS = ('_price', '_regular_price', '_sku', 'total_sales', '_thumbnail_id')

ADDRESS_FIELDS = (
    'first_name', 'last_name', 'company', 'address_1', 'address_2',
    'city', 'state', 'postcode', 'country', 'email', 'phone',
)

ORDER_META_KEYS = (
    '_order_total', '_order_currency', '_payment_method', '_payment_method_title',
    '_order_shipping', '_order_tax', '_cart_discount', '_customer_user', '_transaction_id',
    '_wc_order_attribution_utm_source', '_wc_order_attribution_utm_medium',
    '_wc_order_attribution_utm_campaign', '_wc_order_attribution_utm_term',
    '_wc_order_attribution_utm_content', '_wc_order_attribution_source_type',
    '_wc_order_attribution_referrer', '_wc_order_attribution_session_entry',
    '_wc_order_attribution_device_type', '_wc_order_attribution_session_pages',
) + tuple(f'_billing_{f}' for f in ADDRESS_FIELDS) + tuple(f'_shipping_{f}' for f in ADDRESS_FIELDS)

LINE_ITEM_META_KEYS = ('_product_id', '_variation_id', '_qty', '_line_total')

USER_META_KEYS = ('first_name', 'last_name', 'billing_first_name', 'billing_last_name')


def _placeholders(values: Sequence[Any]) -> str:
    return ', '.join(['%s'] * len(values))


def _pivot(keys: Sequence[str], meta_alias: str) -> str:
    """One MAX(CASE ...) column per meta key, aliased without the leading underscore."""
    return ',\n'.join(
        f"MAX(CASE WHEN {meta_alias}.meta_key = '{key}' THEN {meta_alias}.meta_value END) AS `{key.lstrip('_')}`"
        for key in keys
    )


def _order_status(post_status: Optional[str]) -> str:
    status = post_status or 'pending'
    return status[3:] if status.startswith('wc-') else status


def _address(meta: Dict[str, str], kind: str) -> Address:
    return Address.from_dict({f: meta.get(f'_{kind}_{f}') for f in ADDRESS_FIELDS})


def build_catalog_record(row: Dict[str, Any], image_url: Optional[str] = None) -> CatalogRecord:
    price = row.get('price') or row.get('regular_price')
    return CatalogRecord(
        remote_id=int(row['ID']),
        name=row.get('post_title') or '',
        sku=row.get('sku') or None,
        price=parse_float(price),
        status=row.get('post_status') or 'draft',
        description=row.get('post_excerpt') or None,
        image_url=image_url,
        vendor_sales=parse_int(row.get('total_sales')),
        date_created=parse_datetime(row.get('post_date_gmt')),
        date_modified=parse_datetime(row.get('post_modified_gmt')),
    )


def build_line_item_record(row: Dict[str, Any]) -> LineItemRecord:
    quantity = parse_int(row.get('qty'), 1)
    line_total = parse_float(row.get('line_total'), 0.0)
    # The schema stores only the line total
    unit_price = line_total / quantity if quantity > 0 else 0.0
    # Variations roll up to their parent product, which is what the catalog holds
    return LineItemRecord(
        remote_id=int(row['order_item_id']),
        name=row.get('order_item_name') or 'Unknown Product',
        quantity=quantity,
        line_total=line_total,
        unit_price=unit_price,
        product_remote_id=parse_int(row.get('product_id')) or None,
    )


def build_transaction_record(
    row: Dict[str, Any],
    meta: Dict[str, str],
    line_items: List[LineItemRecord]
) -> TransactionRecord:
    total = parse_float(meta.get('_order_total'), 0.0)
    shipping = parse_float(meta.get('_order_shipping'))
    tax = parse_float(meta.get('_order_tax'))
    discount = parse_float(meta.get('_cart_discount'))
    order_id = int(row['ID'])
    return TransactionRecord(
        remote_id=order_id,
        number=str(order_id),
        status=_order_status(row.get('post_status')),
        total=total,
        currency=meta.get('_order_currency') or 'USD',
        # Not stored directly in the schema
        subtotal=total - (shipping or 0) - (tax or 0) + (discount or 0),
        discount_total=discount,
        shipping_total=shipping,
        tax_total=tax,
        payment_method=meta.get('_payment_method') or None,
        payment_method_title=meta.get('_payment_method_title') or None,
        transaction_ref=meta.get('_transaction_id') or None,
        customer_remote_id=parse_int(meta.get('_customer_user'), 0),
        billing=_address(meta, 'billing'),
        shipping=_address(meta, 'shipping'),
        attribution=Attribution.from_meta(meta),
        line_items=line_items,
        date_created=parse_datetime(row.get('post_date_gmt')),
        date_modified=parse_datetime(row.get('post_modified_gmt')),
    )


def build_account_record(row: Dict[str, Any]) -> AccountRecord:
    registered = parse_datetime(row.get('user_registered'))
    return AccountRecord(
        remote_id=int(row['ID']),
        email=row.get('user_email') or None,
        first_name=row.get('first_name') or row.get('billing_first_name') or None,
        last_name=row.get('last_name') or row.get('billing_last_name') or None,
        date_created=registered,
        date_modified=registered,
    )


@contextmanager
def mysql_connection(
    credentials: DatastoreCredentials,
    connect: Callable[..., Any] = pymysql.connect,
    connect_timeout: int = 10,
    read_timeout: int = 60
) -> Iterator[Any]:
    """Open a MySQL connection that is always closed afterwards."""
    try:
        conn = connect(
            host=credentials.host,
            port=credentials.port,
            user=credentials.user,
            password=credentials.password,
            database=credentials.database,
            charset='utf8mb4',
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            cursorclass=pymysql.cursors.DictCursor,
            autocommit=True,
        )
    except pymysql.MySQLError as e:
        raise TransportError(f"Database connection failed: {e}")

    try:
        yield conn
    except pymysql.MySQLError as e:
        raise TransportError(f"Database query failed: {e}")
    finally:
        try:
            conn.close()
        except pymysql.MySQLError as e:
            logger.warning(f"Error closing database connection: {e}")


def fetch_rows(conn: Any, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
    with conn.cursor() as cursor:
        cursor.execute(sql, tuple(params))
        return list(cursor.fetchall())


class DirectDatastoreTransport(Transport):
    """Reads the source store's MySQL schema through PyMySQL."""

    mode = TransportMode.DIRECT_DATASTORE.value

    def __init__(
        self,
        credentials: DatastoreCredentials,
        settings: SyncSettings,
        connect: Callable[..., Any] = pymysql.connect
    ):
        self.credentials = credentials
        self.tables = WPTables(credentials.prefix)
        self.page_size = settings.datastore_page_size
        self.connect_timeout = settings.datastore_connect_timeout
        self.read_timeout = settings.datastore_read_timeout
        self._connect = connect

    def _connection(self):
        """Open a connection for one page fetch."""
        return mysql_connection(self.credentials, self._connect, self.connect_timeout, self.read_timeout)

    @staticmethod
    def _keyset(cursor: PageCursor, modified_col: str, key_col: str) -> Tuple[str, List[Any]]:
        """WHERE fragment continuing after the last row of the previous page."""
        if cursor.last_modified is None:
            return f"{modified_col} >= %s", [to_mysql(cursor.since)]
        last = to_mysql(cursor.last_modified)
        return (
            f"({modified_col} > %s OR ({modified_col} = %s AND {key_col} > %s))",
            [last, last, cursor.last_key]
        )

    def _next_cursor(self, cursor: PageCursor, rows: List[Dict[str, Any]], modified_key: str, key: str):
        if len(rows) < self.page_size:
            return None
        last = rows[-1]
        return replace(
            cursor,
            page=cursor.page + 1,
            last_modified=parse_datetime(last[modified_key]),
            last_key=last[key]
        )

    # ==================== Catalog ====================

    def fetch_catalog_page(self, cursor: PageCursor) -> Page[CatalogRecord]:
        t = self.tables
        where, params = self._keyset(cursor, 'p.post_modified_gmt', 'p.ID')
        sql = f"""
            SELECT p.ID, p.post_title, p.post_status, p.post_excerpt,
                   p.post_date_gmt, p.post_modified_gmt,
                   {_pivot(PRODUCT_META_KEYS, 'pm')}
            FROM {t.posts} p
            LEFT JOIN {t.postmeta} pm
              ON pm.post_id = p.ID AND pm.meta_key IN ({_placeholders(PRODUCT_META_KEYS)})
            WHERE p.post_type = 'product'
              AND p.post_status IN ({_placeholders(PRODUCT_STATUSES)})
              AND {where}
            GROUP BY p.ID
            ORDER BY p.post_modified_gmt ASC, p.ID ASC
            LIMIT %s
        """
        with self._connection() as conn:
            rows = fetch_rows(conn, sql, [*PRODUCT_META_KEYS, *PRODUCT_STATUSES, *params, self.page_size])
            thumbnail_ids = sorted({parse_int(r.get('thumbnail_id')) for r in rows} - {None, 0})
            images = {}
            if thumbnail_ids:
                image_rows = fetch_rows(
                    conn,
                    f"SELECT ID, guid FROM {t.posts} WHERE ID IN ({_placeholders(thumbnail_ids)})",
                    thumbnail_ids
                )
                images = {r['ID']: r['guid'] for r in image_rows}

        logger.info(f"Fetched {len(rows)} products from database (page {cursor.page})")
        items, errors = [], []
        for row in rows:
            try:
                items.append(build_catalog_record(row, images.get(parse_int(row.get('thumbnail_id')))))
            except (KeyError, TypeError, ValueError) as e:
                errors.append(f"product {row.get('ID')}: {e}")
        return Page(items, self._next_cursor(cursor, rows, 'post_modified_gmt', 'ID'), errors)

    # ==================== Transactions ====================

    def fetch_transactions_page(self, cursor: PageCursor) -> Page[TransactionRecord]:
        t = self.tables
        where, params = self._keyset(cursor, 'p.post_modified_gmt', 'p.ID')
        with self._connection() as conn:
            rows = fetch_rows(conn, f"""
                SELECT p.ID, p.post_status, p.post_date_gmt, p.post_modified_gmt
                FROM {t.posts} p
                WHERE p.post_type = 'shop_order'
                  AND {where}
                ORDER BY p.post_modified_gmt ASC, p.ID ASC
                LIMIT %s
            """, [*params, self.page_size])

            order_ids = [r['ID'] for r in rows]
            meta_by_order: Dict[int, Dict[str, str]] = {oid: {} for oid in order_ids}
            items_by_order: Dict[int, List[Dict[str, Any]]] = {oid: [] for oid in order_ids}

            if order_ids:
                meta_rows = fetch_rows(conn, f"""
                    SELECT post_id, meta_key, meta_value
                    FROM {t.postmeta}
                    WHERE post_id IN ({_placeholders(order_ids)})
                      AND meta_key IN ({_placeholders(ORDER_META_KEYS)})
                """, [*order_ids, *ORDER_META_KEYS])
                for m in meta_rows:
                    meta_by_order[m['post_id']].setdefault(m['meta_key'], m['meta_value'])

                item_rows = fetch_rows(conn, f"""
                    SELECT oi.order_id, oi.order_item_id, oi.order_item_name,
                           {_pivot(LINE_ITEM_META_KEYS, 'im')}
                    FROM {t.order_items} oi
                    LEFT JOIN {t.order_itemmeta} im
                      ON im.order_item_id = oi.order_item_id
                     AND im.meta_key IN ({_placeholders(LINE_ITEM_META_KEYS)})
                    WHERE oi.order_id IN ({_placeholders(order_ids)})
                      AND oi.order_item_type = 'line_item'
                    GROUP BY oi.order_item_id, oi.order_id, oi.order_item_name
                    ORDER BY oi.order_item_id ASC
                """, [*LINE_ITEM_META_KEYS, *order_ids])
                for item in item_rows:
                    items_by_order[item['order_id']].append(item)

        logger.info(f"Fetched {len(rows)} orders from database (page {cursor.page})")
        items, errors = [], []
        for row in rows:
            try:
                line_items = [build_line_item_record(i) for i in items_by_order[row['ID']]]
                items.append(build_transaction_record(row, meta_by_order[row['ID']], line_items))
            except (KeyError, TypeError, ValueError) as e:
                errors.append(f"order {row.get('ID')}: {e}")
        return Page(items, self._next_cursor(cursor, rows, 'post_modified_gmt', 'ID'), errors)

    # ==================== Accounts ====================

    def fetch_accounts_page(self, cursor: PageCursor) -> Page[AccountRecord]:
        t = self.tables
        # wp_users has no modification column; registration time is the watermark
        where, params = self._keyset(cursor, 'u.user_registered', 'u.ID')
        with self._connection() as conn:
            rows = fetch_rows(conn, f"""
                SELECT u.ID, u.user_email, u.user_registered,
                       {_pivot(USER_META_KEYS, 'um')}
                FROM {t.users} u
                LEFT JOIN {t.usermeta} um
                  ON um.user_id = u.ID AND um.meta_key IN ({_placeholders(USER_META_KEYS)})
                WHERE {where}
                GROUP BY u.ID
                ORDER BY u.user_registered ASC, u.ID ASC
                LIMIT %s
            """, [*USER_META_KEYS, *params, self.page_size])

        logger.info(f"Fetched {len(rows)} registered users from database (page {cursor.page})")
        items, errors = [], []
        for row in rows:
            try:
                items.append(build_account_record(row))
            except (KeyError, TypeError, ValueError) as e:
                errors.append(f"user {row.get('ID')}: {e}")
        return Page(items, self._next_cursor(cursor, rows, 'user_registered', 'ID'), errors)

    def fetch_guest_contacts_page(self, cursor: PageCursor) -> Page[GuestContact]:
        t = self.tables
        params: List[Any] = [to_mysql(cursor.since)]
        after_email = ''
        if cursor.last_key is not None:
            after_email = 'AND em.meta_value > %s'
            params.append(cursor.last_key)
        with self._connection() as conn:
            rows = fetch_rows(conn, f"""
                SELECT em.meta_value AS billing_email,
                       MAX(fn.meta_value) AS billing_first_name,
                       MAX(ln.meta_value) AS billing_last_name,
                       MIN(p.post_date_gmt) AS first_order_date
                FROM {t.posts} p
                JOIN {t.postmeta} em ON em.post_id = p.ID AND em.meta_key = '_billing_email'
                LEFT JOIN {t.postmeta} fn ON fn.post_id = p.ID AND fn.meta_key = '_billing_first_name'
                LEFT JOIN {t.postmeta} ln ON ln.post_id = p.ID AND ln.meta_key = '_billing_last_name'
                WHERE p.post_type = 'shop_order'
                  AND p.post_modified_gmt >= %s
                  AND em.meta_value <> ''
                  {after_email}
                  AND NOT EXISTS (
                      SELECT 1 FROM {t.users} u WHERE u.user_email = em.meta_value
                  )
                GROUP BY em.meta_value
                ORDER BY em.meta_value ASC
                LIMIT %s
            """, [*params, self.page_size])

        logger.info(f"Fetched {len(rows)} guest contacts from database (page {cursor.page})")
        items = [
            GuestContact(
                email=r['billing_email'],
                first_name=r.get('billing_first_name') or None,
                last_name=r.get('billing_last_name') or None,
                first_seen_at=parse_datetime(r.get('first_order_date')),
            )
            for r in rows
        ]
        next_cursor = None
        if len(rows) >= self.page_size:
            next_cursor = replace(cursor, page=cursor.page + 1, last_key=rows[-1]['billing_email'])
        return Page(items, next_cursor)

"""
Database operations for StoreSync.
Uses SQLite for storage.

Every synced row is keyed by (connection_id, remote_id), so repeated runs
update in place and connections never collide.
"""

import json
import sqlite3
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple
from contextlib import contextmanager

from .crypto import EncryptedPayload
from ..sync.models import (
    ACCOUNTS, CATALOG, ENTITIES, GUEST_REMOTE_ID, TRANSACTIONS,
    AccountRecord, CatalogRecord, Connection, GuestContact, TransactionRecord
)
from ..sync.parsing import parse_datetime, to_iso, utcnow

logger = logging.getLogger(__name__)

# Table and column names
CONNECTIONS_TABLE = "connections"
CATALOG_TABLE = "catalog_items"
ACCOUNTS_TABLE = "accounts"
TRANSACTIONS_TABLE = "transactions"
LINE_ITEMS_TABLE = "line_items"

ENTITY_TABLES = {
    CATALOG: CATALOG_TABLE,
    TRANSACTIONS: TRANSACTIONS_TABLE,
    ACCOUNTS: ACCOUNTS_TABLE,
}

# Transaction statuses that count towards the local sales counter
COUNTED_STATUSES = ('completed', 'processing', 'on-hold')

ATTRIBUTION_COLUMNS = (
    'origin', 'source', 'source_type', 'campaign', 'medium',
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'referrer', 'landing_page', 'device_type', 'session_page_views',
)


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path, busy_timeout: float = 30.0):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._ensure_tables()

    @contextmanager
    def _connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        """Create tables if they don't exist."""
        with self._connection() as conn:
            cursor = conn.cursor()

            # Reconcilers write from several threads at once
            cursor.execute("PRAGMA journal_mode = WAL")

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {CONNECTIONS_TABLE} (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    credentials_nonce TEXT,
                    credentials_ciphertext TEXT,
                    catalog_cursor TEXT,
                    transactions_cursor TEXT,
                    accounts_cursor TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {CATALOG_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    connection_id TEXT NOT NULL,
                    remote_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    sku TEXT,
                    price REAL,
                    status TEXT,
                    description TEXT,
                    image_url TEXT,
                    vendor_sales INTEGER,
                    local_sales INTEGER NOT NULL DEFAULT 0,
                    date_created TEXT,
                    date_modified TEXT,
                    synced_at TEXT,
                    UNIQUE (connection_id, remote_id),
                    FOREIGN KEY (connection_id) REFERENCES {CONNECTIONS_TABLE}(id) ON DELETE CASCADE
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {ACCOUNTS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    connection_id TEXT NOT NULL,
                    remote_id INTEGER NOT NULL,
                    email TEXT,
                    first_name TEXT,
                    last_name TEXT,
                    is_guest INTEGER NOT NULL DEFAULT 0,
                    date_created TEXT,
                    date_modified TEXT,
                    synced_at TEXT,
                    FOREIGN KEY (connection_id) REFERENCES {CONNECTIONS_TABLE}(id) ON DELETE CASCADE
                )
            """)

            # Registered accounts are unique by remote id, guests (remote id 0) by email
            cursor.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_natural_key
                ON {ACCOUNTS_TABLE}(connection_id, remote_id) WHERE remote_id != {GUEST_REMOTE_ID}
            """)
            cursor.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_guest_email
                ON {ACCOUNTS_TABLE}(connection_id, lower(email)) WHERE remote_id = {GUEST_REMOTE_ID}
            """)

            attribution_ddl = ",\n".join(
                f"{col} {'INTEGER' if col == 'session_page_views' else 'TEXT'}"
                for col in ATTRIBUTION_COLUMNS
            )
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {TRANSACTIONS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    connection_id TEXT NOT NULL,
                    remote_id INTEGER NOT NULL,
                    number TEXT,
                    status TEXT,
                    currency TEXT,
                    total REAL NOT NULL DEFAULT 0,
                    subtotal REAL,
                    discount_total REAL,
                    shipping_total REAL,
                    tax_total REAL,
                    payment_method TEXT,
                    payment_method_title TEXT,
                    transaction_ref TEXT,
                    customer_remote_id INTEGER,
                    billing_email TEXT,
                    billing_json TEXT,
                    shipping_json TEXT,
                    {attribution_ddl},
                    attribution_other_json TEXT,
                    account_id INTEGER,
                    date_created TEXT,
                    date_modified TEXT,
                    synced_at TEXT,
                    UNIQUE (connection_id, remote_id),
                    FOREIGN KEY (connection_id) REFERENCES {CONNECTIONS_TABLE}(id) ON DELETE CASCADE,
                    FOREIGN KEY (account_id) REFERENCES {ACCOUNTS_TABLE}(id) ON DELETE SET NULL
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {LINE_ITEMS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    connection_id TEXT NOT NULL,
                    transaction_id INTEGER NOT NULL,
                    remote_id INTEGER NOT NULL,
                    name TEXT,
                    sku TEXT,
                    product_remote_id INTEGER,
                    quantity INTEGER NOT NULL DEFAULT 0,
                    unit_price REAL,
                    line_total REAL,
                    catalog_item_id INTEGER,
                    UNIQUE (transaction_id, remote_id),
                    FOREIGN KEY (transaction_id) REFERENCES {TRANSACTIONS_TABLE}(id) ON DELETE CASCADE,
                    FOREIGN KEY (catalog_item_id) REFERENCES {CATALOG_TABLE}(id) ON DELETE SET NULL
                )
            """)

            # Lookups used by linking and modified-since queries
            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_transactions_customer
                ON {TRANSACTIONS_TABLE}(connection_id, customer_remote_id)
            """)
            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_transactions_email
                ON {TRANSACTIONS_TABLE}(connection_id, lower(billing_email))
            """)
            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_line_items_product
                ON {LINE_ITEMS_TABLE}(connection_id, product_remote_id)
            """)
            for table in ENTITY_TABLES.values():
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_modified
                    ON {table}(connection_id, date_modified)
                """)

            logger.info(f"Database initialized at {self.db_path}")

    # ==================== Connection Operations ====================

    def save_connection(
        self,
        id: str,
        name: str,
        mode: str,
        credentials: EncryptedPayload
    ) -> bool:
        """
        Create or update a connection's name, mode and encrypted credentials.
        Cursors are kept on update. Returns True if created.
        """
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT id FROM {CONNECTIONS_TABLE} WHERE id = ?", (id,))
            if cursor.fetchone():
                cursor.execute(f"""
                    UPDATE {CONNECTIONS_TABLE}
                    SET name = ?, mode = ?, credentials_nonce = ?, credentials_ciphertext = ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                """, (name, mode, credentials.nonce, credentials.ciphertext, id))
                return False
            cursor.execute(f"""
                INSERT INTO {CONNECTIONS_TABLE} (id, name, mode, credentials_nonce, credentials_ciphertext)
                VALUES (?, ?, ?, ?, ?)
            """, (id, name, mode, credentials.nonce, credentials.ciphertext))
            return True

    def get_connection(self, id: str) -> Optional[Connection]:
        """Load a connection with its cursors."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT * FROM {CONNECTIONS_TABLE} WHERE id = ?", (id,))
            row = cursor.fetchone()
        if not row:
            return None

        credentials = None
        if row['credentials_nonce'] and row['credentials_ciphertext']:
            credentials = EncryptedPayload(nonce=row['credentials_nonce'], ciphertext=row['credentials_ciphertext'])
        return Connection(
            id=row['id'],
            name=row['name'],
            mode=row['mode'],
            credentials=credentials,
            cursors={entity: parse_datetime(row[f"{entity}_cursor"]) for entity in ENTITIES},
        )

    def list_connections(self) -> List[Dict[str, Any]]:
        """Connections without their credentials."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT id, name, mode, catalog_cursor, transactions_cursor, accounts_cursor,
                       created_at, updated_at
                FROM {CONNECTIONS_TABLE}
                ORDER BY name
            """)
            return [dict(row) for row in cursor.fetchall()]

    def update_cursor(self, connection_id: str, entity: str, value: datetime) -> None:
        """Advance the per-entity watermark for a connection."""
        if entity not in ENTITIES:
            raise ValueError(f"Unknown entity: {entity}")
        with self._connection() as conn:
            conn.execute(f"""
                UPDATE {CONNECTIONS_TABLE}
                SET {entity}_cursor = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """, (to_iso(value), connection_id))

    # ==================== Generic Upsert ====================

    @staticmethod
    def _upsert(
        cursor: sqlite3.Cursor,
        table: str,
        key: Dict[str, Any],
        values: Dict[str, Any]
    ) -> Tuple[int, bool]:
        """
        Update the row matching `key` or insert a new one.
        Returns (row id, created).
        """
        where = " AND ".join(f"{col} = ?" for col in key)
        cursor.execute(f"SELECT id FROM {table} WHERE {where}", tuple(key.values()))
        row = cursor.fetchone()

        if row:
            assignments = ", ".join(f"{col} = ?" for col in values)
            cursor.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                (*values.values(), row['id'])
            )
            return row['id'], False

        columns = {**key, **values}
        cursor.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' * len(columns))})",
            tuple(columns.values())
        )
        return cursor.lastrowid, True

    # ==================== Catalog Operations ====================

    def upsert_catalog_item(self, connection_id: str, record: CatalogRecord) -> bool:
        """Insert or update a catalog item. Returns True if created."""
        values = {
            'name': record.name,
            'sku': record.sku,
            'price': record.price,
            'status': record.status,
            'description': record.description,
            'image_url': record.image_url,
            'vendor_sales': record.vendor_sales,
            'date_created': to_iso(record.date_created),
            'date_modified': to_iso(record.date_modified),
            'synced_at': to_iso(utcnow()),
        }
        with self._connection() as conn:
            _, created = self._upsert(
                conn.cursor(), CATALOG_TABLE,
                {'connection_id': connection_id, 'remote_id': record.remote_id},
                values
            )
            return created

    def link_line_items_to_catalog(self, connection_id: str) -> int:
        """Resolve line items whose catalog item arrived after them."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                UPDATE {LINE_ITEMS_TABLE}
                SET catalog_item_id = (
                    SELECT c.id FROM {CATALOG_TABLE} c
                    WHERE c.connection_id = {LINE_ITEMS_TABLE}.connection_id
                      AND c.remote_id = {LINE_ITEMS_TABLE}.product_remote_id
                )
                WHERE connection_id = ?
                  AND catalog_item_id IS NULL
                  AND product_remote_id IS NOT NULL
                  AND EXISTS (
                      SELECT 1 FROM {CATALOG_TABLE} c
                      WHERE c.connection_id = {LINE_ITEMS_TABLE}.connection_id
                        AND c.remote_id = {LINE_ITEMS_TABLE}.product_remote_id
                  )
            """, (connection_id,))
            return cursor.rowcount

    def recompute_local_sales(self, connection_id: str) -> None:
        """Recount units sold per catalog item from local line items."""
        placeholders = ", ".join("?" * len(COUNTED_STATUSES))
        with self._connection() as conn:
            conn.execute(f"""
                UPDATE {CATALOG_TABLE}
                SET local_sales = (
                    SELECT COALESCE(SUM(li.quantity), 0)
                    FROM {LINE_ITEMS_TABLE} li
                    JOIN {TRANSACTIONS_TABLE} t ON t.id = li.transaction_id
                    WHERE li.catalog_item_id = {CATALOG_TABLE}.id
                      AND t.status IN ({placeholders})
                )
                WHERE connection_id = ?
            """, (*COUNTED_STATUSES, connection_id))

    # ==================== Account Operations ====================

    def find_account_id(
        self,
        connection_id: str,
        remote_id: Optional[int] = None,
        email: Optional[str] = None
    ) -> Optional[int]:
        """
        Resolve a local account: by registered remote id first, then by
        email (registered accounts before guests).
        """
        with self._connection() as conn:
            cursor = conn.cursor()
            if remote_id:
                cursor.execute(f"""
                    SELECT id FROM {ACCOUNTS_TABLE}
                    WHERE connection_id = ? AND remote_id = ?
                """, (connection_id, remote_id))
                row = cursor.fetchone()
                if row:
                    return row['id']
            if email:
                cursor.execute(f"""
                    SELECT id FROM {ACCOUNTS_TABLE}
                    WHERE connection_id = ? AND lower(email) = lower(?)
                    ORDER BY is_guest ASC, id ASC
                    LIMIT 1
                """, (connection_id, email))
                row = cursor.fetchone()
                if row:
                    return row['id']
        return None

    def upsert_account(self, connection_id: str, record: AccountRecord) -> Tuple[int, bool]:
        """Insert or update a registered account. Returns (id, created)."""
        values = {
            'email': record.email,
            'first_name': record.first_name,
            'last_name': record.last_name,
            'is_guest': 0,
            'date_created': to_iso(record.date_created),
            'date_modified': to_iso(record.date_modified),
            'synced_at': to_iso(utcnow()),
        }
        with self._connection() as conn:
            return self._upsert(
                conn.cursor(), ACCOUNTS_TABLE,
                {'connection_id': connection_id, 'remote_id': record.remote_id},
                values
            )

    def upsert_guest_account(self, connection_id: str, contact: GuestContact) -> Tuple[str, Optional[int]]:
        """
        Materialize a guest account for a contact email.

        Returns:
            Tuple(outcome, account id) where outcome is 'created', 'updated'
            (existing guest refreshed) or 'skipped' (email belongs to a
            registered account).
        """
        now = to_iso(utcnow())
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT id, is_guest, first_name, last_name FROM {ACCOUNTS_TABLE}
                WHERE connection_id = ? AND lower(email) = lower(?)
                ORDER BY is_guest ASC, id ASC
                LIMIT 1
            """, (connection_id, contact.email))
            row = cursor.fetchone()

            if row and not row['is_guest']:
                return 'skipped', row['id']

            if row:
                cursor.execute(f"""
                    UPDATE {ACCOUNTS_TABLE}
                    SET first_name = ?, last_name = ?, date_modified = ?, synced_at = ?
                    WHERE id = ?
                """, (
                    contact.first_name or row['first_name'],
                    contact.last_name or row['last_name'],
                    now, now, row['id']
                ))
                return 'updated', row['id']

            cursor.execute(f"""
                INSERT INTO {ACCOUNTS_TABLE}
                (connection_id, remote_id, email, first_name, last_name, is_guest,
                 date_created, date_modified, synced_at)
                VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?)
            """, (
                connection_id, GUEST_REMOTE_ID, contact.email, contact.first_name, contact.last_name,
                to_iso(contact.first_seen_at) or now, now, now
            ))
            return 'created', cursor.lastrowid

    def link_transactions_to_account(
        self,
        connection_id: str,
        account_id: int,
        remote_id: Optional[int],
        email: Optional[str]
    ) -> int:
        """
        Fill in the account link of transactions that were stored before
        this account existed. Returns the number of transactions linked.
        """
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                UPDATE {TRANSACTIONS_TABLE}
                SET account_id = ?
                WHERE connection_id = ?
                  AND account_id IS NULL
                  AND (
                      (? != 0 AND customer_remote_id = ?)
                      OR (COALESCE(customer_remote_id, 0) = 0
                          AND ? IS NOT NULL AND lower(billing_email) = lower(?))
                  )
            """, (account_id, connection_id, remote_id or 0, remote_id or 0, email, email))
            return cursor.rowcount

    def link_unlinked_transactions(self, connection_id: str) -> int:
        """
        Link every transaction without an account to the account that now
        exists for it: registered customers by remote id, guests by email.
        """
        owner = f"""
            COALESCE(
                (SELECT a.id FROM {ACCOUNTS_TABLE} a
                 WHERE a.connection_id = {TRANSACTIONS_TABLE}.connection_id
                   AND a.remote_id = {TRANSACTIONS_TABLE}.customer_remote_id
                   AND a.remote_id != {GUEST_REMOTE_ID}),
                (SELECT a.id FROM {ACCOUNTS_TABLE} a
                 WHERE a.connection_id = {TRANSACTIONS_TABLE}.connection_id
                   AND COALESCE({TRANSACTIONS_TABLE}.customer_remote_id, 0) = 0
                   AND lower(a.email) = lower({TRANSACTIONS_TABLE}.billing_email)
                 ORDER BY a.is_guest ASC, a.id ASC
                 LIMIT 1)
            )
        """
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                UPDATE {TRANSACTIONS_TABLE}
                SET account_id = {owner}
                WHERE connection_id = ? AND account_id IS NULL AND {owner} IS NOT NULL
            """, (connection_id,))
            return cursor.rowcount

    # ==================== Transaction Operations ====================

    def upsert_transaction(
        self,
        connection_id: str,
        record: TransactionRecord,
        account_id: Optional[int]
    ) -> Tuple[bool, int]:
        """
        Insert or update a transaction and replace all of its line items,
        in a single database transaction.

        Returns:
            Tuple(created, line items written)
        """
        attribution = record.attribution
        values = {
            'number': record.number,
            'status': record.status,
            'currency': record.currency,
            'total': record.total,
            'subtotal': record.subtotal,
            'discount_total': record.discount_total,
            'shipping_total': record.shipping_total,
            'tax_total': record.tax_total,
            'payment_method': record.payment_method,
            'payment_method_title': record.payment_method_title,
            'transaction_ref': record.transaction_ref,
            'customer_remote_id': record.customer_remote_id,
            'billing_email': record.billing.email,
            'billing_json': json.dumps(record.billing.to_dict()),
            'shipping_json': json.dumps(record.shipping.to_dict()),
            **{col: getattr(attribution, col) for col in ATTRIBUTION_COLUMNS},
            'attribution_other_json': json.dumps(attribution.other) if attribution.other else None,
            'account_id': account_id,
            'date_created': to_iso(record.date_created),
            'date_modified': to_iso(record.date_modified),
            'synced_at': to_iso(utcnow()),
        }

        with self._connection() as conn:
            cursor = conn.cursor()
            transaction_id, created = self._upsert(
                cursor, TRANSACTIONS_TABLE,
                {'connection_id': connection_id, 'remote_id': record.remote_id},
                values
            )

            # Clear existing items for this transaction to avoid dups/stale
            cursor.execute(f"DELETE FROM {LINE_ITEMS_TABLE} WHERE transaction_id = ?", (transaction_id,))

            for item in record.line_items:
                cursor.execute(f"""
                    INSERT INTO {LINE_ITEMS_TABLE}
                    (connection_id, transaction_id, remote_id, name, sku, product_remote_id,
                     quantity, unit_price, line_total, catalog_item_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, (
                        SELECT id FROM {CATALOG_TABLE} WHERE connection_id = ? AND remote_id = ?
                    ))
                """, (
                    connection_id, transaction_id, item.remote_id, item.name, item.sku,
                    item.product_remote_id, item.quantity, item.unit_price, item.line_total,
                    connection_id, item.product_remote_id
                ))

            return created, len(record.line_items)

    def get_transaction(self, connection_id: str, remote_id: int) -> Optional[Dict[str, Any]]:
        """Get a stored transaction with its line items."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT * FROM {TRANSACTIONS_TABLE} WHERE connection_id = ? AND remote_id = ?
            """, (connection_id, remote_id))
            row = cursor.fetchone()
            if not row:
                return None
            transaction = dict(row)
            cursor.execute(f"""
                SELECT * FROM {LINE_ITEMS_TABLE} WHERE transaction_id = ? ORDER BY remote_id
            """, (transaction['id'],))
            transaction['items'] = [dict(r) for r in cursor.fetchall()]
            return transaction

    # ==================== Queries ====================

    def get_modified_since(
        self,
        entity: str,
        connection_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Rows of one entity type modified at or after `since`, oldest first."""
        table = ENTITY_TABLES.get(entity)
        if table is None:
            raise ValueError(f"Unknown entity: {entity}")

        query = f"SELECT * FROM {table} WHERE connection_id = ?"
        params: List[Any] = [connection_id]
        if since:
            query += " AND date_modified >= ?"
            params.append(to_iso(since))
        query += " ORDER BY date_modified ASC, id ASC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def count_rows(self, connection_id: str) -> Dict[str, int]:
        """Row counts per table for one connection."""
        counts = {}
        with self._connection() as conn:
            cursor = conn.cursor()
            for name, table in [*ENTITY_TABLES.items(), ('line_items', LINE_ITEMS_TABLE)]:
                cursor.execute(f"SELECT COUNT(*) AS count FROM {table} WHERE connection_id = ?", (connection_id,))
                counts[name] = cursor.fetchone()['count']
            cursor.execute(f"""
                SELECT COUNT(*) AS count FROM {ACCOUNTS_TABLE} WHERE connection_id = ? AND is_guest = 1
            """, (connection_id,))
            counts['guest_accounts'] = cursor.fetchone()['count']
        return counts

    def get_sales_mismatches(self, connection_id: str, threshold: int = 5) -> List[Dict[str, Any]]:
        """Catalog items whose vendor-reported and locally counted sales disagree."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT remote_id, name, sku, vendor_sales, local_sales,
                       ABS(vendor_sales - local_sales) AS difference
                FROM {CATALOG_TABLE}
                WHERE connection_id = ?
                  AND vendor_sales IS NOT NULL
                  AND ABS(vendor_sales - local_sales) > ?
                ORDER BY difference DESC, remote_id ASC
            """, (connection_id, threshold))
            return [dict(row) for row in cursor.fetchall()]


# Global database instance
_db_instance: Optional[Database] = None


def get_database(db_path: Optional[Path] = None) -> Database:
    """Get the global database instance."""
    global _db_instance
    if _db_instance is None:
        if db_path is None:
            from .config import get_config
            db_path = get_config().db_path
        _db_instance = Database(db_path)
    return _db_instance

"""
Entity reconcilers.

Each reconciler pages one entity type from a transport in cursor order and
upserts it into the local store by natural key (connection id, remote id).
A failing record is logged and counted; it never stops the page loop.
Page-level failures (TransportError) propagate to the orchestrator.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from ..core.database import Database
from .models import (
    ACCOUNTS, CATALOG, GUEST_REMOTE_ID, TRANSACTIONS,
    AccountRecord, CatalogRecord, Connection, EntityResult,
    Page, PageCursor, TransactionRecord
)
from .transports.base import Transport

logger = logging.getLogger(__name__)


class Reconciler(ABC):
    """Pages one entity type and upserts it locally."""

    entity: str = ''

    def __init__(self, connection: Connection, transport: Transport, db: Database, full: bool = False):
        self.connection = connection
        self.transport = transport
        self.db = db
        self.full = full
        # A full resync ignores the stored watermark and pages everything
        self.since: Optional[datetime] = None if full else connection.cursor_for(self.entity)

    @abstractmethod
    def fetch_page(self, cursor: PageCursor) -> Page:
        pass

    @abstractmethod
    def reconcile(self, record: Any, result: EntityResult) -> bool:
        """Upsert one record. Returns True if it was created."""

    def finish(self, result: EntityResult) -> None:
        """Hook run after the last page, before the cursor moves."""

    def run(self) -> EntityResult:
        result = EntityResult()
        max_seen: Optional[datetime] = None
        earliest_failed: Optional[datetime] = None
        hold_cursor = False
        cursor: Optional[PageCursor] = PageCursor(since=self.since)
        page_number = 0

        scope = "full resync" if self.full else f"since {self.since or 'the beginning'}"
        logger.info(f"[{self.connection.id}] Syncing {self.entity} ({scope})")

        while cursor is not None:
            page_number += 1
            page = self.fetch_page(cursor)

            # Items the transport could not convert
            for error in page.errors:
                result.error_count += 1
                logger.warning(f"[{self.connection.id}] {self.entity}: {error}")

            for record in page.items:
                result.fetched += 1
                modified = record.date_modified
                try:
                    if self.reconcile(record, result):
                        result.created += 1
                    else:
                        result.updated += 1
                except Exception as e:
                    result.error_count += 1
                    logger.error(f"[{self.connection.id}] Failed to sync {self.entity} {record.remote_id}: {e}")
                    if modified is None:
                        # No timestamp to retry from, so the cursor stays where it started
                        hold_cursor = True
                    elif earliest_failed is None or modified < earliest_failed:
                        earliest_failed = modified
                    continue

                if modified and (max_seen is None or modified > max_seen):
                    max_seen = modified

            logger.info(
                f"[{self.connection.id}] {self.entity} page {page_number}: "
                f"{len(page.items)} items, {result.fetched} fetched so far"
            )
            cursor = page.next_cursor

        self.finish(result)
        if hold_cursor:
            logger.warning(
                f"[{self.connection.id}] {self.entity} cursor not advanced: "
                f"a failed record had no modification time"
            )
        else:
            self._advance_cursor(earliest_failed or max_seen)

        logger.info(
            f"[{self.connection.id}] {self.entity} done: {result.created} created, "
            f"{result.updated} updated, {result.error_count} errors"
        )
        return result

    def _advance_cursor(self, target: Optional[datetime]) -> None:
        # Failed records hold the cursor at their timestamp so the next run retries them
        if target is None:
            return
        if self.since is not None and target < self.since:
            return
        self.db.update_cursor(self.connection.id, self.entity, target)
        logger.info(f"[{self.connection.id}] {self.entity} cursor advanced to {target.isoformat()}")


class CatalogReconciler(Reconciler):
    entity = CATALOG

    def fetch_page(self, cursor: PageCursor) -> Page[CatalogRecord]:
        return self.transport.fetch_catalog_page(cursor)

    def reconcile(self, record: CatalogRecord, result: EntityResult) -> bool:
        return self.db.upsert_catalog_item(self.connection.id, record)

    def finish(self, result: EntityResult) -> None:
        # Line items stored before their catalog item existed
        linked = self.db.link_line_items_to_catalog(self.connection.id)
        if linked:
            logger.info(f"[{self.connection.id}] Linked {linked} line items to catalog items")
        result.extra['line_items_linked'] = linked
        self.db.recompute_local_sales(self.connection.id)


class TransactionReconciler(Reconciler):
    entity = TRANSACTIONS

    def fetch_page(self, cursor: PageCursor) -> Page[TransactionRecord]:
        return self.transport.fetch_transactions_page(cursor)

    def reconcile(self, record: TransactionRecord, result: EntityResult) -> bool:
        # Registered customers resolve by remote id, guests by contact email.
        # A missing account leaves the link empty for the account pass to fill.
        if record.customer_remote_id:
            account_id = self.db.find_account_id(self.connection.id, remote_id=record.customer_remote_id)
        else:
            account_id = self.db.find_account_id(self.connection.id, email=record.contact_email)

        created, line_items = self.db.upsert_transaction(self.connection.id, record, account_id)
        result.extra['line_items_written'] = result.extra.get('line_items_written', 0) + line_items
        return created

    def finish(self, result: EntityResult) -> None:
        # Accounts and catalog items written by the sibling passes while this one ran
        result.extra['accounts_linked'] = self.db.link_unlinked_transactions(self.connection.id)
        result.extra['line_items_linked'] = self.db.link_line_items_to_catalog(self.connection.id)
        self.db.recompute_local_sales(self.connection.id)


class AccountReconciler(Reconciler):
    entity = ACCOUNTS

    def __init__(self, connection: Connection, transport: Transport, db: Database, full: bool = False):
        super().__init__(connection, transport, db, full)
        # Guest contacts come from transactions, so they page on that watermark
        self.guest_since: Optional[datetime] = None if full else connection.cursor_for(TRANSACTIONS)

    def fetch_page(self, cursor: PageCursor) -> Page[AccountRecord]:
        return self.transport.fetch_accounts_page(cursor)

    def reconcile(self, record: AccountRecord, result: EntityResult) -> bool:
        account_id, created = self.db.upsert_account(self.connection.id, record)
        linked = self.db.link_transactions_to_account(self.connection.id, account_id, record.remote_id, record.email)
        if linked:
            result.extra['transactions_linked'] = result.extra.get('transactions_linked', 0) + linked
        return created

    def finish(self, result: EntityResult) -> None:
        self.sync_guests(result)

    def sync_guests(self, result: EntityResult) -> None:
        """
        Materialize guest accounts for contact emails that no registered
        account owns. Deduplicated per connection by email.
        """
        counts = {'guests_created': 0, 'guests_updated': 0, 'guests_skipped': 0}
        cursor: Optional[PageCursor] = PageCursor(since=self.guest_since)

        while cursor is not None:
            page = self.transport.fetch_guest_contacts_page(cursor)
            for error in page.errors:
                result.error_count += 1
                logger.warning(f"[{self.connection.id}] guest contacts: {error}")

            for contact in page.items:
                result.fetched += 1
                try:
                    outcome, account_id = self.db.upsert_guest_account(self.connection.id, contact)
                except Exception as e:
                    result.error_count += 1
                    logger.error(f"[{self.connection.id}] Failed to sync guest {contact.email}: {e}")
                    continue
                counts[f"guests_{outcome}"] += 1
                # Guests are account rows too; the breakdown stays in extra
                if outcome == 'created':
                    result.created += 1
                elif outcome == 'updated':
                    result.updated += 1
                if outcome != 'skipped':
                    self.db.link_transactions_to_account(
                        self.connection.id, account_id, GUEST_REMOTE_ID, contact.email
                    )
            cursor = page.next_cursor

        result.extra.update(counts)
        logger.info(
            f"[{self.connection.id}] Guest pass: {counts['guests_created']} created, "
            f"{counts['guests_updated']} updated, {counts['guests_skipped']} owned by registered accounts"
        )


RECONCILERS = {
    CATALOG: CatalogReconciler,
    TRANSACTIONS: TransactionReconciler,
    ACCOUNTS: AccountReconciler,
}

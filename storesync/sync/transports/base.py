"""
Transport interface: fetch one page of one entity type given a cursor.
"""

from abc import ABC, abstractmethod

from ..models import (
    AccountRecord, CatalogRecord, GuestContact, Page, PageCursor, TransactionRecord
)


class Transport(ABC):
    """Pluggable page-fetch strategy."""

    mode: str = ''

    @abstractmethod
    def fetch_catalog_page(self, cursor: PageCursor) -> Page[CatalogRecord]:
        ...

    @abstractmethod
    def fetch_transactions_page(self, cursor: PageCursor) -> Page[TransactionRecord]:
        ...

    @abstractmethod
    def fetch_accounts_page(self, cursor: PageCursor) -> Page[AccountRecord]:
        ...

    @abstractmethod
    def fetch_guest_contacts_page(self, cursor: PageCursor) -> Page[GuestContact]:
        """Contacts from transactions placed without a registered account."""
        ...

    def close(self) -> None:
        """Release anything held between page fetches."""

    def __enter__(self) -> 'Transport':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

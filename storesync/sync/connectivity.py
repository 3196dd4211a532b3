"""
Connection checks for candidate store credentials.

Fetches a single product through the REST transport. The fixture fallback
is switched off here, otherwise a wrong key (401) would look like success.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from .models import ApiCredentials, PageCursor
from .settings import SyncSettings
from .transports.remote_api import RemoteApiTransport

logger = logging.getLogger(__name__)


@dataclass
class ConnectionCheck:
    store_url: str
    products_found: int

    def to_dict(self) -> Dict[str, Any]:
        return {'store_url': self.store_url, 'products_found': self.products_found}


def check_api_connection(credentials: ApiCredentials, settings: Optional[SyncSettings] = None) -> ConnectionCheck:
    """
    Fetch one page of one product with the given credentials.

    Raises:
        TransportError: the store could not be reached or refused the credentials
    """
    settings = replace(settings or SyncSettings(), remote_per_page=1, fixture_fallback=False)
    with RemoteApiTransport(credentials, settings) as transport:
        page = transport.fetch_catalog_page(PageCursor())

    logger.info(f"Connection check against {credentials.url} succeeded ({len(page.items)} products)")
    return ConnectionCheck(store_url=credentials.url, products_found=len(page.items))

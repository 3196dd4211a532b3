"""
WordPress table prefix discovery.

Looks for the canonical WordPress tables (posts, users, options) in the
schema catalog, derives their prefix and checks whether WooCommerce's
order item table exists under it.
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Set

import pymysql

from ..core.exceptions import PrefixNotFoundError
from .models import DatastoreCredentials
from .transports.direct_datastore import fetch_rows, mysql_connection
from .transports.tables import DEFAULT_PREFIX, is_valid_prefix

logger = logging.getLogger(__name__)

CANONICAL_SUFFIXES = ('posts', 'users', 'options')
COMMERCE_TABLE = 'woocommerce_order_items'

_TABLE_PATTERN = re.compile(r'^(.+?)(posts|users|options)$')


@dataclass
class PrefixDiscovery:
    prefix: str
    has_commerce_tables: bool
    alternatives: List[str] = field(default_factory=list)
    tables: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'prefix': self.prefix,
            'has_commerce_tables': self.has_commerce_tables,
            'alternatives': self.alternatives,
            'tables': self.tables,
        }


def rank_prefixes(table_names: List[str]) -> List[str]:
    """
    Candidate prefixes, best first.

    A prefix covering more canonical tables ranks higher; ties go to the
    default wp_ prefix, then alphabetical order.
    """
    coverage: Dict[str, Set[str]] = defaultdict(set)
    for name in table_names:
        match = _TABLE_PATTERN.match(name)
        if match and is_valid_prefix(match.group(1)):
            coverage[match.group(1)].add(match.group(2))

    return sorted(
        coverage,
        key=lambda prefix: (-len(coverage[prefix]), prefix != DEFAULT_PREFIX, prefix)
    )


def discover_prefix(
    credentials: DatastoreCredentials,
    connect: Callable[..., Any] = pymysql.connect,
    connect_timeout: int = 10
) -> PrefixDiscovery:
    """
    Detect the table prefix of a WordPress database.

    Raises:
        PrefixNotFoundError: no WordPress tables in the schema
        TransportError: the database could not be reached or queried
    """
    with mysql_connection(credentials, connect, connect_timeout=connect_timeout) as conn:
        conn.ping()
        rows = fetch_rows(conn, """
            SELECT table_name AS table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND (table_name LIKE %s OR table_name LIKE %s OR table_name LIKE %s)
            ORDER BY table_name
        """, [credentials.database, *(f"%{suffix}" for suffix in CANONICAL_SUFFIXES)])

        tables = [row.get('table_name') or row.get('TABLE_NAME') for row in rows]
        if not tables:
            raise PrefixNotFoundError(
                f"No WordPress tables found in database '{credentials.database}'. "
                f"Please verify it contains a WordPress installation."
            )

        candidates = rank_prefixes(tables)
        if not candidates:
            raise PrefixNotFoundError(
                f"Found {len(tables)} matching tables in '{credentials.database}' but none with a usable prefix"
            )
        prefix = candidates[0]

        commerce_rows = fetch_rows(conn, """
            SELECT table_name AS table_name
            FROM information_schema.tables
            WHERE table_schema = %s AND table_name = %s
            LIMIT 1
        """, [credentials.database, f"{prefix}{COMMERCE_TABLE}"])

    has_commerce = bool(commerce_rows)
    logger.info(
        f"Detected prefix '{prefix}' in {credentials.database} "
        f"(WooCommerce tables: {'yes' if has_commerce else 'no'}, alternatives: {candidates[1:]})"
    )
    return PrefixDiscovery(
        prefix=prefix,
        has_commerce_tables=has_commerce,
        alternatives=candidates[1:],
        tables=[t for t in tables if t.startswith(prefix)][:10],
    )

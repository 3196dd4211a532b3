"""
WordPress table names with a configurable prefix.

The prefix comes from user input, so it is reduced to [A-Za-z0-9_] before
it is ever placed in SQL text. Values always go through query parameters.
"""

import re

from ...core.exceptions import ConfigurationError

DEFAULT_PREFIX = 'wp_'
_UNSAFE = re.compile(r'[^A-Za-z0-9_]')
_VALID_PREFIX = re.compile(r'^[A-Za-z0-9_]+_$')


def sanitize_identifier(value: str) -> str:
    return _UNSAFE.sub('', value or '')


def normalize_prefix(prefix: str) -> str:
    """Sanitize and make sure the prefix ends with an underscore."""
    normalized = sanitize_identifier(prefix)
    if not normalized:
        raise ConfigurationError(f"Invalid table prefix: {prefix!r}")
    if not normalized.endswith('_'):
        normalized += '_'
    return normalized


def is_valid_prefix(prefix: str) -> bool:
    return bool(_VALID_PREFIX.match(prefix or ''))


def wp_table(prefix: str, table_name: str) -> str:
    """
    Quoted table name, e.g. wp_table('shop_', 'posts') -> `shop_posts`.
    """
    clean_prefix = sanitize_identifier(prefix or DEFAULT_PREFIX)
    if not clean_prefix:
        raise ConfigurationError(
            "Invalid table prefix: must contain at least one alphanumeric character or underscore"
        )
    clean_name = sanitize_identifier(table_name)
    if not clean_name:
        raise ConfigurationError(f"Invalid table name: {table_name!r}")
    return f"`{clean_prefix}{clean_name}`"


class WPTables:
    """Table names used by the sync queries for one prefix."""

    def __init__(self, prefix: str):
        self.prefix = prefix
        self.posts = wp_table(prefix, 'posts')
        self.postmeta = wp_table(prefix, 'postmeta')
        self.users = wp_table(prefix, 'users')
        self.usermeta = wp_table(prefix, 'usermeta')
        self.order_items = wp_table(prefix, 'woocommerce_order_items')
        self.order_itemmeta = wp_table(prefix, 'woocommerce_order_itemmeta')

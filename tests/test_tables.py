"""
Tests for table prefix handling.
"""

import pytest

from storesync.core.exceptions import ConfigurationError
from storesync.sync.transports.tables import WPTables, is_valid_prefix, normalize_prefix, wp_table


class TestTables:

    def test_table_name(self):
        assert wp_table('shop_', 'posts') == '`shop_posts`'

    def test_injection_stripped(self):
        assert wp_table("wp_`; DROP TABLE x; --", 'posts') == '`wp_DROPTABLExposts`'

    def test_empty_prefix_after_sanitizing(self):
        with pytest.raises(ConfigurationError):
            wp_table('`;--', 'posts')

    def test_default_prefix(self):
        assert wp_table('', 'users') == '`wp_users`'

    def test_normalize_adds_underscore(self):
        assert normalize_prefix('shop') == 'shop_'
        with pytest.raises(ConfigurationError):
            normalize_prefix('!!')

    def test_valid_prefix(self):
        assert is_valid_prefix('wp_')
        assert is_valid_prefix('site1_wp_')
        assert not is_valid_prefix('wp')
        assert not is_valid_prefix('wp-')

    def test_wp_tables(self):
        tables = WPTables('abc_')
        assert tables.order_items == '`abc_woocommerce_order_items`'
        assert tables.usermeta == '`abc_usermeta`'

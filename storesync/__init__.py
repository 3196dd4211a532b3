"""
StoreSync - keeps a local SQLite mirror of a WooCommerce store in sync.
"""

__version__ = "1.0.0"

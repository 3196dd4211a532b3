"""
Canned REST payloads served when the store answers 401/404.

This keeps demo and disconnected environments usable; it is not meant to
stand in for a reachable store. The payloads use the same shape as the
WooCommerce v3 endpoints so they go through the normal conversion path.
"""

from datetime import timedelta
from typing import Any, Dict, List

from .parsing import utcnow


def _iso(days_ago: int) -> str:
    return (utcnow() - timedelta(days=days_ago)).replace(microsecond=0, tzinfo=None).isoformat()


def fixture_products() -> List[Dict[str, Any]]:
    return [
        {
            'id': 101,
            'name': 'Sample Hoodie',
            'sku': 'SAMPLE-HOODIE',
            'price': '49.00',
            'status': 'publish',
            'short_description': 'Heavyweight cotton hoodie',
            'total_sales': 12,
            'images': [{'src': 'https://placehold.co/300x300?text=Hoodie'}],
            'date_created_gmt': _iso(60),
            'date_modified_gmt': _iso(5),
        },
        {
            'id': 102,
            'name': 'Sample Mug',
            'sku': 'SAMPLE-MUG',
            'price': '14.50',
            'status': 'publish',
            'short_description': 'Stoneware mug, 330ml',
            'total_sales': 40,
            'images': [{'src': 'https://placehold.co/300x300?text=Mug'}],
            'date_created_gmt': _iso(90),
            'date_modified_gmt': _iso(2),
        },
    ]


def fixture_orders() -> List[Dict[str, Any]]:
    return [
        {
            'id': 5001,
            'number': '5001',
            'status': 'completed',
            'currency': 'USD',
            'total': '112.00',
            'discount_total': '0.00',
            'shipping_total': '5.00',
            'total_tax': '9.00',
            'customer_id': 7,
            'payment_method': 'stripe',
            'payment_method_title': 'Credit Card',
            'transaction_id': 'ch_demo_5001',
            'date_created_gmt': _iso(7),
            'date_modified_gmt': _iso(6),
            'billing': {'first_name': 'Ada', 'last_name': 'Byron', 'email': 'ada@example.com', 'country': 'GB'},
            'shipping': {'first_name': 'Ada', 'last_name': 'Byron', 'country': 'GB'},
            'meta_data': [
                {'id': 1, 'key': '_wc_order_attribution_utm_source', 'value': 'newsletter'},
                {'id': 2, 'key': '_wc_order_attribution_utm_medium', 'value': 'email'},
                {'id': 3, 'key': '_wc_order_attribution_device_type', 'value': 'Desktop'},
            ],
            'line_items': [
                {'id': 9001, 'name': 'Sample Hoodie', 'product_id': 101, 'sku': 'SAMPLE-HOODIE',
                 'quantity': 2, 'total': '98.00'},
            ],
        },
        {
            'id': 5002,
            'number': '5002',
            'status': 'processing',
            'currency': 'USD',
            'total': '33.50',
            'discount_total': '0.00',
            'shipping_total': '4.50',
            'total_tax': '0.00',
            'customer_id': 0,
            'payment_method': 'paypal',
            'payment_method_title': 'PayPal',
            'date_created_gmt': _iso(3),
            'date_modified_gmt': _iso(3),
            'billing': {'first_name': 'Grace', 'last_name': 'Hopper', 'email': 'grace@example.com', 'country': 'US'},
            'shipping': {'first_name': 'Grace', 'last_name': 'Hopper', 'country': 'US'},
            'meta_data': [],
            'line_items': [
                {'id': 9002, 'name': 'Sample Mug', 'product_id': 102, 'sku': 'SAMPLE-MUG',
                 'quantity': 2, 'total': '29.00'},
            ],
        },
    ]


def fixture_customers() -> List[Dict[str, Any]]:
    return [
        {
            'id': 7,
            'email': 'ada@example.com',
            'first_name': 'Ada',
            'last_name': 'Byron',
            'date_created_gmt': _iso(120),
            'date_modified_gmt': _iso(30),
        },
    ]


FIXTURES = {
    'products': fixture_products,
    'orders': fixture_orders,
    'customers': fixture_customers,
}


def fixture_for(endpoint: str) -> List[Dict[str, Any]]:
    factory = FIXTURES.get(endpoint)
    return factory() if factory else []

"""
Tolerant value parsers for source payloads.
WooCommerce returns numbers as strings and dates with or without offsets.
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

# MySQL zero dates show up in older WordPress installs
_ZERO_DATES = ('0000-00-00 00:00:00', '0000-00-00')


def parse_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Safely parse a float value."""
    if value is None or value == '':
        return default
    try:
        if isinstance(value, str):
            # Remove currency symbols and whitespace
            value = re.sub(r'[^\d.,\-]', '', value)
            if ',' in value and '.' in value:
                value = value.replace(',', '')
            value = value.replace(',', '.')
        return float(value)
    except (ValueError, TypeError):
        return default


def parse_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Safely parse an integer value."""
    if value is None or value == '':
        return default
    try:
        if isinstance(value, str):
            value = re.sub(r'[^\d.\-]', '', value)
        return int(float(value))
    except (ValueError, TypeError):
        return default


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string or datetime into an aware UTC datetime.
    Naive values are taken to be UTC (the *_gmt columns and fields).
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text in _ZERO_DATES:
            return None
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage."""
    return value.astimezone(timezone.utc).isoformat() if value else None


def to_mysql(value: Optional[datetime]) -> str:
    """Format a watermark for comparison against *_gmt DATETIME columns."""
    if value is None:
        return '1970-01-01 00:00:00'
    return value.astimezone(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

"""
Marketing attribution for transactions.

Order metadata arrives as a loose key/value bag. It is narrowed here, at
the transport boundary, into a fixed set of known attribution fields plus
an explicit `other` bucket for marketing keys we do not model.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, Mapping, Optional

from .parsing import parse_int

# Prefixes WooCommerce and common tracking plugins put in front of keys
_KEY_PREFIXES = ('wc_order_attribution_',)

# Normalized meta key -> Attribution field
_KNOWN_KEYS = {
    'utm_source': 'utm_source',
    'utm_medium': 'utm_medium',
    'utm_campaign': 'utm_campaign',
    'utm_term': 'utm_term',
    'utm_content': 'utm_content',
    'source_type': 'source_type',
    'referrer': 'referrer',
    'landing_page': 'landing_page',
    'session_entry': 'landing_page',
    'device_type': 'device_type',
    'session_pages': 'session_page_views',
    'session_page_views': 'session_page_views',
    'origin': 'origin',
    'source': 'source',
    'campaign': 'campaign',
    'medium': 'medium',
}

_MARKETING_HINTS = ('source', 'medium', 'campaign')


def normalize_key(key: str) -> str:
    """'_wc_order_attribution_utm_source' -> 'utm_source'."""
    key = key.strip().lower().lstrip('_')
    for prefix in _KEY_PREFIXES:
        if key.startswith(prefix):
            key = key[len(prefix):]
    return key


def _is_marketing_key(raw_key: str, key: str) -> bool:
    if key.startswith('utm_'):
        return True
    if raw_key.strip().lower().lstrip('_').startswith(_KEY_PREFIXES):
        return True
    return any(hint in key for hint in _MARKETING_HINTS)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass
class Attribution:
    origin: str = 'Direct'
    source: str = 'direct'
    source_type: str = 'direct'
    medium: str = 'none'
    campaign: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None
    referrer: Optional[str] = None
    landing_page: Optional[str] = None
    device_type: Optional[str] = None
    session_page_views: Optional[int] = None
    other: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_meta(cls, meta: Mapping[str, Any], top_level: Optional[Mapping[str, Any]] = None) -> 'Attribution':
        """
        Build attribution from a metadata mapping and optional top-level
        order fields (which win over metadata when present).
        """
        found: Dict[str, Any] = {}
        other: Dict[str, str] = {}

        for raw_key, raw_value in meta.items():
            if not isinstance(raw_key, str):
                continue
            key = normalize_key(raw_key)
            value = _clean(raw_value)
            if value is None:
                continue
            target = _KNOWN_KEYS.get(key)
            if target:
                found.setdefault(target, value)
            elif _is_marketing_key(raw_key, key):
                other[key] = value

        for key, target in _KNOWN_KEYS.items():
            value = _clean((top_level or {}).get(key))
            if value is not None and key == target:
                found[target] = value

        utm_source = found.get('utm_source')
        return cls(
            origin=found.get('origin') or utm_source or 'Direct',
            source=found.get('source') or utm_source or 'direct',
            source_type=found.get('source_type') or ('utm' if utm_source else 'direct'),
            medium=found.get('medium') or found.get('utm_medium') or 'none',
            campaign=found.get('campaign') or found.get('utm_campaign'),
            utm_source=utm_source,
            utm_medium=found.get('utm_medium'),
            utm_campaign=found.get('utm_campaign'),
            utm_term=found.get('utm_term'),
            utm_content=found.get('utm_content'),
            referrer=found.get('referrer'),
            landing_page=found.get('landing_page'),
            device_type=found.get('device_type'),
            session_page_views=parse_int(found.get('session_page_views')),
            other=other,
        )

    @classmethod
    def from_meta_list(cls, meta_data: Iterable[Any], top_level: Optional[Mapping[str, Any]] = None) -> 'Attribution':
        """Accept the REST API shape: [{'key': ..., 'value': ...}, ...]."""
        meta = {}
        for entry in meta_data or []:
            if isinstance(entry, dict) and entry.get('key'):
                value = entry.get('value')
                if isinstance(value, (dict, list)):
                    continue
                meta.setdefault(entry['key'], value)
        return cls.from_meta(meta, top_level)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

"""
Decoding of collection responses that may be malformed.

WordPress hosts regularly emit PHP notices ahead of the JSON body, raw
control characters inside strings, invalid escapes, or a body cut off
mid-object. Decoding tries, in order: strict JSON, sanitized JSON, and a
brace-matching scan that keeps every complete object it can find.
"""

import json
import logging
import re
from typing import Any, List, Tuple

from ..core.exceptions import ParseError

logger = logging.getLogger(__name__)

# Control characters that are never valid raw inside a JSON document
_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]')
_RAW_WHITESPACE = re.compile(r'[\n\r\t]')
# A valid escape, or a lone backslash that needs escaping itself
_ESCAPES = re.compile(r'\\(["\\/bfnrt]|u[0-9a-fA-F]{4})|\\')


def _fix_escape(match: 're.Match') -> str:
    return match.group(0) if match.group(1) else '\\\\'


def _strip_preamble(text: str) -> str:
    """Drop anything printed before the JSON document starts."""
    text = text.lstrip('\ufeff')
    stripped = text.lstrip()
    if stripped[:1] in ('[', '{'):
        return stripped
    start = text.find('[')
    return text[start:] if start != -1 else text


def sanitize_json_text(text: str) -> str:
    """Repair character-level problems without touching structure."""
    text = _strip_preamble(text)
    text = _CONTROL_CHARS.sub('', text)
    text = _RAW_WHITESPACE.sub(' ', text)
    return _ESCAPES.sub(_fix_escape, text)


def extract_partial_objects(text: str) -> List[Any]:
    """
    Extract every syntactically complete top-level object from a
    (possibly truncated) JSON array.
    """
    start = text.find('[')
    if start == -1:
        return []

    objects = []
    pos = start + 1
    length = len(text)

    while pos < length:
        brace = text.find('{', pos)
        if brace == -1:
            break

        depth = 0
        in_string = False
        escaped = False
        end = -1
        for i in range(brace, length):
            ch = text[i]
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = in_string
            elif ch == '"':
                in_string = not in_string
            elif not in_string:
                if ch == '{':
                    depth += 1
                elif ch == '}':
                    depth -= 1
                    if depth == 0:
                        end = i
                        break

        if end == -1:
            # Unbalanced: the body was cut off inside this object
            break

        candidate = text[brace:end + 1]
        try:
            objects.append(json.loads(candidate))
        except ValueError:
            try:
                objects.append(json.loads(sanitize_json_text(candidate)))
            except ValueError:
                logger.debug(f"Skipped unparseable object at offset {brace}")
        pos = end + 1

    return objects


def decode_json_list(text: str) -> Tuple[List[Any], bool]:
    """
    Decode a JSON array body.

    Returns:
        Tuple(items, recovered) where recovered is True when anything
        beyond strict parsing was needed.

    Raises:
        ParseError: nothing could be recovered.
    """
    try:
        data = json.loads(text)
        if isinstance(data, list):
            return data, False
        raise ParseError(f"Expected a JSON array, got {type(data).__name__}")
    except ValueError:
        pass

    try:
        data = json.loads(sanitize_json_text(text))
        if isinstance(data, list):
            logger.info("Response decoded after sanitizing escape sequences")
            return data, True
    except ValueError as e:
        logger.warning(f"Sanitized response still invalid: {e}")

    objects = extract_partial_objects(text)
    if not objects:
        raise ParseError(f"No complete objects found in {len(text)} characters of response")

    logger.warning(f"Recovered {len(objects)} objects from malformed response")
    return objects, True

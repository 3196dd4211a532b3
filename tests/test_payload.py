"""
Tests for malformed response recovery.
"""

import pytest

from storesync.core.exceptions import ParseError
from storesync.sync.payload import decode_json_list, extract_partial_objects, sanitize_json_text


class TestSanitize:

    def test_invalid_escape_doubled(self):
        assert sanitize_json_text('["C:\\path"]') == '["C:\\\\path"]'

    def test_valid_escapes_kept(self):
        text = '["a\\"b", "\\u00e9", "x\\ny"]'
        assert sanitize_json_text(text) == text

    def test_control_characters_removed(self):
        assert sanitize_json_text('["a\x07b"]') == '["ab"]'

    def test_php_notice_preamble_dropped(self):
        text = '<b>Notice</b>: Undefined index in functions.php\n[{"id": 1}]'
        assert sanitize_json_text(text) == '[{"id": 1}]'


class TestPartialObjects:

    def test_truncated_array(self):
        text = '[{"id": 1, "name": "A"}, {"id": 2, "name": "B {x}"}, {"id": 3, "na'
        assert extract_partial_objects(text) == [{'id': 1, 'name': 'A'}, {'id': 2, 'name': 'B {x}'}]

    def test_nested_objects_stay_whole(self):
        text = '[{"id": 1, "billing": {"email": "a@b.c"}}, {"id": 2'
        assert extract_partial_objects(text) == [{'id': 1, 'billing': {'email': 'a@b.c'}}]

    def test_braces_inside_strings(self):
        text = '[{"id": 1, "note": "}\\"{"}]'
        assert extract_partial_objects(text) == [{'id': 1, 'note': '}"{'}]

    def test_no_array(self):
        assert extract_partial_objects('<html>502 Bad Gateway</html>') == []


class TestDecodeJsonList:

    def test_strict(self):
        assert decode_json_list('[{"id": 1}]') == ([{'id': 1}], False)

    def test_sanitized(self):
        items, recovered = decode_json_list('[{"id": 1, "path": "C:\\dir"}]')
        assert items == [{'id': 1, 'path': 'C:\\dir'}]
        assert recovered

    def test_partial(self):
        items, recovered = decode_json_list('[{"id": 1}, {"id": 2}, {"id": 3, "total": "1')
        assert [i['id'] for i in items] == [1, 2]
        assert recovered

    def test_nothing_recoverable(self):
        with pytest.raises(ParseError):
            decode_json_list('[{"id": 1')

    def test_object_instead_of_array(self):
        with pytest.raises(ParseError):
            decode_json_list('{"code": "woocommerce_rest_cannot_view"}')

    def test_empty_array(self):
        assert decode_json_list('[]') == ([], False)

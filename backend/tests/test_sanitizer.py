"""
Gatekeeper: Input Sanitizer Unit Tests
========================================

What we test:
    ✅ Tags are stripped and script/style bodies removed
    ✅ Idempotence over a corpus of nasty inputs
    ✅ "email" keys are normalized when valid, kept when not
    ✅ Tree walk: mappings recurse, lists sanitize strings only, scalars pass
    ✅ Operator keys are scrubbed
"""

import pytest

from gatekeeper.services.sanitizer import (
    normalize_email,
    sanitize_mapping,
    sanitize_string,
    sanitize_value,
    scrub_operator_keys,
)

NASTY_INPUTS = [
    "<script>alert(1)</script>",
    "<SCRIPT src=//evil.example/x.js></SCRIPT>hello",
    "<scr<script>ipt>alert(1)</script>",
    "<img src=x onerror=alert(1)>",
    "<b>bold</b> & <i>italic</i>",
    "a < b && c > d",
    "<style>body{display:none}</style>visible",
    "<script>never closed",
    "<!-- comment -->text",
    "&lt;script&gt;",
    "plain text",
    "",
]


class TestSanitizeString:

    def test_script_block_removed_entirely(self):
        result = sanitize_string("<script>alert(1)</script>")
        assert "<" not in result
        assert ">" not in result
        assert "alert" not in result

    def test_tags_stripped_text_kept(self):
        assert sanitize_string("<b>Hello</b> <em>world</em>") == "Hello world"

    def test_event_handler_attribute_dropped(self):
        result = sanitize_string('<img src="x" onerror="alert(1)">caption')
        assert result == "caption"

    def test_unclosed_script_swallows_rest(self):
        assert sanitize_string("ok<script>alert(1)") == "ok"

    def test_style_block_removed(self):
        assert sanitize_string("<style>p{}</style>visible") == "visible"

    def test_plain_text_unchanged(self):
        assert sanitize_string("hello world") == "hello world"

    @pytest.mark.parametrize("value", NASTY_INPUTS)
    def test_idempotent(self, value):
        once = sanitize_string(value)
        assert sanitize_string(once) == once

    @pytest.mark.parametrize("value", NASTY_INPUTS)
    def test_no_tags_survive(self, value):
        result = sanitize_string(value)
        assert "<" not in result
        assert ">" not in result


class TestEmailNormalization:

    def test_valid_address_is_case_folded(self):
        assert normalize_email("John.Doe@Example.COM") == "john.doe@example.com"

    def test_invalid_address_kept_as_is(self):
        assert normalize_email("not an email") == "not an email"

    def test_email_key_normalized_in_mapping(self):
        result = sanitize_mapping({"email": "Jane@Example.ORG", "name": "Jane"})
        assert result == {"email": "jane@example.org", "name": "Jane"}

    def test_nested_email_key_normalized(self):
        result = sanitize_mapping({"contact": {"email": "Ops@Example.net"}})
        assert result["contact"]["email"] == "ops@example.net"

    def test_similar_keys_not_normalized(self):
        result = sanitize_mapping({"user_email": "Ops@Example.net"})
        assert result["user_email"] == "Ops@Example.net"

    def test_invalid_email_still_stripped(self):
        result = sanitize_mapping({"email": "<b>nobody</b>"})
        assert result["email"] == "nobody"


class TestTreeWalk:

    def test_mapping_shape_preserved(self):
        payload = {
            "title": "<h1>Title</h1>",
            "count": 3,
            "ratio": 0.5,
            "active": True,
            "missing": None,
            "tags": ["<b>a</b>", 7, None, {"x": "<i>y</i>"}],
            "nested": {"deep": {"text": "<p>para</p>"}},
        }
        result = sanitize_value(payload)
        assert result == {
            "title": "Title",
            "count": 3,
            "ratio": 0.5,
            "active": True,
            "missing": None,
            "tags": ["a", 7, None, {"x": "<i>y</i>"}],
            "nested": {"deep": {"text": "para"}},
        }

    def test_top_level_list(self):
        assert sanitize_value(["<b>x</b>", 1]) == ["x", 1]

    @pytest.mark.parametrize("value", [None, 1, 2.5, False])
    def test_scalars_pass_through(self, value):
        assert sanitize_value(value) == value

    def test_whole_tree_idempotent(self):
        payload = {"a": "<script>x</script>y", "email": "A@Example.com", "l": ["<i>z</i>"]}
        once = sanitize_value(payload)
        assert sanitize_value(once) == once

    def test_input_not_mutated(self):
        payload = {"a": "<b>x</b>"}
        sanitize_value(payload)
        assert payload == {"a": "<b>x</b>"}


class TestOperatorKeys:

    def test_dollar_and_dot_keys_scrubbed(self):
        result, keys = scrub_operator_keys({"$where": "1", "profile.name": "x", "ok": {"$gt": ""}})
        assert result == {"_where": "1", "profile_name": "x", "ok": {"_gt": ""}}
        assert sorted(keys) == ["$gt", "$where", "profile.name"]

    def test_keys_inside_lists_scrubbed(self):
        result, keys = scrub_operator_keys([{"$ne": 1}])
        assert result == [{"_ne": 1}]
        assert keys == ["$ne"]

    def test_clean_payload_untouched(self):
        payload = {"name": "x", "items": [1, 2]}
        result, keys = scrub_operator_keys(payload)
        assert result == payload
        assert keys == []

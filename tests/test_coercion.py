"""
Tests for best-effort tool input coercion.
"""

import pytest

from toolbridge.mcp.coercion import (
    coerce_input,
    is_argument_mapping,
    repair_json_like,
    try_coerce_input,
)


class TestCoerceInput:

    @pytest.mark.parametrize("raw,expected", [
        ("", {}),
        ("   ", {}),
        (None, {}),
        ("5", {"input": "5"}),
        ("  hello world ", {"input": "hello world"}),
        (["a", "b"], {"inputs": ["a", "b"]}),
        (("a",), {"inputs": ["a"]}),
        (5, {"value": 5}),
        (2.5, {"value": 2.5}),
        (True, {"value": True}),
        ({}, {}),
        ({"a": 1}, {"a": 1}),
    ])
    def test_rules(self, raw, expected):
        assert coerce_input(raw) == expected

    def test_fenced_json_block(self):
        raw = 'Here you go:\n```json\n{"path": "/tmp/a.txt"}\n```'
        assert coerce_input(raw) == {"path": "/tmp/a.txt"}

    def test_fenced_block_without_language(self):
        assert coerce_input('```\n{"n": 1}\n```') == {"n": 1}

    def test_json_object_string(self):
        assert coerce_input('{"a": 5, "b": 3}') == {"a": 5, "b": 3}

    def test_unquoted_keys_and_single_quotes(self):
        assert coerce_input("{city: 'Paris', days: 3}") == {"city": "Paris", "days": 3}

    def test_unparseable_falls_back_to_empty(self):
        assert coerce_input("{not json at all") == {}
        assert coerce_input("key: value") == {}
        assert coerce_input(object()) == {}

    def test_try_coerce_reports_failure(self):
        assert try_coerce_input("key: value") is None
        assert try_coerce_input(object()) is None
        assert try_coerce_input("") == {}

    def test_fenced_non_object_falls_through(self):
        # a fenced JSON list is not a mapping, so the scalar-string rule takes it
        raw = "```json\n[1, 2]\n```"
        assert try_coerce_input(raw) == {"input": raw}


class TestHelpers:

    def test_is_argument_mapping(self):
        assert is_argument_mapping({"a": 1})
        assert not is_argument_mapping({})
        assert not is_argument_mapping("a")
        assert not is_argument_mapping(None)

    def test_repair_json_like(self):
        assert repair_json_like("{a: 'x', b: 2}") == '{"a": "x", "b": 2}'

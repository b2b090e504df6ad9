"""Tests for tool output parsing."""

import json

from ..tool_output import (
    convert_python_literal,
    extract_object,
    extract_text,
    looks_like_python_literal,
    parse_memory_text,
    parse_tool_object,
    parse_tool_response,
)


class TestParseMemoryText:
    """Tests for the tolerant memory text parser."""

    def test_json_results(self):
        text = json.dumps({"results": [{"memory": {"content_hash": "h1", "content": "a"},
                                        "similarity_score": 0.8}]})
        assert parse_memory_text(text) == [{"content_hash": "h1", "content": "a", "similarity_score": 0.8}]

    def test_json_list(self):
        assert parse_memory_text('[{"content": "a"}, 3]') == [{"content": "a"}]

    def test_python_literal(self):
        text = "{'memories': [{'content': 'x', 'is_cluster': False, 'note': None}]}"
        assert parse_memory_text(text) == [{"content": "x", "is_cluster": False, "note": None}]

    def test_valid_json_is_not_rewritten(self):
        text = json.dumps([{"content": "don't rewrite True values"}])
        assert parse_memory_text(text) == [{"content": "don't rewrite True values"}]

    def test_embedded_object(self):
        text = 'Found results:\n{"memories": [{"content": "a"}]}\nDone'
        assert parse_memory_text(text) == [{"content": "a"}]

    def test_embedded_object_is_balanced(self):
        text = 'Result: {"content": "a", "tags": ["x"]} and later {"content": "b"}'
        assert parse_memory_text(text) == [{"content": "a", "tags": ["x"]}]

    def test_embedded_object_skips_unbalanced_brace(self):
        assert extract_object('stray { brace then {"status": "healthy"} trailing') == {"status": "healthy"}
        assert extract_object("no object {here") is None

    def test_list_of_result_entries(self):
        text = json.dumps([{"memory": {"content_hash": "h1", "content": "a"}, "similarity_score": 0.7}])
        assert parse_memory_text(text) == [{"content_hash": "h1", "content": "a", "similarity_score": 0.7}]

    def test_garbage(self):
        assert parse_memory_text("no memories here") == []
        assert parse_memory_text("") == []
        assert parse_memory_text(None) == []


class TestHelpers:
    """Tests for literal sniffing and content extraction."""

    def test_sniff(self):
        assert looks_like_python_literal("{'a': 1}") is True
        assert looks_like_python_literal('{"a": 1}') is False

    def test_convert(self):
        assert convert_python_literal("{'a': True, 'b': None}") == '{"a": true, "b": null}'

    def test_extract_text_from_blocks(self):
        content = [{"type": "image"}, {"type": "text", "text": "hello"}]
        assert extract_text(content) == "hello"
        assert extract_text("plain") == "plain"
        assert extract_text(None) == ""

    def test_parse_tool_response(self):
        content = [{"type": "text", "text": '{"results": []}'}]
        assert parse_tool_response(content) == []

    def test_parse_tool_object(self):
        content = [{"type": "text", "text": '{"status": "healthy"}'}]
        assert parse_tool_object(content) == {"status": "healthy"}

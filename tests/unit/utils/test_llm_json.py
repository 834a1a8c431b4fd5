"""Tests for tolerant JSON extraction from generated text."""

from __future__ import annotations

import pytest

from app.domain.exceptions import GenerationMalformedError
from app.utils.llm_json import extract_json, find_balanced, strip_code_fences, strip_comments


def test_plain_object():
    assert extract_json('{"a": 1}') == {"a": 1}


def test_fenced_block_with_prose():
    text = 'Here is your plan:\n```json\n{"summary": "ok", "items": [1, 2]}\n```\nEnjoy!'
    assert extract_json(text) == {"summary": "ok", "items": [1, 2]}


def test_trailing_commas_removed():
    assert extract_json('{"a": [1, 2,], "b": {"c": 3,},}') == {"a": [1, 2], "b": {"c": 3}}


def test_comments_removed_but_urls_in_strings_kept():
    text = '{\n  // the link\n  "url": "https://example.com/x", /* note */ "n": 2\n}'
    assert extract_json(text) == {"url": "https://example.com/x", "n": 2}


def test_braces_inside_strings_do_not_confuse_balancing():
    text = 'prefix {"text": "use {curly} and \\"quotes\\"", "ok": true} suffix }'
    assert extract_json(text) == {"text": 'use {curly} and "quotes"', "ok": True}


def test_top_level_array_when_no_object():
    assert find_balanced("values: [1, [2, 3]] tail") == "[1, [2, 3]]"


@pytest.mark.parametrize("text", [None, "", "   ", "no json here", '{"unterminated": [1, 2'])
def test_malformed_text_raises(text):
    with pytest.raises(GenerationMalformedError):
        extract_json(text)


def test_unparseable_block_raises_with_preview():
    with pytest.raises(GenerationMalformedError) as excinfo:
        extract_json("{'single': 'quotes'}")
    assert "preview" in excinfo.value.detail


def test_strip_helpers_are_noops_on_clean_text():
    assert strip_code_fences('{"a": 1}') == '{"a": 1}'
    assert strip_comments('{"a": "b//c"}') == '{"a": "b//c"}'

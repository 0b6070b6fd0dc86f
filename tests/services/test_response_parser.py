"""
Unit tests for structured response parsing.

Tests cover:
- Fenced block extraction (with and without a language tag)
- Prose around the payload
- Strict parsing: invalid JSON and wrong top-level type raise ParseError
"""

import json

import pytest

from consumerlab.core.exceptions import ParseError
from consumerlab.services.response_parser import (
    extract_json_payload,
    parse_structured_response,
)


class TestExtractJsonPayload:
    """Tests for extract_json_payload."""

    def test_bare_text_is_trimmed(self):
        assert extract_json_payload('  [{"a": 1}]\n') == '[{"a": 1}]'

    def test_json_fence(self):
        content = 'Here you go:\n```json\n[{"a": 1}]\n```\nHope this helps!'
        assert extract_json_payload(content) == '[{"a": 1}]'

    def test_plain_fence(self):
        assert extract_json_payload("```\n[1, 2]\n```") == "[1, 2]"

    def test_first_fenced_block_wins(self):
        content = "```json\n[1]\n```\nand also\n```json\n[2]\n```"
        assert extract_json_payload(content) == "[1]"

    def test_none_is_empty(self):
        assert extract_json_payload(None) == ""


class TestParseStructuredResponse:
    """Tests for parse_structured_response."""

    def test_parses_fenced_array(self):
        content = '```json\n[{"profileId": "p1", "preference": 7}]\n```'
        assert parse_structured_response(content) == [{"profileId": "p1", "preference": 7}]

    def test_invalid_json_raises(self):
        with pytest.raises(ParseError) as exc_info:
            parse_structured_response("[{'single': 'quotes'}]")
        assert exc_info.value.raw_content == "[{'single': 'quotes'}]"

    def test_no_repair_of_trailing_comma(self):
        with pytest.raises(ParseError):
            parse_structured_response('[{"a": 1},]')

    def test_object_when_array_expected_raises(self):
        with pytest.raises(ParseError, match="Expected JSON list"):
            parse_structured_response('{"profiles": []}')

    def test_expected_dict(self):
        assert parse_structured_response('{"a": 1}', expected=dict) == {"a": 1}

    def test_empty_content_raises(self):
        with pytest.raises(ParseError):
            parse_structured_response("")

    def test_bare_and_fenced_serializations_agree(self):
        records = [
            {"profileId": "p1", "conceptId": "c1", "preference": 7, "reasoning": "I think so."},
            {"profileId": "p2", "conceptId": "c1", "preference": 3, "reasoning": "Not for me, \"really\"."},
        ]
        serialized = json.dumps(records)

        assert parse_structured_response(serialized) == records
        assert parse_structured_response(f"```json\n{serialized}\n```") == records

from __future__ import annotations

import json

import pytest

from lessonflow.ai.json_parser import extract_json_object, parse_json_with_fallback, strip_json_fences


def test_strip_json_fences() -> None:
  assert strip_json_fences('```json\n{"a": 1}\n```') == '{"a": 1}'


def test_parse_falls_back_to_embedded_object() -> None:
  text = 'Here is your lesson:\n{"theme": "Edo {period}", "nested": {"ok": true}}\nEnjoy!'

  assert parse_json_with_fallback(text) == {"theme": "Edo {period}", "nested": {"ok": True}}


def test_extract_respects_escaped_quotes() -> None:
  text = 'prefix {"q": "He said \\"}\\" loudly"} suffix'

  assert json.loads(extract_json_object(text)) == {"q": 'He said "}" loudly'}


def test_parse_raises_when_no_object_is_present() -> None:
  with pytest.raises(json.JSONDecodeError):
    parse_json_with_fallback("no json here")

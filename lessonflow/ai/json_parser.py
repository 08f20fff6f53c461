"""Lenient JSON parsing helpers for LLM outputs."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n?")


def strip_json_fences(raw: str) -> str:
  """Remove Markdown code fences wrapped around a JSON payload."""
  return _FENCE_RE.sub("", raw).strip()


def parse_json_with_fallback(raw: str) -> Any:
  """Parse JSON, falling back to the first balanced object embedded in the text."""
  # Prefer strict parsing so valid JSON is preserved without mutation.
  try:
    return json.loads(raw)
  except json.JSONDecodeError as exc:
    last_error = exc

  # Extract the first JSON object to ignore leading or trailing prose.
  candidate = extract_json_object(raw)
  if candidate is None:
    raise last_error

  return json.loads(candidate)


def extract_json_object(raw: str) -> str | None:
  """Locate the first balanced `{...}` block while honoring string escapes."""
  start_index: int | None = None
  depth = 0
  in_string = False
  escape = False

  for index, char in enumerate(raw):
    if start_index is None:
      if char == "{":
        start_index = index
        depth = 1
      continue

    if in_string:
      if escape:
        escape = False
        continue
      if char == "\\":
        escape = True
        continue
      if char == '"':
        in_string = False
      continue

    if char == '"':
      in_string = True
      continue

    if char == "{":
      depth += 1
      continue

    if char == "}":
      depth -= 1
      if depth == 0:
        return raw[start_index : index + 1]

  return None

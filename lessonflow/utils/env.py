"""Minimal .env support so local runs pick up LESSONFLOW_* settings and GEMINI_API_KEY."""

from __future__ import annotations

import os
from pathlib import Path

ENV_FILE_VARIABLE = "LESSONFLOW_ENV_FILE"


def default_env_path() -> Path:
  """Return `$LESSONFLOW_ENV_FILE` when set, else `.env` beside the package directory."""
  explicit = os.getenv(ENV_FILE_VARIABLE)
  if explicit:
    return Path(explicit).expanduser()
  return Path(__file__).resolve().parents[2] / ".env"


def _parse_line(raw_line: str) -> tuple[str, str] | None:
  line = raw_line.strip()
  if not line or line.startswith("#"):
    return None
  line = line.removeprefix("export ").lstrip()
  key, sep, value = line.partition("=")
  key = key.strip()
  if not sep or not key:
    return None

  value = value.strip()
  if value[:1] in {'"', "'"} and value.endswith(value[0]) and len(value) >= 2:
    return key, value[1:-1]
  # Unquoted values may carry a trailing comment.
  value = value.split(" #", 1)[0].rstrip()
  return key, value


def load_env_file(path: Path, *, override: bool = False) -> dict[str, str]:
  """Export `KEY=value` lines from `path`; existing variables win unless `override`. Returns what was set."""
  if not path.is_file():
    return {}

  applied: dict[str, str] = {}
  for raw_line in path.read_text(encoding="utf-8").splitlines():
    parsed = _parse_line(raw_line)
    if parsed is None:
      continue
    key, value = parsed
    if key in os.environ and not override:
      continue
    os.environ[key] = value
    applied[key] = value
  return applied

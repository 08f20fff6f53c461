from __future__ import annotations

import logging
import sys
from dataclasses import replace

from lessonflow.core.logging import TruncatedFormatter, _backup_namer, _build_handlers


def test_backup_namer_uses_dash_suffix() -> None:
  assert _backup_namer("/logs/lessonflow_1.log.3") == "/logs/lessonflow_1.log-3"
  assert _backup_namer("/logs/lessonflow_1.log") == "/logs/lessonflow_1.log"


def test_build_handlers_creates_file_in_configured_dir(tmp_path, settings) -> None:
  log_dir = tmp_path / "nested" / "logs"
  stream, file_handler, log_path = _build_handlers(replace(settings, log_dir=str(log_dir)))
  try:
    assert log_path.parent == log_dir
    assert log_path.exists()
    assert file_handler.maxBytes == settings.log_max_bytes
    assert isinstance(stream.formatter, TruncatedFormatter)
  finally:
    file_handler.close()


def _deep_error(depth: int) -> None:
  if depth == 0:
    raise ValueError("bottom")
  _deep_error(depth - 1)


def test_truncated_formatter_keeps_header_and_tail() -> None:
  try:
    _deep_error(10)
  except ValueError:
    record = logging.LogRecord("test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

  formatted = TruncatedFormatter().formatException(record.exc_info)

  assert formatted.startswith("Traceback")
  assert "    ...\n" in formatted
  assert formatted.rstrip().endswith("ValueError: bottom")

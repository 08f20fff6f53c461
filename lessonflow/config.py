"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from lessonflow.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_MODEL_MODES = {"production", "test"}
_STORE_BACKENDS = {"firestore", "memory"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the lessonflow service."""

  environment: str
  app_id: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_dir: str | None
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  gemini_api_key: str | None
  production_model: str
  test_model: str
  default_model_mode: str
  ai_max_retries: int
  ai_retry_delay_seconds: float
  max_daily_sessions: int
  regen_daily_limit: int
  review_history_limit: int
  store_backend: str
  max_cached_sessions: int = 1024
  review_weights: dict[str, Any] = field(default_factory=dict, hash=False)


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ("http://localhost:5173",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if "*" in origins:
    raise ValueError("LESSONFLOW_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_json_dict(raw: str | None, default: dict[str, Any]) -> dict[str, Any]:
  if not raw:
    return default
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError:
    return default
  if not isinstance(parsed, dict):
    return default
  return parsed


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("LESSONFLOW_ENV", "development").lower()
  app_id = (os.getenv("LESSONFLOW_APP_ID") or "lessonflow").strip()
  debug = _parse_bool(os.getenv("LESSONFLOW_DEBUG"))

  log_max_bytes = _positive_int("LESSONFLOW_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("LESSONFLOW_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("LESSONFLOW_LOG_BACKUP_COUNT must be zero or a positive integer.")

  default_model_mode = (os.getenv("LESSONFLOW_DEFAULT_MODEL_MODE") or "production").strip().lower()
  if default_model_mode not in _MODEL_MODES:
    raise ValueError(f"LESSONFLOW_DEFAULT_MODEL_MODE must be one of {sorted(_MODEL_MODES)}.")

  ai_max_retries = int(os.getenv("LESSONFLOW_AI_MAX_RETRIES", "2"))
  if ai_max_retries < 0:
    raise ValueError("LESSONFLOW_AI_MAX_RETRIES must be zero or a positive integer.")
  ai_retry_delay_seconds = float(os.getenv("LESSONFLOW_AI_RETRY_DELAY_SECONDS", "2.0"))
  if ai_retry_delay_seconds < 0:
    raise ValueError("LESSONFLOW_AI_RETRY_DELAY_SECONDS must not be negative.")

  store_backend = (os.getenv("LESSONFLOW_STORE_BACKEND") or "firestore").strip().lower()
  if store_backend not in _STORE_BACKENDS:
    raise ValueError(f"LESSONFLOW_STORE_BACKEND must be one of {sorted(_STORE_BACKENDS)}.")

  return Settings(
    environment=environment,
    app_id=app_id,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("LESSONFLOW_ALLOWED_ORIGINS")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_dir=_optional_str(os.getenv("LESSONFLOW_LOG_DIR")),
    firebase_project_id=_optional_str(os.getenv("LESSONFLOW_FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("LESSONFLOW_FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    production_model=(os.getenv("LESSONFLOW_PRODUCTION_MODEL") or "gemma-3-27b-it").strip(),
    test_model=(os.getenv("LESSONFLOW_TEST_MODEL") or "gemini-1.5-flash").strip(),
    default_model_mode=default_model_mode,
    ai_max_retries=ai_max_retries,
    ai_retry_delay_seconds=ai_retry_delay_seconds,
    max_daily_sessions=_positive_int("LESSONFLOW_MAX_DAILY_SESSIONS", "3"),
    regen_daily_limit=_positive_int("LESSONFLOW_REGEN_DAILY_LIMIT", "1"),
    review_history_limit=_positive_int("LESSONFLOW_REVIEW_HISTORY_LIMIT", "10"),
    store_backend=store_backend,
    max_cached_sessions=_positive_int("LESSONFLOW_MAX_CACHED_SESSIONS", "1024"),
    review_weights=_parse_json_dict(os.getenv("LESSONFLOW_REVIEW_WEIGHTS"), {}),
  )

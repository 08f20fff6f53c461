from __future__ import annotations

import os

import pytest

from lessonflow.config import get_settings
from lessonflow.utils.env import ENV_FILE_VARIABLE, default_env_path, load_env_file

_ENV_KEYS = ("LESSONFLOW_TEST_PLAIN", "LESSONFLOW_TEST_QUOTED", "LESSONFLOW_TEST_EXPORTED", "LESSONFLOW_TEST_EXISTING")


@pytest.fixture
def clean_env():
  yield
  for key in _ENV_KEYS:
    os.environ.pop(key, None)


def test_settings_defaults(monkeypatch) -> None:
  for name in ("LESSONFLOW_ALLOWED_ORIGINS", "LESSONFLOW_STORE_BACKEND", "LESSONFLOW_MAX_DAILY_SESSIONS", "LESSONFLOW_REVIEW_WEIGHTS", "LESSONFLOW_DEFAULT_MODEL_MODE", "LESSONFLOW_MAX_CACHED_SESSIONS"):
    monkeypatch.delenv(name, raising=False)

  settings = get_settings.__wrapped__()

  assert settings.allowed_origins == ("http://localhost:5173",)
  assert settings.store_backend == "firestore"
  assert settings.max_daily_sessions == 3
  assert settings.max_cached_sessions == 1024
  assert settings.review_weights == {}


def test_settings_parse_overrides(monkeypatch) -> None:
  monkeypatch.setenv("LESSONFLOW_ALLOWED_ORIGINS", "http://a.test, http://b.test")
  monkeypatch.setenv("LESSONFLOW_STORE_BACKEND", "Memory")
  monkeypatch.setenv("LESSONFLOW_REVIEW_WEIGHTS", '{"error_rate": 60}')
  monkeypatch.setenv("LESSONFLOW_DEFAULT_MODEL_MODE", "test")

  settings = get_settings.__wrapped__()

  assert settings.allowed_origins == ("http://a.test", "http://b.test")
  assert settings.store_backend == "memory"
  assert settings.review_weights == {"error_rate": 60}
  assert settings.default_model_mode == "test"


@pytest.mark.parametrize(
  ("name", "value"),
  [("LESSONFLOW_ALLOWED_ORIGINS", "*"), ("LESSONFLOW_STORE_BACKEND", "sqlite"), ("LESSONFLOW_MAX_DAILY_SESSIONS", "0"), ("LESSONFLOW_DEFAULT_MODEL_MODE", "staging")],
)
def test_settings_reject_invalid_values(monkeypatch, name, value) -> None:
  monkeypatch.setenv(name, value)

  with pytest.raises(ValueError):
    get_settings.__wrapped__()


def test_malformed_review_weights_fall_back_to_empty(monkeypatch) -> None:
  monkeypatch.setenv("LESSONFLOW_REVIEW_WEIGHTS", "[1, 2]")

  assert get_settings.__wrapped__().review_weights == {}


def test_load_env_file(tmp_path, clean_env) -> None:
  os.environ["LESSONFLOW_TEST_EXISTING"] = "keep"
  env_file = tmp_path / ".env"
  env_file.write_text(
    "# comment\n"
    "LESSONFLOW_TEST_PLAIN=value # trailing\n"
    "LESSONFLOW_TEST_QUOTED='has # hash'\n"
    "export LESSONFLOW_TEST_EXPORTED=\"yes\"\n"
    "LESSONFLOW_TEST_EXISTING=replace\n"
    "not a pair\n",
    encoding="utf-8",
  )

  applied = load_env_file(env_file)

  assert applied == {"LESSONFLOW_TEST_PLAIN": "value", "LESSONFLOW_TEST_QUOTED": "has # hash", "LESSONFLOW_TEST_EXPORTED": "yes"}
  assert os.environ["LESSONFLOW_TEST_EXISTING"] == "keep"
  assert load_env_file(env_file, override=True)["LESSONFLOW_TEST_EXISTING"] == "replace"
  assert load_env_file(tmp_path / "missing.env") == {}


def test_default_env_path_honors_override(monkeypatch, tmp_path) -> None:
  monkeypatch.setenv(ENV_FILE_VARIABLE, str(tmp_path / "custom.env"))

  assert default_env_path() == tmp_path / "custom.env"

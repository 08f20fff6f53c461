"""Test configuration for importing the application package."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

import datetime  # noqa: E402
import json  # noqa: E402
from collections.abc import Callable  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402

from lessonflow.ai.backoff import RetryPolicy  # noqa: E402
from lessonflow.ai.gateway import AIGateway  # noqa: E402
from lessonflow.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse  # noqa: E402
from lessonflow.config import Settings  # noqa: E402
from lessonflow.services.session import SessionStateMachine  # noqa: E402
from lessonflow.storage.memory_store import MemoryDocumentStore  # noqa: E402
from lessonflow.storage.paths import DocumentPaths  # noqa: E402


def sample_lesson_payload(theme: str = "Taika Reform") -> dict[str, Any]:
  """A complete raw lesson as the model is asked to return it."""
  return {
    "theme": theme,
    "lecture": "The **Taika Reform** of 645 reorganized land and people under the court.",
    "strategic_essence": "Centralization\nPublic land\nNew tax system",
    "essential_terms": [{"term": "Taika Reform", "definition": "Political reform starting in 645."}],
    "true_false": [
      {"q": "The reform began in 645.", "options": ["True", "False"], "correct": 0, "exp": "It began in 645.", "intention_tag": "err_chronology"},
      {"q": "It was led by Taira no Kiyomori.", "options": ["True", "False"], "correct": 1, "exp": "Prince Naka no Oe led it.", "intention_tag": "err_actor"},
      {"q": "Land became public land.", "options": ["True", "False"], "correct": 0, "exp": "Private land was abolished.", "intention_tag": "err_mechanism"},
    ],
    "sort": [
      {"q": "Order the events.", "items": ["Isshi incident", "Reform edict", "Move to Naniwa"], "correct_order": [0, 1, 2], "exp": "Chronological order.", "intention_tag": "err_flow"},
      {"q": "Order the eras.", "items": ["Asuka", "Nara", "Heian"], "correct_order": [0, 1, 2], "exp": "Ancient eras in order.", "intention_tag": "err_chronology"},
    ],
    "essay": {"q": "Why was the reform needed?", "model": "To centralize power.", "hint": "Think about clans.", "keywords": ["clans", "court"], "rubric": "Mentions clan power."},
    "era_tag": "era_ancient",
    "theme_tag": "theme_politics",
    "column": "Naniwa palace remains are in Osaka.",
  }


def sample_grading_payload(score: int = 9, tags: list[str] | None = None) -> dict[str, Any]:
  return {"score": score, "correction": "Good structure.", "overall_comment": "Well reasoned.", "tags": tags or [], "recommended_action": "Review land systems."}


class FakeModel(AIModel):
  """Model double that replays queued replies; exceptions in the queue are raised."""

  def __init__(self, replies: list[Any]) -> None:
    self.name = "fake-model"
    self.replies = replies
    self.prompts: list[str] = []

  async def generate(self, prompt: str) -> ModelResponse:
    self.prompts.append(prompt)
    if not self.replies:
      raise AssertionError("FakeModel ran out of replies")
    reply = self.replies.pop(0)
    if isinstance(reply, BaseException):
      raise reply
    if isinstance(reply, dict):
      reply = json.dumps(reply)
    return SimpleModelResponse(content=reply)


class FakeProvider(Provider):
  def __init__(self, model: FakeModel) -> None:
    self.name = "fake"
    self.model = model
    self.requested: list[str | None] = []

  def get_model(self, model: str | None = None) -> AIModel:
    self.requested.append(model)
    return self.model


def build_settings(**overrides: Any) -> Settings:
  values: dict[str, Any] = {
    "environment": "test",
    "app_id": "test-app",
    "debug": False,
    "allowed_origins": ("http://localhost",),
    "log_max_bytes": 1024,
    "log_backup_count": 1,
    "log_dir": None,
    "firebase_project_id": None,
    "firebase_service_account_json_path": None,
    "gemini_api_key": None,
    "production_model": "prod-model",
    "test_model": "test-model",
    "default_model_mode": "production",
    "ai_max_retries": 2,
    "ai_retry_delay_seconds": 2.0,
    "max_daily_sessions": 3,
    "regen_daily_limit": 1,
    "review_history_limit": 10,
    "store_backend": "memory",
  }
  values.update(overrides)
  return Settings(**values)


async def _no_sleep(_delay: float) -> None:
  return None


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def settings() -> Settings:
  return build_settings()


@pytest.fixture
def store() -> MemoryDocumentStore:
  return MemoryDocumentStore()


@pytest.fixture
def paths() -> DocumentPaths:
  return DocumentPaths(app_id="test-app", user_id="user-1")


@pytest.fixture
def fake_model() -> FakeModel:
  return FakeModel([])


@pytest.fixture
def gateway(fake_model: FakeModel, settings: Settings) -> AIGateway:
  return AIGateway(FakeProvider(fake_model), settings, policy=RetryPolicy(max_retries=2, base_delay_seconds=2.0), sleep=_no_sleep)


@pytest.fixture
def fixed_clock() -> Callable[[], datetime.datetime]:
  return lambda: datetime.datetime(2024, 5, 1, 9, 30, tzinfo=datetime.UTC)


@pytest.fixture
def machine(store: MemoryDocumentStore, paths: DocumentPaths, gateway: AIGateway, settings: Settings, fixed_clock) -> SessionStateMachine:
  return SessionStateMachine(store=store, paths=paths, gateway=gateway, settings=settings, clock=fixed_clock)


@pytest.fixture
def lesson_payload() -> Callable[..., dict[str, Any]]:
  return sample_lesson_payload


@pytest.fixture
def grading_payload() -> Callable[..., dict[str, Any]]:
  return sample_grading_payload


@pytest.fixture
def make_gateway(settings: Settings) -> Callable[..., tuple[AIGateway, FakeProvider, list[float]]]:
  """Build a gateway over queued replies that records backoff delays instead of sleeping."""

  def _make(replies: list[Any], *, policy: RetryPolicy | None = None) -> tuple[AIGateway, FakeProvider, list[float]]:
    provider = FakeProvider(FakeModel(list(replies)))
    delays: list[float] = []

    async def _record(delay: float) -> None:
      delays.append(delay)

    return AIGateway(provider, settings, policy=policy or RetryPolicy(max_retries=2, base_delay_seconds=2.0), sleep=_record), provider, delays

  return _make


@pytest.fixture
async def async_client(settings: Settings, store: MemoryDocumentStore, gateway: AIGateway):
  from httpx import ASGITransport, AsyncClient

  from lessonflow.api.deps import get_gateway, get_session_registry, get_store
  from lessonflow.api.deps_concurrency import SessionRegistry
  from lessonflow.config import get_settings
  from lessonflow.main import app

  registry = SessionRegistry()
  app.dependency_overrides[get_settings] = lambda: settings
  app.dependency_overrides[get_store] = lambda: store
  app.dependency_overrides[get_gateway] = lambda: gateway
  app.dependency_overrides[get_session_registry] = lambda: registry
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()

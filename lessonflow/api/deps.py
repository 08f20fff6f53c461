"""Shared FastAPI dependencies for stores, the AI gateway, and learner sessions."""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from lessonflow.ai.gateway import AIGateway
from lessonflow.ai.providers.gemini import GeminiProvider
from lessonflow.api.deps_concurrency import MachineFactory, SessionRegistry
from lessonflow.config import Settings, get_settings
from lessonflow.core.firebase import get_firestore_client
from lessonflow.services.review_strategy import ReviewStrategyEngine, ScoringWeights
from lessonflow.services.session import SessionStateMachine
from lessonflow.storage.document_store import DocumentStore
from lessonflow.storage.firestore_store import FirestoreDocumentStore
from lessonflow.storage.memory_store import MemoryDocumentStore
from lessonflow.storage.paths import DocumentPaths

logger = logging.getLogger(__name__)

_USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


@lru_cache(maxsize=1)
def _memory_store() -> MemoryDocumentStore:
  return MemoryDocumentStore()


def get_store(settings: Annotated[Settings, Depends(get_settings)]) -> DocumentStore:
  """Return the configured document store."""
  if settings.store_backend == "memory":
    return _memory_store()

  client = get_firestore_client()
  if client is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Document store unavailable")
  return FirestoreDocumentStore(client)


@lru_cache(maxsize=1)
def _gemini_provider(api_key: str | None) -> GeminiProvider:
  return GeminiProvider(api_key=api_key)


def get_gateway(settings: Annotated[Settings, Depends(get_settings)]) -> AIGateway:
  return AIGateway(_gemini_provider(settings.gemini_api_key), settings)


def get_review_engine(settings: Annotated[Settings, Depends(get_settings)]) -> ReviewStrategyEngine:
  return ReviewStrategyEngine(weights=ScoringWeights.from_mapping(settings.review_weights))


def get_user_id(x_user_id: Annotated[str, Header()]) -> str:
  """Read the learner id from `X-User-Id`; it becomes a document path segment, so it is validated."""
  user_id = x_user_id.strip()
  if not _USER_ID_PATTERN.match(user_id):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid X-User-Id header")
  return user_id


def get_paths(user_id: Annotated[str, Depends(get_user_id)], settings: Annotated[Settings, Depends(get_settings)]) -> DocumentPaths:
  return DocumentPaths(app_id=settings.app_id, user_id=user_id)


@lru_cache(maxsize=1)
def get_session_registry() -> SessionRegistry:
  return SessionRegistry(max_machines=get_settings().max_cached_sessions)


def get_machine_factory(
  settings: Annotated[Settings, Depends(get_settings)],
  store: Annotated[DocumentStore, Depends(get_store)],
  gateway: Annotated[AIGateway, Depends(get_gateway)],
  review_engine: Annotated[ReviewStrategyEngine, Depends(get_review_engine)],
) -> MachineFactory:
  def _factory(user_id: str) -> SessionStateMachine:
    paths = DocumentPaths(app_id=settings.app_id, user_id=user_id)
    return SessionStateMachine(store=store, paths=paths, gateway=gateway, settings=settings, review_engine=review_engine)

  return _factory

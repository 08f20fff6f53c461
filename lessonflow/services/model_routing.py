from __future__ import annotations

import logging
from typing import Any

from lessonflow.ai.gateway import ModelConfig, ModelMode
from lessonflow.config import Settings
from lessonflow.storage.document_store import DocumentStore
from lessonflow.storage.paths import DocumentPaths

logger = logging.getLogger(__name__)

_MODE_FIELD = "appMode"


def _mode_from(document: dict[str, Any] | None) -> ModelMode | None:
  """Read a valid model mode from a config document, or None when unset or unknown."""
  if not document:
    return None
  raw = document.get(_MODE_FIELD)
  if not isinstance(raw, str):
    return None
  try:
    return ModelMode(raw.strip().lower())
  except ValueError:
    logger.warning("Ignoring unknown %s value %r", _MODE_FIELD, raw)
    return None


async def resolve_model_mode(store: DocumentStore, paths: DocumentPaths, settings: Settings) -> ModelMode:
  """
  Resolve the model mode for a learner: per-user setting, then the global setting, then the default.

  Lookup failures are not fatal; they are logged and the configured default is used.
  """
  try:
    user_mode = _mode_from(await store.get(paths.user_ai_config))
    if user_mode is not None:
      return user_mode
    global_mode = _mode_from(await store.get(paths.global_ai_config))
    if global_mode is not None:
      return global_mode
  except Exception:
    logger.warning("Model mode lookup failed; using default %s.", settings.default_model_mode, exc_info=True)
  return ModelMode(settings.default_model_mode)


async def resolve_model_config(store: DocumentStore, paths: DocumentPaths, settings: Settings) -> ModelConfig:
  mode = await resolve_model_mode(store, paths, settings)
  return ModelConfig.for_mode(mode, settings)

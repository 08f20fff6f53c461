"""AI invocation gateway: model selection, retries, and output sanitation."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from lessonflow.ai.backoff import RetryPolicy, SleepFunc, retry_with_backoff
from lessonflow.ai.errors import EmptyResponseError, GenerationError, InvalidDataError, JsonFormatError, ProviderError, classify_provider_error
from lessonflow.ai.json_parser import parse_json_with_fallback, strip_json_fences
from lessonflow.ai.providers.base import Provider
from lessonflow.config import Settings

logger = logging.getLogger(__name__)

_QUESTION_KEYS = ("true_false", "sort", "essay", "questions")


class ActionLabel(str, Enum):
  GENERATE_LESSON = "lesson.generate"
  GENERATE_REVIEW_LESSON = "lesson.generate_review"
  GRADE_ESSAY = "essay.grade"


class ModelMode(str, Enum):
  PRODUCTION = "production"
  TEST = "test"


@dataclass(frozen=True)
class ModelConfig:
  """Resolved model choice for one gateway call."""

  mode: ModelMode
  model: str

  @classmethod
  def for_mode(cls, mode: ModelMode | str, settings: Settings) -> ModelConfig:
    resolved = ModelMode(mode)
    model = settings.test_model if resolved is ModelMode.TEST else settings.production_model
    return cls(mode=resolved, model=model)


def sanitize_output(text: str | None, *, action_label: str) -> dict[str, Any]:
  """Turn raw completion text into a JSON object or raise a typed gateway error."""
  if not text or not text.strip():
    raise EmptyResponseError(action_label=action_label)

  cleaned = strip_json_fences(text)
  try:
    data = parse_json_with_fallback(cleaned)
  except json.JSONDecodeError as exc:
    logger.error("JSON parse error in %s: %s", action_label, cleaned[:500])
    raise JsonFormatError(action_label=action_label) from exc

  if not isinstance(data, dict):
    raise InvalidDataError(action_label=action_label)

  is_lesson_action = action_label in {ActionLabel.GENERATE_LESSON.value, ActionLabel.GENERATE_REVIEW_LESSON.value}
  if is_lesson_action and not any(key in data for key in _QUESTION_KEYS):
    raise InvalidDataError("The generated lesson did not contain any question data.", action_label=action_label)

  return data


class AIGateway:
  """Invoke the AI text service and return a parsed JSON object.

  How/Why:
    - Provider failures are classified into typed errors so callers can show distinct messages.
    - Retries follow an injected `RetryPolicy`, which keeps the schedule testable without real sleeps.
  """

  def __init__(self, provider: Provider, settings: Settings, *, policy: RetryPolicy | None = None, sleep: SleepFunc = asyncio.sleep) -> None:
    self._provider = provider
    self._settings = settings
    self._policy = policy or RetryPolicy(max_retries=settings.ai_max_retries, base_delay_seconds=settings.ai_retry_delay_seconds)
    self._sleep = sleep

  @property
  def policy(self) -> RetryPolicy:
    return self._policy

  async def invoke(self, action_label: ActionLabel | str, prompt: str, model_config: ModelConfig | None = None) -> dict[str, Any]:
    """Run `prompt` through the configured model and return the parsed JSON object."""
    label = action_label.value if isinstance(action_label, ActionLabel) else str(action_label)
    config = model_config or ModelConfig.for_mode(self._settings.default_model_mode, self._settings)
    logger.info("AI config mode=%s model=%s action=%s", config.mode.value, config.model, label)
    try:
      model = self._provider.get_model(config.model)
    except Exception as exc:
      # Client setup (missing key, bad model name) does not improve on retry.
      logger.error("AI %s: model %s could not be initialized: %s", label, config.model, exc)
      raise ProviderError(f"The AI model could not be initialized ({exc}).", action_label=label) from exc

    async def _attempt(attempt: int) -> dict[str, Any]:
      logger.info("AI %s (attempt %d/%d): requesting...", label, attempt, self._policy.max_attempts)
      try:
        response = await model.generate(prompt)
      except GenerationError:
        raise
      except Exception as exc:
        raise classify_provider_error(exc, action_label=label) from exc
      data = sanitize_output(response.content, action_label=label)
      logger.info("AI %s: success", label)
      return data

    return await retry_with_backoff(self._policy, _attempt, label=f"AI {label}", sleep=self._sleep)

"""Typed AI gateway failures and provider error classification."""

from __future__ import annotations

from collections.abc import Iterable

_QUOTA_HINTS: tuple[str, ...] = ("429", "quota exceeded", "resource has been exhausted", "resource exhausted", "too many requests")

_NOT_FOUND_HINTS: tuple[str, ...] = ("not found", "no such model", "unsupported model")


class GenerationError(RuntimeError):
  """Base class for failures surfaced by the AI gateway."""

  code = "generation_failed"
  user_message = "Content generation failed. Please try again."

  def __init__(self, message: str | None = None, *, action_label: str | None = None) -> None:
    super().__init__(message or self.user_message)
    self.action_label = action_label


class QuotaExceededError(GenerationError):
  """The AI service rejected the call because a rate limit or quota was hit."""

  code = "quota_exceeded"
  user_message = "The AI usage limit was reached. Please wait a moment and try again."


class ModelNotFoundError(GenerationError):
  """The configured model identifier does not exist for the API key."""

  code = "model_not_found"
  user_message = "The configured AI model could not be found. Check the API key and model settings."


class EmptyResponseError(GenerationError):
  """The AI service returned no text."""

  code = "empty_response"
  user_message = "The AI returned an empty response."


class JsonFormatError(GenerationError):
  """The AI output could not be parsed as JSON."""

  code = "malformed_json"
  user_message = "The AI output was not valid JSON."


class InvalidDataError(GenerationError):
  """The parsed AI output was not a usable JSON object."""

  code = "invalid_data"
  user_message = "The generated data was invalid (null or not an object)."


class ProviderError(GenerationError):
  """The AI service call failed for a reason that is not otherwise classified (network, SDK, setup)."""

  code = "provider_error"
  user_message = "The AI service could not be reached. Please try again."


class GradingError(RuntimeError):
  """Essay grading failed; raised distinctly from lesson generation failures."""

  code = "grading_failed"

  def __init__(self, message: str, *, cause: Exception | None = None) -> None:
    super().__init__(message)
    self.cause = cause


def _match_hint(message: str, hints: Iterable[str]) -> bool:
  """Return True when any hint appears in the message."""
  for hint in hints:
    if hint in message:
      return True
  return False


def is_quota_error(exc: BaseException) -> bool:
  """Return True when an exception indicates a rate limit or exhausted quota."""
  return _match_hint(str(exc).lower(), _QUOTA_HINTS)


def is_model_not_found_error(exc: BaseException) -> bool:
  """Return True when an exception indicates a missing model (HTTP 404)."""
  message = str(exc).lower()
  return "404" in message and _match_hint(message, _NOT_FOUND_HINTS)


def classify_provider_error(exc: Exception, *, action_label: str | None = None) -> GenerationError:
  """Map a raw provider exception to a typed gateway error; unrecognized failures become `ProviderError`."""
  if isinstance(exc, GenerationError):
    return exc
  if is_model_not_found_error(exc):
    return ModelNotFoundError(f"{ModelNotFoundError.user_message} ({exc})", action_label=action_label)
  if is_quota_error(exc):
    return QuotaExceededError(action_label=action_label)
  return ProviderError(f"{ProviderError.user_message} ({type(exc).__name__}: {exc})", action_label=action_label)

"""Retry policy with linear backoff and retryable/non-retryable classification."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from lessonflow.ai.errors import ModelNotFoundError, QuotaExceededError

T = TypeVar("T")
logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
  """Declarative retry policy consumed by the AI gateway.

  How/Why:
    - Attempts are `1 + max_retries`; the delay after failed attempt N is `N * base_delay_seconds`.
    - Quota and missing-model failures cannot succeed on retry, so they are raised immediately.
  """

  max_retries: int = 2
  base_delay_seconds: float = 2.0
  non_retryable: tuple[type[BaseException], ...] = field(default=(QuotaExceededError, ModelNotFoundError))

  @property
  def max_attempts(self) -> int:
    return self.max_retries + 1

  def delay_for(self, attempt: int) -> float:
    """Return the wait before the next try after failed attempt `attempt` (1-based)."""
    return attempt * self.base_delay_seconds

  def is_retryable(self, exc: BaseException) -> bool:
    return not isinstance(exc, self.non_retryable)


async def retry_with_backoff(policy: RetryPolicy, func: Callable[[int], Awaitable[T]], *, label: str = "operation", sleep: SleepFunc = asyncio.sleep) -> T:
  """Execute `func(attempt)` under `policy`, re-raising the last error once attempts run out."""
  last_error: BaseException | None = None

  for attempt in range(1, policy.max_attempts + 1):
    try:
      return await func(attempt)
    except Exception as exc:
      last_error = exc
      if not policy.is_retryable(exc):
        logger.error("%s failed with non-retryable %s on attempt %d/%d.", label, type(exc).__name__, attempt, policy.max_attempts)
        raise

      if attempt >= policy.max_attempts:
        logger.error("%s failed after %d attempts: %s", label, policy.max_attempts, exc)
        raise

      delay = policy.delay_for(attempt)
      logger.warning("%s attempt %d/%d failed: %s. Retrying in %.1fs...", label, attempt, policy.max_attempts, exc, delay)
      await sleep(delay)

  # Only reachable when max_attempts is zero.
  if last_error is not None:
    raise last_error
  raise RuntimeError(f"{label} was not attempted; the retry policy allows zero attempts.")

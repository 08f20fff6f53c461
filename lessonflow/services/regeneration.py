"""Daily regeneration quota enforced inside a single store transaction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from lessonflow.schema.progress import DailyStats
from lessonflow.storage.document_store import DocumentStore, TransactionView
from lessonflow.storage.paths import DocumentPaths

logger = logging.getLogger(__name__)

LIMIT_MESSAGE = "Regeneration is limited to once per day. Please work through the current content."


@dataclass(frozen=True)
class RegenAllowed:
  regen_count: int


@dataclass(frozen=True)
class RegenLimitExceeded:
  date_key: str
  regen_count: int
  message: str = LIMIT_MESSAGE


RegenResult = RegenAllowed | RegenLimitExceeded


class _LimitReached(Exception):
  """Aborts the quota transaction without writing."""

  def __init__(self, regen_count: int) -> None:
    super().__init__(f"regeneration limit reached ({regen_count})")
    self.regen_count = regen_count


class RegenerationGuard:
  """Check-and-consume the per-day regeneration allowance for one learner.

  How/Why:
    - The counter read, the counter write, and the progress delete share one transaction so two
      concurrent requests can never both see a zero counter and both discard content.
    - Hitting the limit is an expected outcome, so it is returned as a value and logged at INFO.
  """

  def __init__(self, store: DocumentStore, paths: DocumentPaths, *, daily_limit: int = 1) -> None:
    self._store = store
    self._paths = paths
    self._daily_limit = daily_limit

  async def try_regenerate(self, date_key: str, slot: int) -> RegenResult:
    stats_path = self._paths.daily_stats(date_key)
    progress_path = self._paths.progress(date_key, slot)

    def _consume(transaction: TransactionView) -> int:
      raw: dict[str, Any] = transaction.get(stats_path) or {}
      current = DailyStats.model_validate(raw).regen_count
      if current >= self._daily_limit:
        raise _LimitReached(current)
      transaction.set(stats_path, {"regenCount": current + 1}, merge=True)
      transaction.delete(progress_path)
      return current + 1

    try:
      regen_count = await self._store.run_transaction(_consume)
    except _LimitReached as exc:
      logger.info("Regeneration limit reached for %s slot %d (count=%d).", date_key, slot, exc.regen_count)
      return RegenLimitExceeded(date_key=date_key, regen_count=exc.regen_count)

    logger.info("Regeneration allowed for %s slot %d (count=%d).", date_key, slot, regen_count)
    return RegenAllowed(regen_count=regen_count)

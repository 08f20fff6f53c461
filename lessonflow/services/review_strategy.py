"""Weakness-based review recommendation.

Scoring blends three signals per tag: the chronic error rate, a bonus for tags seen in the most recent
sessions (fix it while the memory is fresh), and a bonus for weak tags missing from recent history
(forgetting-curve review).
"""

from __future__ import annotations

import logging
import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any

from pydantic import BaseModel

from lessonflow.schema.tags import ALL_TAGS, CATALOG_BY_CATEGORY, STATS_KEYS, TagCategory, TagDefinition, get_tag
from lessonflow.storage.document_store import DocumentStore
from lessonflow.storage.paths import DocumentPaths

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringWeights:
  error_rate: float = 50.0
  recent_miss: float = 40.0
  long_absence: float = 30.0
  min_attempts: int = 3
  recent_window: int = 3
  absence_error_rate: float = 0.3
  history_limit: int = 10

  @classmethod
  def from_mapping(cls, overrides: Mapping[str, Any] | None) -> ScoringWeights:
    """Build weights from a config mapping, ignoring unknown keys."""
    if not overrides:
      return cls()
    known = {item.name: item.type for item in fields(cls)}
    values: dict[str, Any] = {}
    for key, value in overrides.items():
      if key not in known or isinstance(value, bool) or not isinstance(value, int | float):
        logger.warning("Ignoring review weight override %s=%r", key, value)
        continue
      values[key] = int(value) if known[key] == "int" else float(value)
    return cls(**values)


class ReasonFraming(str, Enum):
  RECENT_MISS = "recent_miss"
  LONG_ABSENCE = "long_absence"
  GENERAL = "general"
  FALLBACK = "fallback"


@dataclass(frozen=True)
class TagScore:
  tag_id: str
  category: TagCategory
  attempts: int
  errors: int
  error_rate: float
  score: float
  label: str


class ReviewStrategy(BaseModel):
  mode: str = "review"
  target_era: str
  target_era_label: str
  target_theme: str
  target_theme_label: str
  target_mistake: str
  target_mistake_label: str
  reason: str
  framing: ReasonFraming


_FALLBACK_REASON = "Start by reviewing Heian-period politics, the baseline for following the flow of history."
_GENERAL_REASON = "Analysis: this review plan was assembled from your learning tendencies."


def fallback_strategy() -> ReviewStrategy:
  era, theme, mistake = get_tag("era_heian"), get_tag("theme_politics"), get_tag("err_chronology")
  return ReviewStrategy(
    target_era=era.id,
    target_era_label=era.label,
    target_theme=theme.id,
    target_theme_label=theme.label,
    target_mistake=mistake.id,
    target_mistake_label=mistake.label,
    reason=_FALLBACK_REASON,
    framing=ReasonFraming.FALLBACK,
  )


def session_tags(session: Mapping[str, Any]) -> set[str]:
  """Collect every tag a session record touched: content tags, quiz result tags, and grading tags."""
  tags: set[str] = set()
  content = session.get("content")
  if isinstance(content, Mapping):
    for key in ("era_tag", "theme_tag"):
      if isinstance(content.get(key), str):
        tags.add(content[key])

  quiz_results = session.get("quizResults")
  if isinstance(quiz_results, list):
    for result in quiz_results:
      if not isinstance(result, Mapping):
        continue
      intention = result.get("intentionTag") or result.get("intention_tag")
      if isinstance(intention, str):
        tags.add(intention)
      if isinstance(result.get("tags"), list):
        tags.update(tag for tag in result["tags"] if isinstance(tag, str))

  # Older records stored the grading under `gradingResult`.
  for key in ("essayGrading", "gradingResult"):
    grading = session.get(key)
    if isinstance(grading, Mapping) and isinstance(grading.get("tags"), list):
      tags.update(tag for tag in grading["tags"] if isinstance(tag, str))
  return tags


def _as_count(value: Any) -> int:
  if isinstance(value, bool) or not isinstance(value, int | float):
    return 0
  return int(value)


def score_tags(stats: Mapping[str, Any], history: Sequence[Mapping[str, Any]], weights: ScoringWeights) -> list[TagScore]:
  """Score every tag with enough attempts, in stats insertion order."""
  history_tags = [session_tags(session) for session in history[: weights.history_limit]]
  recent_tags = set().union(*history_tags[: weights.recent_window]) if history_tags else set()
  seen_tags = set().union(*history_tags) if history_tags else set()

  scores: list[TagScore] = []
  for stats_key in STATS_KEYS.values():
    bucket = stats.get(stats_key)
    if not isinstance(bucket, Mapping):
      continue
    for tag_id, counters in bucket.items():
      if not isinstance(counters, Mapping):
        continue
      attempts = _as_count(counters.get("attempts"))
      if attempts < weights.min_attempts:
        continue
      errors = _as_count(counters.get("errors"))
      error_rate = errors / attempts
      score = error_rate * weights.error_rate
      if tag_id in recent_tags:
        score += weights.recent_miss
      elif tag_id not in seen_tags and error_rate > weights.absence_error_rate:
        score += weights.long_absence
      tag = get_tag(tag_id)
      scores.append(TagScore(tag_id=tag_id, category=tag.category, attempts=attempts, errors=errors, error_rate=error_rate, score=score, label=tag.label))
  return scores


def _top(scores: Sequence[TagScore], category: TagCategory) -> TagScore | None:
  best: TagScore | None = None
  for entry in scores:
    if entry.category is category and (best is None or entry.score > best.score):
      best = entry
  return best


def _random_tag(category: TagCategory, rng: random.Random) -> TagDefinition:
  return rng.choice(list(CATALOG_BY_CATEGORY[category].values()))


def _reason(era: TagScore | None, mistake: TagScore | None, history: Sequence[Mapping[str, Any]], weights: ScoringWeights) -> tuple[str, ReasonFraming]:
  if era is None or mistake is None:
    return _GENERAL_REASON, ReasonFraming.GENERAL
  recent = any({era.tag_id, mistake.tag_id} & session_tags(session) for session in history[: weights.recent_window])
  if recent:
    return (f"Recent miss analysis: {mistake.label} keeps showing up in {era.label}. Correct it while the memory is fresh.", ReasonFraming.RECENT_MISS)
  return (f"Forgetting-curve alert: it has been a while since you studied {era.label}. Re-checking your {mistake.label} tendency.", ReasonFraming.LONG_ABSENCE)


class ReviewStrategyEngine:
  """Recommend the next review focus from aggregated stats and recent session history."""

  def __init__(self, *, weights: ScoringWeights | None = None, rng: random.Random | None = None) -> None:
    self._weights = weights or ScoringWeights()
    self._rng = rng or random.Random()

  @property
  def weights(self) -> ScoringWeights:
    return self._weights

  def recommend(self, stats: Mapping[str, Any] | None, recent_history: Sequence[Mapping[str, Any]]) -> ReviewStrategy:
    if not stats or not recent_history:
      return fallback_strategy()

    scores = score_tags(stats, recent_history, self._weights)
    top_era = _top(scores, TagCategory.ERA)
    top_theme = _top(scores, TagCategory.THEME)
    top_mistake = _top(scores, TagCategory.MISTAKE)

    era = ALL_TAGS[top_era.tag_id] if top_era else _random_tag(TagCategory.ERA, self._rng)
    theme = ALL_TAGS[top_theme.tag_id] if top_theme else _random_tag(TagCategory.THEME, self._rng)
    mistake = ALL_TAGS[top_mistake.tag_id] if top_mistake else _random_tag(TagCategory.MISTAKE, self._rng)
    reason, framing = _reason(top_era, top_mistake, recent_history, self._weights)
    logger.info("Review strategy era=%s theme=%s mistake=%s framing=%s", era.id, theme.id, mistake.id, framing.value)
    return ReviewStrategy(
      target_era=era.id,
      target_era_label=era.label,
      target_theme=theme.id,
      target_theme_label=theme.label,
      target_mistake=mistake.id,
      target_mistake_label=mistake.label,
      reason=reason,
      framing=framing,
    )

  async def load_and_recommend(self, store: DocumentStore, paths: DocumentPaths) -> ReviewStrategy:
    """Read stats and recent history from the store; any read failure yields the fallback."""
    try:
      stats = await store.get(paths.stats_summary)
      history = await store.list_documents(paths.progress_collection, order_by="timestamp", descending=True, limit=self._weights.history_limit)
    except Exception:
      logger.error("Review strategy load failed; using fallback.", exc_info=True)
      return fallback_strategy()
    return self.recommend(stats, history)

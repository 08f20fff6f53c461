"""Essay grading model and repair of raw grading output."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lessonflow.schema.tags import TagCategory, validate_tags

logger = logging.getLogger(__name__)

# Scores below this are treated as a miss when aggregating weakness stats.
PASSING_SCORE = 8
MAX_SCORE = 10

_SCORE_KEYS = ("score", "points", "点数")
_CORRECTION_KEYS = ("correction", "feedback", "添削")
_COMMENT_KEYS = ("overall_comment", "comment", "advice", "総評")
_TAG_KEYS = ("tags", "weakness_tags", "mistake_tags", "weakness_tag")
_ACTION_KEYS = ("recommended_action", "next_action", "nextAction")


class EssayGrading(BaseModel):
  score: int = Field(default=0, ge=0, le=MAX_SCORE)
  correction: str = ""
  overall_comment: str = ""
  tags: list[str] = Field(default_factory=list)
  recommended_action: str = ""

  model_config = ConfigDict(extra="ignore")

  @property
  def passed(self) -> bool:
    return self.score >= PASSING_SCORE


def _coerce_score(value: Any) -> int:
  if isinstance(value, bool):
    return 0
  if isinstance(value, int | float):
    score = int(round(value))
  elif isinstance(value, str):
    digits = value.strip().split("/")[0].strip()
    try:
      score = int(round(float(digits)))
    except ValueError:
      return 0
  else:
    return 0
  return max(0, min(MAX_SCORE, score))


def _first(raw: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
  for key in keys:
    value = raw.get(key)
    if value not in (None, "", []):
      return value
  return None


def normalize_grading(raw: Any) -> EssayGrading:
  """Repair raw grading JSON; unknown tags are dropped and the score is clamped to 0-10."""
  if not isinstance(raw, Mapping):
    logger.debug("Grading payload was %s, not a mapping; using defaults.", type(raw).__name__)
    return EssayGrading()

  tags = validate_tags(_first(raw, _TAG_KEYS), category=TagCategory.MISTAKE)
  correction = _first(raw, _CORRECTION_KEYS)
  comment = _first(raw, _COMMENT_KEYS)
  action = _first(raw, _ACTION_KEYS)
  return EssayGrading(
    score=_coerce_score(_first(raw, _SCORE_KEYS)),
    correction=correction if isinstance(correction, str) else "",
    overall_comment=comment if isinstance(comment, str) else "",
    tags=tags,
    recommended_action=action if isinstance(action, str) else "",
  )

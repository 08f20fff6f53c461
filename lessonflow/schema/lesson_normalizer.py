"""Repair raw AI lesson output into the canonical `Lesson` schema.

How/Why:
  - Models rename keys freely (`question` vs `q`, `choices` vs `options`), so every logical field is
    resolved through an ordered alias tuple in `FIELD_ALIASES`; the first non-empty match wins.
  - The learner flow needs a fixed question mix, so short lists are padded with visible placeholders
    rather than rejected.
  - Canonical keys are always first in each alias tuple, which makes the repair idempotent.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from lessonflow.schema.lessons import MIN_SORT, MIN_TRUE_FALSE, EssayQuestion, EssentialTerm, Lesson, SortQuestion, TrueFalseQuestion
from lessonflow.schema.tags import DEFAULT_INTENTION_TAG

logger = logging.getLogger(__name__)

FIELD_ALIASES: Mapping[str, tuple[str, ...]] = {
  "prompt": ("q", "question", "text", "problem", "statement", "content", "description", "title", "問題", "問題文"),
  "explanation": ("exp", "explanation", "explain", "commentary", "reason", "reasoning", "detail", "feedback", "解説", "理由", "説明"),
  "hint": ("hint", "guide", "ヒント"),
  "options": ("options", "choices", "items"),
  "items": ("items", "options", "choices", "events", "list", "words"),
  "correct": ("correct", "correct_index", "answer_index", "answer"),
  "correct_order": ("correct_order", "order", "answer_order"),
  "intention_tag": ("intention_tag", "tag", "mistake_tag"),
  "essay_prompt": ("q", "question", "text", "問題"),
  "essay_model": ("model", "answer", "example", "model_answer", "模範解答"),
  "essay_rubric": ("rubric", "exp", "explanation", "criteria"),
  "keywords": ("keywords", "key_words", "キーワード"),
  "term": ("term", "word", "name", "用語"),
  "definition": ("definition", "def", "meaning", "description", "定義"),
}

# ASCII digits only; str.isdigit also accepts superscripts that int() rejects.
_INDEX_TEXT = re.compile(r"-?[0-9]+")

DEFAULT_THEME = "Untitled theme"
DEFAULT_LECTURE = "The lecture could not be generated."
PROMPT_PLACEHOLDER = "(Failed to retrieve the question text)"
EXPLANATION_PLACEHOLDER = "No explanation was generated."
STRING_QUESTION_EXPLANATION = "(No explanation data)"
ESSAY_PROMPT_PLACEHOLDER = "(Failed to retrieve the essay question)"
ESSAY_MODEL_PLACEHOLDER = "No model answer provided."
ESSAY_MISSING_PROMPT = "(No essay question)"
NONE_TEXT = "None"
DEFAULT_TRUE_FALSE_OPTIONS = ("True", "False")
STRING_QUESTION_OPTIONS = ("A", "B", "C", "D")
DEFAULT_SORT_ITEMS = ("Item A", "Item B", "Item C", "Item D")

_TRUE_FALSE_FILLER = {
  "q": "(Not enough questions were generated)",
  "options": list(DEFAULT_TRUE_FALSE_OPTIONS),
  "correct": 0,
  "hint": "",
  "exp": "Please try regenerating.",
}
_SORT_FILLER = {
  "q": "(Not enough ordering questions were generated)",
  "items": ["A", "B", "C", "D"],
  "correct_order": [0, 1, 2, 3],
  "hint": "",
  "exp": "Please try regenerating.",
}


def _as_text(value: Any) -> str | None:
  if isinstance(value, bool):
    return None
  if isinstance(value, str):
    return value if value.strip() else None
  if isinstance(value, int | float):
    return str(value)
  return None


def _first_text(record: Mapping[str, Any], field: str, default: str) -> str:
  for key in FIELD_ALIASES[field]:
    text = _as_text(record.get(key))
    if text is not None:
      return text
  return default


def _first_list(record: Mapping[str, Any], field: str, *, min_length: int) -> list[str] | None:
  for key in FIELD_ALIASES[field]:
    value = record.get(key)
    if not isinstance(value, list) or len(value) < min_length:
      continue
    coerced = [text for text in (_as_text(entry) for entry in value) if text is not None]
    if len(coerced) >= min_length:
      return coerced
  return None


def _first_value(record: Mapping[str, Any], field: str) -> Any:
  for key in FIELD_ALIASES[field]:
    if key in record and record[key] is not None:
      return record[key]
  return None


def _coerce_index(value: Any) -> int | None:
  if isinstance(value, bool):
    return None
  if isinstance(value, int):
    return value
  if isinstance(value, float) and value.is_integer():
    return int(value)
  if isinstance(value, str) and _INDEX_TEXT.fullmatch(value.strip()):
    return int(value.strip())
  return None


def _is_permutation(order: Any, size: int) -> bool:
  if not isinstance(order, list) or len(order) != size:
    return False
  indices = [_coerce_index(value) for value in order]
  return sorted(index for index in indices if index is not None) == list(range(size)) and None not in indices


def _promote(entry: Any) -> dict[str, Any] | None:
  """Turn a bare string question into a record with the four-option scaffold."""
  if isinstance(entry, Mapping):
    return dict(entry)
  text = _as_text(entry)
  if text is None:
    return None
  logger.debug("Promoting string question to record: %s", text[:80])
  return {"q": text, "options": list(STRING_QUESTION_OPTIONS), "correct": 0, "hint": "", "exp": STRING_QUESTION_EXPLANATION}


def _collect(source: Mapping[str, Any], key: str, *, mapping_ok: bool = False) -> Any:
  """Read a question collection from the top level, else from a nested `questions` container."""
  value = source.get(key)
  if value is not None:
    return value

  nested = source.get("questions")
  if isinstance(nested, Mapping):
    return nested.get(key)
  if isinstance(nested, list):
    typed = [item for item in nested if isinstance(item, Mapping) and item.get("type") == key]
    if not typed:
      return None
    return typed[0] if mapping_ok else typed
  return None


def _normalize_true_false(raw_list: Any) -> list[TrueFalseQuestion]:
  entries = raw_list if isinstance(raw_list, list) else []
  questions: list[TrueFalseQuestion] = []
  for entry in entries:
    record = _promote(entry)
    if record is None:
      continue
    options = _first_list(record, "options", min_length=2) or list(DEFAULT_TRUE_FALSE_OPTIONS)
    correct = _coerce_index(_first_value(record, "correct"))
    if correct is None or not 0 <= correct < len(options):
      if correct is not None:
        logger.debug("Clamping out-of-range correct index %s to 0.", correct)
      correct = 0
    questions.append(
      TrueFalseQuestion(
        q=_first_text(record, "prompt", PROMPT_PLACEHOLDER),
        options=options,
        correct=correct,
        hint=_first_text(record, "hint", ""),
        exp=_first_text(record, "explanation", EXPLANATION_PLACEHOLDER),
        intention_tag=_first_text(record, "intention_tag", DEFAULT_INTENTION_TAG),
      )
    )

  if len(questions) < MIN_TRUE_FALSE:
    logger.debug("Padding true/false questions from %d to %d.", len(questions), MIN_TRUE_FALSE)
  while len(questions) < MIN_TRUE_FALSE:
    questions.append(TrueFalseQuestion(**_TRUE_FALSE_FILLER, intention_tag=DEFAULT_INTENTION_TAG))
  return questions


def _normalize_sort(raw_list: Any) -> list[SortQuestion]:
  entries = raw_list if isinstance(raw_list, list) else []
  questions: list[SortQuestion] = []
  for entry in entries:
    record = _promote(entry)
    if record is None:
      continue
    items = _first_list(record, "items", min_length=1) or list(DEFAULT_SORT_ITEMS)
    order = _first_value(record, "correct_order")
    if _is_permutation(order, len(items)):
      correct_order = [int(_coerce_index(value)) for value in order]
    else:
      correct_order = list(range(len(items)))
    questions.append(
      SortQuestion(
        q=_first_text(record, "prompt", PROMPT_PLACEHOLDER),
        items=items,
        correct_order=correct_order,
        hint=_first_text(record, "hint", ""),
        exp=_first_text(record, "explanation", EXPLANATION_PLACEHOLDER),
        intention_tag=_first_text(record, "intention_tag", DEFAULT_INTENTION_TAG),
      )
    )

  if len(questions) < MIN_SORT:
    logger.debug("Padding ordering questions from %d to %d.", len(questions), MIN_SORT)
  while len(questions) < MIN_SORT:
    questions.append(SortQuestion(**_SORT_FILLER, intention_tag=DEFAULT_INTENTION_TAG))
  return questions


def _normalize_essay(raw: Any) -> EssayQuestion:
  if isinstance(raw, list) and raw:
    raw = raw[0]
  if not isinstance(raw, Mapping):
    logger.debug("Essay missing or malformed; substituting placeholder.")
    return EssayQuestion(q=ESSAY_MISSING_PROMPT, model=ESSAY_MODEL_PLACEHOLDER, hint=NONE_TEXT, keywords=[], rubric=NONE_TEXT)

  keywords = _first_value(raw, "keywords")
  if isinstance(keywords, str):
    keywords = [part.strip() for part in keywords.split(",")]
  keyword_list = [text for text in (_as_text(value) for value in keywords) if text is not None] if isinstance(keywords, list) else []
  return EssayQuestion(
    q=_first_text(raw, "essay_prompt", ESSAY_PROMPT_PLACEHOLDER),
    model=_first_text(raw, "essay_model", ESSAY_MODEL_PLACEHOLDER),
    hint=_first_text(raw, "hint", NONE_TEXT),
    keywords=keyword_list,
    rubric=_first_text(raw, "essay_rubric", NONE_TEXT),
  )


def _normalize_terms(raw: Any) -> list[EssentialTerm]:
  if not isinstance(raw, list):
    return []
  terms: list[EssentialTerm] = []
  for entry in raw:
    if isinstance(entry, Mapping):
      term = _first_text(entry, "term", "")
      if term:
        terms.append(EssentialTerm(term=term, definition=_first_text(entry, "definition", "")))
    elif _as_text(entry) is not None:
      terms.append(EssentialTerm(term=_as_text(entry), definition=""))
  return terms


def _optional_text(source: Mapping[str, Any], key: str) -> str | None:
  return _as_text(source.get(key))


def normalize_lesson(raw: Any) -> Lesson:
  """Repair an arbitrary AI payload into a `Lesson`; never raises."""
  source: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
  if not isinstance(raw, Mapping):
    logger.debug("Lesson payload was %s, not a mapping; using defaults.", type(raw).__name__)

  return Lesson(
    theme=_optional_text(source, "theme") or DEFAULT_THEME,
    lecture=_optional_text(source, "lecture") or DEFAULT_LECTURE,
    true_false=_normalize_true_false(_collect(source, "true_false")),
    sort=_normalize_sort(_collect(source, "sort")),
    essay=_normalize_essay(_collect(source, "essay", mapping_ok=True)),
    essential_terms=_normalize_terms(source.get("essential_terms")),
    era_tag=_optional_text(source, "era_tag"),
    theme_tag=_optional_text(source, "theme_tag"),
    strategic_essence=_optional_text(source, "strategic_essence"),
    column=_optional_text(source, "column"),
  )

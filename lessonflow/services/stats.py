"""Per-tag attempt/error aggregation and the daily activity heatmap."""

from __future__ import annotations

import datetime
import logging
from collections import defaultdict
from typing import Any

from lessonflow.schema.grading import EssayGrading
from lessonflow.schema.lessons import Lesson, QuestionType, flatten_questions, is_answer_correct
from lessonflow.schema.progress import QuizResult
from lessonflow.storage.document_store import DocumentStore
from lessonflow.storage.paths import DocumentPaths

logger = logging.getLogger(__name__)


def build_quiz_results(lesson: Lesson, user_answers: dict[int, Any], grading: EssayGrading | None) -> list[QuizResult]:
  """Score every question; a wrong objective answer carries its intention tag, the essay its grading tags."""
  results: list[QuizResult] = []
  for flat in flatten_questions(lesson):
    if flat.type is QuestionType.ESSAY:
      passed = grading.passed if grading is not None else False
      tags = list(grading.tags) if grading is not None and not passed else []
      results.append(QuizResult(index=flat.index, type=flat.type, is_correct=passed, tags=tags))
      continue
    intention = getattr(flat.question, "intention_tag", None)
    correct = bool(is_answer_correct(flat, user_answers.get(flat.index)))
    results.append(QuizResult(index=flat.index, type=flat.type, is_correct=correct, intention_tag=intention, tags=[] if correct or not intention else [intention]))
  return results


def _nest(flat_counts: dict[tuple[str, ...], int]) -> dict[str, Any]:
  nested: dict[str, Any] = {}
  for path, value in flat_counts.items():
    node = nested
    for key in path[:-1]:
      node = node.setdefault(key, {})
    node[path[-1]] = value
  return nested


def build_stat_counts(lesson: Lesson, quiz_results: list[QuizResult], grading: EssayGrading | None) -> dict[str, Any]:
  """Aggregate increments for `stats/summary` in memory so each key is incremented once."""
  counts: dict[tuple[str, ...], int] = defaultdict(int)
  objective = [result for result in quiz_results if result.type is not QuestionType.ESSAY]
  wrong = sum(1 for result in objective if not result.is_correct)

  counts[("totalSessions",)] += 1
  counts[("totalQuizzes",)] += len(objective)

  for bucket, tag_id in (("eras", lesson.era_tag), ("themes", lesson.theme_tag)):
    if not tag_id:
      continue
    counts[(bucket, tag_id, "attempts")] += len(objective)
    if wrong:
      counts[(bucket, tag_id, "errors")] += wrong

  for result in objective:
    if result.intention_tag:
      counts[("mistakes", result.intention_tag, "attempts")] += 1
    if result.is_correct:
      continue
    for tag_id in result.tags:
      # A tag outside the intended one still needs an attempt, or the error rate would exceed 1.
      if tag_id != result.intention_tag:
        counts[("mistakes", tag_id, "attempts")] += 1
      counts[("mistakes", tag_id, "errors")] += 1

  if grading is not None and not grading.passed:
    for tag_id in grading.tags:
      counts[("mistakes", tag_id, "attempts")] += 1
      counts[("mistakes", tag_id, "errors")] += 1

  return _nest(dict(counts))


async def save_lesson_stats(store: DocumentStore, paths: DocumentPaths, lesson: Lesson, quiz_results: list[QuizResult], grading: EssayGrading | None) -> dict[str, Any]:
  counts = build_stat_counts(lesson, quiz_results, grading)
  await store.increment(paths.stats_summary, counts, fields={"lastUpdated": datetime.datetime.now(datetime.UTC).isoformat()})
  logger.info("Lesson stats saved: %s", counts)
  return counts


async def increment_heatmap(store: DocumentStore, paths: DocumentPaths, date_key: str) -> None:
  await store.increment(paths.heatmap, {"data": {date_key: 1}})


async def load_heatmap(store: DocumentStore, paths: DocumentPaths) -> dict[str, int]:
  document = await store.get(paths.heatmap) or {}
  data = document.get("data")
  if not isinstance(data, dict):
    return {}
  return {str(key): int(value) for key, value in data.items() if isinstance(value, int | float)}

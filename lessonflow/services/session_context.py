"""Immutable session UI state and the pure reducers that transition it.

How/Why:
  - Every transition returns a new `SessionContext`; the state machine only swaps references, so a failed
    await can never leave half-applied state behind.
  - Reducers validate the source step and raise `InvalidTransitionError` for illegal moves.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from lessonflow.schema.grading import EssayGrading
from lessonflow.schema.lessons import Lesson
from lessonflow.schema.progress import QuizResult, SessionProgress, SlotMeta
from lessonflow.services.review_strategy import ReviewStrategy


class SessionStep(str, Enum):
  START = "start"
  LECTURE = "lecture"
  QUESTIONS = "questions"
  TERMS = "terms"
  SUMMARY = "summary"
  REVIEW = "review"


class SessionMode(str, Enum):
  NORMAL = "normal"
  REVIEW = "review"


class InvalidTransitionError(ValueError):
  """An action was requested from a step that does not allow it."""

  def __init__(self, action: str, step: SessionStep) -> None:
    super().__init__(f"Cannot {action} while in step '{step.value}'.")
    self.action = action
    self.step = step


@dataclass(frozen=True)
class SessionContext:
  date: str
  max_sessions: int
  step: SessionStep = SessionStep.START
  viewing_session: int = 1
  active_session: int = 1
  limit_reached: bool = False
  history_meta: Mapping[int, SlotMeta] = field(default_factory=dict)
  heatmap: Mapping[str, int] = field(default_factory=dict)
  lesson: Lesson | None = None
  user_answers: Mapping[int, Any] = field(default_factory=dict)
  current_index: int = 0
  essay_grading: EssayGrading | None = None
  quiz_results: tuple[QuizResult, ...] = ()
  completed: bool = False
  reflection: str | None = None
  learning_mode: str | None = None
  difficulty: str | None = None
  mode: SessionMode = SessionMode.NORMAL
  review_strategy: ReviewStrategy | None = None
  error: str | None = None
  notice: str | None = None

  @property
  def question_count(self) -> int:
    return self.lesson.question_count if self.lesson is not None else 0

  def to_dict(self) -> dict[str, Any]:
    """Serialize for API responses."""
    return {
      "date": self.date,
      "step": self.step.value,
      "viewing_session": self.viewing_session,
      "active_session": self.active_session,
      "max_sessions": self.max_sessions,
      "limit_reached": self.limit_reached,
      "history_meta": {str(slot): meta.to_dict() for slot, meta in self.history_meta.items()},
      "heatmap": dict(self.heatmap),
      "lesson": self.lesson.to_document() if self.lesson is not None else None,
      "user_answers": {str(index): value for index, value in self.user_answers.items()},
      "current_index": self.current_index,
      "question_count": self.question_count,
      "essay_grading": self.essay_grading.model_dump(mode="json") if self.essay_grading is not None else None,
      "quiz_results": [result.model_dump(mode="json", by_alias=True) for result in self.quiz_results],
      "completed": self.completed,
      "reflection": self.reflection,
      "learning_mode": self.learning_mode,
      "difficulty": self.difficulty,
      "mode": self.mode.value,
      "review_strategy": self.review_strategy.model_dump(mode="json") if self.review_strategy is not None else None,
      "error": self.error,
      "notice": self.notice,
    }


def _require(context: SessionContext, action: str, *steps: SessionStep) -> None:
  if context.step not in steps:
    raise InvalidTransitionError(action, context.step)


def compute_active_slot(history_meta: Mapping[int, SlotMeta], max_sessions: int) -> tuple[int, bool]:
  """Return `(active_slot, limit_reached)`; the slot after the last completed one, or an incomplete one."""
  active = 1
  for slot in range(1, max_sessions + 1):
    meta = history_meta.get(slot)
    if meta is None or not meta.exists:
      continue
    active = slot + 1 if meta.completed else slot
  if active > max_sessions:
    return max_sessions + 1, True
  return active, False


def _empty_slot(context: SessionContext, **changes: Any) -> SessionContext:
  values: dict[str, Any] = {"lesson": None, "user_answers": {}, "current_index": 0, "essay_grading": None, "quiz_results": (), "completed": False, "reflection": None, "learning_mode": None, "difficulty": None}
  values.update(changes)
  return replace(context, **values)


def cleared(context: SessionContext) -> SessionContext:
  if context.error is None and context.notice is None:
    return context
  return replace(context, error=None, notice=None)


def failed(context: SessionContext, message: str) -> SessionContext:
  return replace(context, error=message)


def noticed(context: SessionContext, message: str) -> SessionContext:
  return replace(context, notice=message)


def loaded(context: SessionContext, *, date: str, history_meta: Mapping[int, SlotMeta], heatmap: Mapping[str, int]) -> SessionContext:
  active, limit_reached = compute_active_slot(history_meta, context.max_sessions)
  viewing = context.max_sessions if limit_reached else active
  return _empty_slot(
    context,
    date=date,
    step=SessionStep.START,
    history_meta=dict(history_meta),
    heatmap=dict(heatmap),
    active_session=active,
    viewing_session=viewing,
    limit_reached=limit_reached,
    mode=SessionMode.NORMAL,
    review_strategy=None,
    error=None,
    notice=None,
  )


def switched(context: SessionContext, slot: int) -> SessionContext:
  if not 1 <= slot <= context.max_sessions:
    raise ValueError(f"Session slot must be between 1 and {context.max_sessions}.")
  return _empty_slot(context, viewing_session=slot, step=SessionStep.START, mode=SessionMode.NORMAL, review_strategy=None)


def opened(context: SessionContext, progress: SessionProgress) -> SessionContext:
  """Reconcile with a stored progress document: completed is read-only, otherwise resume."""
  _require(context, "open a session", SessionStep.START, SessionStep.REVIEW)
  answers = dict(progress.user_answers)
  base = replace(
    context,
    lesson=progress.content,
    user_answers=answers,
    essay_grading=progress.essay_grading,
    quiz_results=tuple(progress.quiz_results),
    completed=progress.completed,
    reflection=progress.reflection,
    learning_mode=progress.learning_mode,
    difficulty=progress.difficulty,
  )
  if progress.completed:
    return replace(base, step=SessionStep.SUMMARY, current_index=0)
  if progress.q_index > 0:
    index = min(progress.q_index, progress.content.question_count - 1)
    return replace(base, step=SessionStep.QUESTIONS, current_index=index)
  return replace(base, step=SessionStep.LECTURE, current_index=0)


def generated(context: SessionContext, lesson: Lesson, *, learning_mode: str | None, difficulty: str | None) -> SessionContext:
  _require(context, "generate content", SessionStep.START, SessionStep.REVIEW)
  meta = dict(context.history_meta)
  meta[context.viewing_session] = SlotMeta(exists=True, completed=False, theme=lesson.theme)
  active, limit_reached = compute_active_slot(meta, context.max_sessions)
  return _empty_slot(context, lesson=lesson, learning_mode=learning_mode, difficulty=difficulty, step=SessionStep.LECTURE, history_meta=meta, active_session=active, limit_reached=limit_reached)


def questions_started(context: SessionContext) -> SessionContext:
  _require(context, "start questions", SessionStep.LECTURE)
  return replace(context, step=SessionStep.QUESTIONS, current_index=0)


def answered(context: SessionContext, value: Any) -> SessionContext:
  _require(context, "answer", SessionStep.QUESTIONS)
  if context.completed:
    raise InvalidTransitionError("answer a completed session", context.step)
  answers = dict(context.user_answers)
  answers[context.current_index] = value
  return replace(context, user_answers=answers)


def advanced(context: SessionContext) -> SessionContext:
  _require(context, "advance", SessionStep.QUESTIONS)
  next_index = context.current_index + 1
  if next_index >= context.question_count:
    return replace(context, step=SessionStep.TERMS)
  return replace(context, current_index=next_index)


def retreated(context: SessionContext) -> SessionContext:
  _require(context, "go back", SessionStep.QUESTIONS)
  return replace(context, current_index=max(0, context.current_index - 1))


def completed(context: SessionContext, grading: EssayGrading, quiz_results: list[QuizResult]) -> SessionContext:
  _require(context, "finish", SessionStep.TERMS)
  meta = dict(context.history_meta)
  previous = meta.get(context.viewing_session, SlotMeta())
  meta[context.viewing_session] = SlotMeta(exists=True, completed=True, theme=previous.theme or (context.lesson.theme if context.lesson else None))
  heatmap = dict(context.heatmap)
  heatmap[context.date] = heatmap.get(context.date, 0) + 1
  active, limit_reached = compute_active_slot(meta, context.max_sessions)
  return replace(context, step=SessionStep.SUMMARY, essay_grading=grading, quiz_results=tuple(quiz_results), completed=True, history_meta=meta, heatmap=heatmap, active_session=active, limit_reached=limit_reached)


def reflected(context: SessionContext, text: str) -> SessionContext:
  if context.lesson is None:
    raise InvalidTransitionError("save a reflection without content", context.step)
  return replace(context, reflection=text)


def review_entered(context: SessionContext, strategy: ReviewStrategy) -> SessionContext:
  _require(context, "enter review", SessionStep.START)
  return replace(context, step=SessionStep.REVIEW, mode=SessionMode.REVIEW, review_strategy=strategy)


def slot_reset(context: SessionContext) -> SessionContext:
  """Forget the viewing slot's content after a successful regeneration."""
  meta = dict(context.history_meta)
  meta[context.viewing_session] = SlotMeta()
  active, limit_reached = compute_active_slot(meta, context.max_sessions)
  return _empty_slot(context, step=SessionStep.START, history_meta=meta, active_session=active, limit_reached=limit_reached)

"""Resumable daily session state machine with progress persistence."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from lessonflow.ai.errors import GenerationError, GradingError
from lessonflow.ai.gateway import ActionLabel, AIGateway
from lessonflow.config import Settings
from lessonflow.schema.grading import normalize_grading
from lessonflow.schema.lesson_normalizer import normalize_lesson
from lessonflow.schema.lessons import QuestionType, flatten_questions
from lessonflow.schema.progress import SessionProgress, SlotMeta, answers_document
from lessonflow.services import session_context as reducers
from lessonflow.services.model_routing import resolve_model_config
from lessonflow.services.prompts import Intervention, LearningMode, LessonRequest, build_grading_prompt, build_lesson_prompt
from lessonflow.services.regeneration import RegenerationGuard, RegenLimitExceeded
from lessonflow.services.review_strategy import ReviewStrategy, ReviewStrategyEngine
from lessonflow.services.session_context import SessionContext, SessionMode, SessionStep
from lessonflow.services.stats import build_quiz_results, increment_heatmap, load_heatmap, save_lesson_stats
from lessonflow.storage.document_store import DocumentStore, deep_merge
from lessonflow.storage.paths import DocumentPaths

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "No learning data was found for this session."
LOAD_FAILED_MESSAGE = "Failed to load the session data. Please try again."
DAILY_LIMIT_MESSAGE = "Today's sessions are complete. New content can be generated again tomorrow."
ESSAY_REQUIRED_MESSAGE = "Write an answer to the essay question before finishing."
COMPLETED_REGEN_MESSAGE = "A completed session cannot be regenerated."
NOTHING_TO_REGEN_MESSAGE = "There is no content to regenerate yet."
STORE_FAILED_MESSAGE = "The request could not be completed. Please try again."

Clock = Callable[[], datetime.datetime]


class PersistenceError(RuntimeError):
  """A progress write failed; the write stays pending and is retried on the next action."""

  def __init__(self, path: str, cause: Exception) -> None:
    super().__init__(f"Failed to persist {path}: {cause}")
    self.path = path
    self.cause = cause


def _local_now() -> datetime.datetime:
  return datetime.datetime.now().astimezone()


class SessionStateMachine:
  """Drive one learner through the daily slots.

  How/Why:
    - UI state lives in an immutable `SessionContext`; every action computes a new one with a pure reducer
      and swaps it in only after the awaited work succeeded.
    - Generation and grading failures land in the single `error` slot without changing the step.
    - Progress writes that fail are kept as pending merges and replayed before the next mutation, so a
      transient store outage never rolls back what the learner already did.
  """

  def __init__(
    self,
    *,
    store: DocumentStore,
    paths: DocumentPaths,
    gateway: AIGateway,
    settings: Settings,
    regeneration_guard: RegenerationGuard | None = None,
    review_engine: ReviewStrategyEngine | None = None,
    clock: Clock = _local_now,
  ) -> None:
    self._store = store
    self._paths = paths
    self._gateway = gateway
    self._settings = settings
    self._guard = regeneration_guard or RegenerationGuard(store, paths, daily_limit=settings.regen_daily_limit)
    self._review_engine = review_engine or ReviewStrategyEngine()
    self._clock = clock
    self._pending: dict[str, tuple[dict[str, Any], bool]] = {}
    self._context = SessionContext(date=self._today(), max_sessions=settings.max_daily_sessions)

  @property
  def context(self) -> SessionContext:
    return self._context

  @property
  def pending_writes(self) -> dict[str, dict[str, Any]]:
    return {path: data for path, (data, _merge) in self._pending.items()}

  def _today(self) -> str:
    return self._clock().date().isoformat()

  def _progress_path(self) -> str:
    return self._paths.progress(self._context.date, self._context.viewing_session)

  # Persistence

  async def _persist(self, path: str, data: dict[str, Any], *, merge: bool = True) -> bool:
    """Write `data`, folding it into any pending write for the same path; failures stay pending."""
    pending = self._pending.pop(path, None)
    if pending is not None and merge:
      base, pending_merge = pending
      data, merge = deep_merge(base, data), pending_merge
    try:
      await self._store.set(path, data, merge=merge)
    except Exception as exc:
      self._pending[path] = (data, merge)
      error = PersistenceError(path, exc)
      logger.error("%s; keeping the write pending.", error, exc_info=True)
      return False
    return True

  async def _flush_pending(self) -> None:
    for path in list(self._pending):
      data, merge = self._pending.pop(path)
      await self._persist(path, data, merge=merge)

  def _drop_pending(self, path: str) -> None:
    if self._pending.pop(path, None) is not None:
      logger.info("Dropped pending write for %s.", path)

  async def _progress_snapshot(self) -> None:
    await self._persist(self._progress_path(), {"userAnswers": answers_document(dict(self._context.user_answers)), "qIndex": self._context.current_index})

  # Loading

  async def load(self, today: str | None = None) -> SessionContext:
    """Rebuild slot metadata for `today` from the store."""
    await self._flush_pending()
    date_key = today or self._today()
    try:
      heatmap = await load_heatmap(self._store, self._paths)
      meta: dict[int, SlotMeta] = {}
      for slot in range(1, self._settings.max_daily_sessions + 1):
        document = await self._store.get(self._paths.progress(date_key, slot))
        if document is None:
          meta[slot] = SlotMeta()
          continue
        content = document.get("content")
        theme = content.get("theme") if isinstance(content, dict) else None
        meta[slot] = SlotMeta(exists=True, completed=bool(document.get("completed")), theme=theme)
    except Exception:
      logger.error("History load failed for %s.", date_key, exc_info=True)
      self._context = reducers.failed(self._context, LOAD_FAILED_MESSAGE)
      return self._context

    self._context = reducers.loaded(self._context, date=date_key, history_meta=meta, heatmap=heatmap)
    logger.info("Loaded %s: active=%d viewing=%d limit_reached=%s", date_key, self._context.active_session, self._context.viewing_session, self._context.limit_reached)
    return self._context

  async def check_day_rollover(self, today: str | None = None) -> bool:
    """Reload when the calendar day changed since the last load."""
    date_key = today or self._today()
    if date_key == self._context.date:
      return False
    logger.info("Day rolled over from %s to %s; reloading.", self._context.date, date_key)
    await self.load(date_key)
    return True

  async def switch_session(self, slot: int) -> SessionContext:
    self._context = reducers.switched(reducers.cleared(self._context), slot)
    return self._context

  async def open_session(self, request: LessonRequest | None = None) -> SessionContext:
    """Resume, show, or generate the viewing slot."""
    await self._flush_pending()
    context = reducers.cleared(self._context)
    if context.step not in (SessionStep.START, SessionStep.REVIEW):
      raise reducers.InvalidTransitionError("open a session", context.step)
    self._context = context

    try:
      document = await self._store.get(self._progress_path())
    except Exception:
      logger.error("Failed to read progress for slot %d.", context.viewing_session, exc_info=True)
      self._context = reducers.failed(context, LOAD_FAILED_MESSAGE)
      return self._context

    if document is not None:
      try:
        progress = SessionProgress.model_validate({**document, "content": normalize_lesson(document.get("content")).to_document()})
      except ValidationError:
        logger.error("Stored progress for slot %d is invalid.", context.viewing_session, exc_info=True)
        self._context = reducers.failed(context, LOAD_FAILED_MESSAGE)
        return self._context
      self._context = reducers.opened(context, progress)
      logger.info("Opened slot %d at step %s (qIndex=%d).", context.viewing_session, self._context.step.value, progress.q_index)
      return self._context

    if context.viewing_session < context.active_session:
      logger.warning("Slot %d has no data and precedes active slot %d; not generating.", context.viewing_session, context.active_session)
      self._context = reducers.failed(context, NO_DATA_MESSAGE)
      return self._context

    return await self.generate(request)

  # Generation

  async def _load_intervention(self) -> Intervention | None:
    try:
      document = await self._store.get(self._paths.intervention)
    except Exception:
      logger.warning("Intervention lookup failed; continuing without it.", exc_info=True)
      return None
    if not document:
      return None
    try:
      return Intervention.model_validate(document)
    except ValidationError:
      logger.warning("Ignoring malformed intervention document.", exc_info=True)
      return None

  async def generate(self, request: LessonRequest | None = None) -> SessionContext:
    """Generate and persist content for the viewing slot, then move to the lecture."""
    await self._flush_pending()
    context = reducers.cleared(self._context)
    if context.step not in (SessionStep.START, SessionStep.REVIEW):
      raise reducers.InvalidTransitionError("generate content", context.step)
    if context.limit_reached or context.active_session > context.max_sessions:
      self._context = reducers.failed(context, DAILY_LIMIT_MESSAGE)
      return self._context

    request = request or LessonRequest()
    is_review = context.mode is SessionMode.REVIEW and context.review_strategy is not None
    intervention = await self._load_intervention()
    effective = LessonRequest(
      learning_mode=LearningMode.REVIEW if is_review else request.learning_mode,
      difficulty=request.difficulty,
      unit=request.unit,
      intervention=intervention or request.intervention,
      review_strategy=context.review_strategy if is_review else None,
    )
    action = ActionLabel.GENERATE_REVIEW_LESSON if is_review else ActionLabel.GENERATE_LESSON

    try:
      model_config = await resolve_model_config(self._store, self._paths, self._settings)
      data = await self._gateway.invoke(action, build_lesson_prompt(effective), model_config)
    except GenerationError as exc:
      self._context = reducers.failed(context, f"Generation error: {exc}")
      return self._context

    lesson = normalize_lesson(data)
    progress = SessionProgress(content=lesson, timestamp=self._clock().isoformat(), learning_mode=effective.learning_mode.value, difficulty=effective.difficulty)
    path = self._progress_path()
    self._drop_pending(path)
    await self._persist(path, progress.to_document(), merge=False)
    self._context = reducers.generated(context, lesson, learning_mode=progress.learning_mode, difficulty=progress.difficulty)
    logger.info("Generated slot %d: %s", context.viewing_session, lesson.theme)
    return self._context

  # Question flow

  async def start_questions(self) -> SessionContext:
    await self._flush_pending()
    self._context = reducers.questions_started(reducers.cleared(self._context))
    await self._progress_snapshot()
    return self._context

  async def answer(self, value: Any) -> SessionContext:
    await self._flush_pending()
    self._context = reducers.answered(reducers.cleared(self._context), value)
    await self._progress_snapshot()
    return self._context

  async def next_question(self) -> SessionContext:
    await self._flush_pending()
    self._context = reducers.advanced(reducers.cleared(self._context))
    await self._progress_snapshot()
    return self._context

  async def previous_question(self) -> SessionContext:
    await self._flush_pending()
    self._context = reducers.retreated(reducers.cleared(self._context))
    await self._progress_snapshot()
    return self._context

  async def finish(self) -> SessionContext:
    """Grade the essay, record results and stats, and complete the slot."""
    await self._flush_pending()
    context = reducers.cleared(self._context)
    if context.step is not SessionStep.TERMS or context.lesson is None:
      raise reducers.InvalidTransitionError("finish", context.step)

    lesson = context.lesson
    essay_index = next(flat.index for flat in flatten_questions(lesson) if flat.type is QuestionType.ESSAY)
    essay_answer = context.user_answers.get(essay_index)
    if not isinstance(essay_answer, str) or not essay_answer.strip():
      self._context = reducers.failed(context, ESSAY_REQUIRED_MESSAGE)
      return self._context

    try:
      model_config = await resolve_model_config(self._store, self._paths, self._settings)
      data = await self._gateway.invoke(ActionLabel.GRADE_ESSAY, build_grading_prompt(lesson, essay_answer, context.learning_mode), model_config)
    except GenerationError as exc:
      error = GradingError(f"Grading failed: {exc}", cause=exc)
      logger.error("%s", error)
      self._context = reducers.failed(context, str(error))
      return self._context

    grading = normalize_grading(data)
    quiz_results = build_quiz_results(lesson, dict(context.user_answers), grading)
    try:
      await save_lesson_stats(self._store, self._paths, lesson, quiz_results, grading)
      await increment_heatmap(self._store, self._paths, context.date)
    except Exception:
      # Stats are best effort; completion must not be blocked by them.
      logger.error("Failed to save lesson stats.", exc_info=True)

    await self._persist(
      self._progress_path(),
      {
        "essayGrading": grading.model_dump(mode="json"),
        "quizResults": [result.model_dump(mode="json", by_alias=True) for result in quiz_results],
        "userAnswers": answers_document(dict(context.user_answers)),
        "completed": True,
        "completedAt": self._clock().isoformat(),
      },
    )
    self._context = reducers.completed(context, grading, quiz_results)
    logger.info("Completed slot %d with essay score %d.", context.viewing_session, grading.score)
    return self._context

  async def save_reflection(self, text: str) -> SessionContext:
    await self._flush_pending()
    self._context = reducers.reflected(reducers.cleared(self._context), text)
    await self._persist(self._progress_path(), {"reflection": text})
    return self._context

  # Regeneration and review

  async def regenerate(self, request: LessonRequest | None = None) -> SessionContext:
    """Discard the viewing slot's content and generate again, once per day."""
    await self._flush_pending()
    context = reducers.cleared(self._context)
    slot_meta = context.history_meta.get(context.viewing_session, SlotMeta())
    if context.completed or slot_meta.completed:
      self._context = reducers.failed(context, COMPLETED_REGEN_MESSAGE)
      return self._context
    if context.lesson is None and not slot_meta.exists:
      self._context = reducers.failed(context, NOTHING_TO_REGEN_MESSAGE)
      return self._context

    try:
      result = await self._guard.try_regenerate(context.date, context.viewing_session)
    except Exception:
      logger.error("Regeneration check failed.", exc_info=True)
      self._context = reducers.failed(context, STORE_FAILED_MESSAGE)
      return self._context

    if isinstance(result, RegenLimitExceeded):
      self._context = reducers.noticed(context, result.message)
      return self._context

    self._drop_pending(self._progress_path())
    # Review mode and its strategy survive the reset, so the new content targets the same weakness.
    self._context = reducers.slot_reset(context)
    return await self.generate(request)

  async def enter_review(self, strategy: ReviewStrategy | None = None) -> SessionContext:
    """Switch to review mode using `strategy`, or a fresh recommendation when omitted."""
    context = reducers.cleared(self._context)
    if context.step is not SessionStep.START:
      raise reducers.InvalidTransitionError("enter review", context.step)
    if strategy is None:
      strategy = await self._review_engine.load_and_recommend(self._store, self._paths)
    self._context = reducers.review_entered(context, strategy)
    return self._context

"""Unit tests for the session state machine against the in-memory store."""

from __future__ import annotations

import datetime

import pytest

from lessonflow.services.prompts import LearningMode, LessonRequest
from lessonflow.services.regeneration import LIMIT_MESSAGE
from lessonflow.services.session import COMPLETED_REGEN_MESSAGE, DAILY_LIMIT_MESSAGE, ESSAY_REQUIRED_MESSAGE, NO_DATA_MESSAGE, NOTHING_TO_REGEN_MESSAGE, SessionStateMachine
from lessonflow.services.session_context import InvalidTransitionError, SessionMode, SessionStep
from lessonflow.storage.document_store import StoreError
from lessonflow.storage.memory_store import MemoryDocumentStore

DATE = "2024-05-01"


class FlakyStore(MemoryDocumentStore):
  """Memory store whose next `fail_sets` writes raise."""

  def __init__(self) -> None:
    super().__init__()
    self.fail_sets = 0

  async def set(self, path, data, *, merge=False) -> None:
    if self.fail_sets:
      self.fail_sets -= 1
      raise StoreError("write unavailable")
    await super().set(path, data, merge=merge)


async def _answer_all(machine: SessionStateMachine, answers: list) -> None:
  await machine.start_questions()
  for value in answers:
    await machine.answer(value)
    await machine.next_question()


def _completed_doc(theme: str) -> dict:
  return {"content": {"theme": theme}, "completed": True, "timestamp": f"{DATE}T08:00:00"}


@pytest.mark.anyio
async def test_load_empty_day_starts_at_slot_one(machine) -> None:
  context = await machine.load()

  assert context.date == DATE
  assert context.step is SessionStep.START
  assert (context.active_session, context.viewing_session, context.limit_reached) == (1, 1, False)


@pytest.mark.anyio
async def test_open_generates_and_persists_new_slot(machine, store, paths, fake_model, lesson_payload) -> None:
  fake_model.replies.append(lesson_payload())
  await machine.load()

  context = await machine.open_session(LessonRequest(learning_mode=LearningMode.EXAM, difficulty="advanced"))

  assert context.step is SessionStep.LECTURE
  assert context.lesson.theme == "Taika Reform"
  assert context.history_meta[1].exists is True
  document = await store.get(paths.progress(DATE, 1))
  assert document["content"]["theme"] == "Taika Reform"
  assert document["learningMode"] == "exam"
  assert document["difficulty"] == "advanced"
  assert document["completed"] is False
  assert "university entrance exam" in fake_model.prompts[0].lower()


@pytest.mark.anyio
async def test_open_resumes_saved_question_without_ai_call(machine, store, paths, fake_model, lesson_payload) -> None:
  await store.set(paths.progress(DATE, 1), {"content": lesson_payload(), "userAnswers": {"0": True, "1": 1}, "qIndex": 2, "completed": False})
  await machine.load()

  context = await machine.open_session()

  assert context.step is SessionStep.QUESTIONS
  assert context.current_index == 2
  assert dict(context.user_answers) == {0: True, 1: 1}
  assert fake_model.prompts == []


@pytest.mark.anyio
async def test_missing_slot_before_active_is_not_generated(machine, store, paths, fake_model) -> None:
  await store.set(paths.progress(DATE, 2), _completed_doc("Kamakura"))
  await machine.load()
  assert machine.context.active_session == 3

  await machine.switch_session(1)
  context = await machine.open_session()

  assert context.error == NO_DATA_MESSAGE
  assert context.step is SessionStep.START
  assert fake_model.prompts == []


@pytest.mark.anyio
async def test_daily_limit_blocks_generation(machine, store, paths, fake_model) -> None:
  for slot in (1, 2, 3):
    await store.set(paths.progress(DATE, slot), _completed_doc(f"T{slot}"))
  context = await machine.load()
  assert context.limit_reached is True
  assert context.viewing_session == 3

  context = await machine.generate()

  assert context.error == DAILY_LIMIT_MESSAGE
  assert fake_model.prompts == []

  context = await machine.open_session()
  assert context.step is SessionStep.SUMMARY
  assert context.error is None


@pytest.mark.anyio
async def test_generation_failure_stays_on_start(machine, fake_model) -> None:
  fake_model.replies.append(RuntimeError("429 quota exceeded"))
  await machine.load()

  context = await machine.open_session()

  assert context.step is SessionStep.START
  assert context.error.startswith("Generation error:")
  assert context.lesson is None


@pytest.mark.anyio
async def test_answers_are_persisted_after_each_step(machine, store, paths, fake_model, lesson_payload) -> None:
  fake_model.replies.append(lesson_payload())
  await machine.load()
  await machine.open_session()

  await machine.start_questions()
  await machine.answer(True)
  await machine.next_question()
  await machine.answer(0)

  document = await store.get(paths.progress(DATE, 1))
  assert document["userAnswers"] == {"0": True, "1": 0}
  assert document["qIndex"] == 1
  assert document["content"]["theme"] == "Taika Reform"


@pytest.mark.anyio
async def test_failed_write_is_retried_on_next_action(paths, gateway, settings, fixed_clock, fake_model, lesson_payload) -> None:
  store = FlakyStore()
  machine = SessionStateMachine(store=store, paths=paths, gateway=gateway, settings=settings, clock=fixed_clock)
  fake_model.replies.append(lesson_payload())
  await machine.load()
  await machine.open_session()
  await machine.start_questions()

  store.fail_sets = 1
  context = await machine.answer(True)

  assert dict(context.user_answers) == {0: True}
  assert paths.progress(DATE, 1) in machine.pending_writes
  assert (await store.get(paths.progress(DATE, 1)))["userAnswers"] == {}

  await machine.next_question()

  assert machine.pending_writes == {}
  document = await store.get(paths.progress(DATE, 1))
  assert document["userAnswers"] == {"0": True}
  assert document["qIndex"] == 1


@pytest.mark.anyio
async def test_finish_grades_records_stats_and_completes(machine, store, paths, fake_model, lesson_payload, grading_payload) -> None:
  fake_model.replies.extend([lesson_payload(), grading_payload(score=9)])
  await machine.load()
  await machine.open_session()
  await _answer_all(machine, [True, True, 0, [0, 1, 2], [2, 1, 0], "The court wanted to weaken the clans."])
  assert machine.context.step is SessionStep.TERMS

  context = await machine.finish()

  assert context.step is SessionStep.SUMMARY
  assert context.completed is True
  assert context.essay_grading.score == 9
  assert [result.is_correct for result in context.quiz_results] == [True, False, True, True, False, True]
  assert context.active_session == 2

  document = await store.get(paths.progress(DATE, 1))
  assert document["completed"] is True
  assert document["essayGrading"]["score"] == 9
  assert len(document["quizResults"]) == 6
  assert document["completedAt"].startswith(DATE)

  summary = await store.get(paths.stats_summary)
  assert summary["totalSessions"] == 1
  assert summary["totalQuizzes"] == 5
  assert summary["eras"]["era_ancient"] == {"attempts": 5, "errors": 2}
  assert summary["mistakes"]["err_actor"] == {"attempts": 1, "errors": 1}
  assert summary["mistakes"]["err_chronology"] == {"attempts": 2, "errors": 1}
  assert await store.get(paths.heatmap) == {"data": {DATE: 1}}
  assert "strict high school teacher" in fake_model.prompts[1]


@pytest.mark.anyio
async def test_finish_requires_essay_answer(machine, fake_model, lesson_payload) -> None:
  fake_model.replies.append(lesson_payload())
  await machine.load()
  await machine.open_session()
  await _answer_all(machine, [True, True, 0, [0, 1, 2], [0, 1, 2], "   "])

  context = await machine.finish()

  assert context.error == ESSAY_REQUIRED_MESSAGE
  assert context.step is SessionStep.TERMS
  assert len(fake_model.prompts) == 1


@pytest.mark.anyio
async def test_grading_failure_does_not_complete(machine, store, paths, fake_model, lesson_payload) -> None:
  fake_model.replies.extend([lesson_payload(), RuntimeError("429 quota exceeded")])
  await machine.load()
  await machine.open_session()
  await _answer_all(machine, [True, True, 0, [0, 1, 2], [0, 1, 2], "An answer."])

  context = await machine.finish()

  assert context.step is SessionStep.TERMS
  assert context.completed is False
  assert context.error.startswith("Grading failed:")
  assert (await store.get(paths.progress(DATE, 1)))["completed"] is False
  assert await store.get(paths.stats_summary) is None


@pytest.mark.anyio
async def test_network_failure_during_generation_is_reported(machine, fake_model) -> None:
  fake_model.replies.extend([ConnectionError("reset")] * 3)
  await machine.load()

  context = await machine.open_session()

  assert len(fake_model.prompts) == 3
  assert context.step is SessionStep.START
  assert context.error.startswith("Generation error:")
  assert "ConnectionError: reset" in context.error


@pytest.mark.anyio
async def test_network_failure_during_grading_keeps_terms_step(machine, store, paths, fake_model, lesson_payload) -> None:
  fake_model.replies.extend([lesson_payload(), *[ConnectionError("reset")] * 3])
  await machine.load()
  await machine.open_session()
  await _answer_all(machine, [True, True, 0, [0, 1, 2], [0, 1, 2], "An answer."])

  context = await machine.finish()

  assert context.step is SessionStep.TERMS
  assert context.completed is False
  assert context.error.startswith("Grading failed:")
  assert (await store.get(paths.progress(DATE, 1)))["completed"] is False


@pytest.mark.anyio
async def test_finish_outside_terms_is_rejected(machine, fake_model, lesson_payload) -> None:
  fake_model.replies.append(lesson_payload())
  await machine.load()
  await machine.open_session()

  with pytest.raises(InvalidTransitionError):
    await machine.finish()


@pytest.mark.anyio
async def test_regenerate_once_per_day(machine, store, paths, fake_model, lesson_payload) -> None:
  fake_model.replies.extend([lesson_payload("First"), lesson_payload("Second")])
  await machine.load()
  await machine.open_session()

  context = await machine.regenerate()

  assert context.step is SessionStep.LECTURE
  assert context.lesson.theme == "Second"
  assert (await store.get(paths.progress(DATE, 1)))["content"]["theme"] == "Second"
  assert await store.get(paths.daily_stats(DATE)) == {"regenCount": 1}

  context = await machine.regenerate()

  assert context.notice == LIMIT_MESSAGE
  assert context.error is None
  assert context.lesson.theme == "Second"
  assert len(fake_model.prompts) == 2


@pytest.mark.anyio
async def test_regenerate_rejects_completed_or_empty_slots(machine, store, paths) -> None:
  context = await machine.load()
  assert (await machine.regenerate()).error == NOTHING_TO_REGEN_MESSAGE

  await store.set(paths.progress(DATE, 1), _completed_doc("Done"))
  await machine.load()
  await machine.switch_session(1)

  context = await machine.regenerate()

  assert context.error == COMPLETED_REGEN_MESSAGE
  assert await store.get(paths.daily_stats(DATE)) is None


@pytest.mark.anyio
async def test_reflection_is_saved_after_completion(machine, store, paths) -> None:
  await store.set(paths.progress(DATE, 1), {**_completed_doc("Done"), "reflection": None})
  await machine.load()
  await machine.switch_session(1)
  await machine.open_session()

  context = await machine.save_reflection("I mixed up the regents.")

  assert context.reflection == "I mixed up the regents."
  assert (await store.get(paths.progress(DATE, 1)))["reflection"] == "I mixed up the regents."


@pytest.mark.anyio
async def test_review_mode_generates_targeted_lesson(machine, store, paths, fake_model, lesson_payload) -> None:
  fake_model.replies.append(lesson_payload("Overcoming weaknesses: regents"))
  await machine.load()

  context = await machine.enter_review()
  assert context.step is SessionStep.REVIEW
  assert context.mode is SessionMode.REVIEW
  assert context.review_strategy.target_era == "era_heian"

  context = await machine.open_session()

  assert context.step is SessionStep.LECTURE
  assert "weakness profile" in fake_model.prompts[0]
  assert (await store.get(paths.progress(DATE, 1)))["learningMode"] == "review"


@pytest.mark.anyio
async def test_intervention_document_is_injected(machine, store, paths, fake_model, lesson_payload) -> None:
  await store.set(paths.intervention, {"focus": "Regency politics", "interest": "Court intrigue", "column_override": {"title": "Fujiwara marriages"}})
  fake_model.replies.append(lesson_payload())
  await machine.load()

  await machine.open_session()

  assert "Teaching focus: Regency politics" in fake_model.prompts[0]
  assert "Fujiwara marriages" in fake_model.prompts[0]


@pytest.mark.anyio
async def test_day_rollover_triggers_reload(store, paths, gateway, settings, fake_model, lesson_payload) -> None:
  now = [datetime.datetime(2024, 5, 1, 23, 59, tzinfo=datetime.UTC)]
  machine = SessionStateMachine(store=store, paths=paths, gateway=gateway, settings=settings, clock=lambda: now[0])
  fake_model.replies.append(lesson_payload())
  await machine.load()
  await machine.open_session()

  assert await machine.check_day_rollover() is False

  now[0] = datetime.datetime(2024, 5, 2, 0, 1, tzinfo=datetime.UTC)
  assert await machine.check_day_rollover() is True
  assert machine.context.date == "2024-05-02"
  assert machine.context.step is SessionStep.START
  assert machine.context.lesson is None

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Path, status
from pydantic import BaseModel, Field

from lessonflow.api.deps import get_machine_factory, get_session_registry, get_user_id
from lessonflow.api.deps_concurrency import MachineFactory, SessionRegistry
from lessonflow.services.prompts import DEFAULT_DIFFICULTY, LearningMode, LessonRequest
from lessonflow.services.review_strategy import ReviewStrategy

router = APIRouter()

UserId = Annotated[str, Depends(get_user_id)]
Registry = Annotated[SessionRegistry, Depends(get_session_registry)]
Factory = Annotated[MachineFactory, Depends(get_machine_factory)]


class LessonOptions(BaseModel):
  """Generation options for opening or regenerating a slot."""

  learning_mode: LearningMode = LearningMode.SCHOOL
  difficulty: str = Field(default=DEFAULT_DIFFICULTY, max_length=32)
  unit: str = Field(default="Japanese history overview", min_length=1, max_length=200)

  def to_request(self) -> LessonRequest:
    return LessonRequest(learning_mode=self.learning_mode, difficulty=self.difficulty, unit=self.unit)


class AnswerRequest(BaseModel):
  value: bool | int | list[int] | str


class ReflectionRequest(BaseModel):
  text: str = Field(max_length=4000)


class ReviewRequest(BaseModel):
  strategy: ReviewStrategy | None = None


@router.post("/load")
async def load_sessions(user_id: UserId, registry: Registry, factory: Factory) -> dict[str, Any]:
  """Reload today's slots from the store."""
  async with registry.acquire(user_id, factory) as machine:
    await machine.load()
    return machine.context.to_dict()


@router.get("/state")
async def get_state(user_id: UserId, registry: Registry, factory: Factory) -> dict[str, Any]:
  async with registry.acquire(user_id, factory) as machine:
    return machine.context.to_dict()


@router.post("/switch/{slot}")
async def switch_session(slot: Annotated[int, Path(ge=1)], user_id: UserId, registry: Registry, factory: Factory) -> dict[str, Any]:
  async with registry.acquire(user_id, factory) as machine:
    try:
      await machine.switch_session(slot)
    except ValueError as exc:
      raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return machine.context.to_dict()


@router.post("/open")
async def open_session(user_id: UserId, registry: Registry, factory: Factory, options: LessonOptions | None = None) -> dict[str, Any]:
  """Resume, show, or generate the viewing slot."""
  request = (options or LessonOptions()).to_request()
  async with registry.acquire(user_id, factory) as machine:
    await machine.open_session(request)
    return machine.context.to_dict()


@router.post("/questions/start")
async def start_questions(user_id: UserId, registry: Registry, factory: Factory) -> dict[str, Any]:
  async with registry.acquire(user_id, factory) as machine:
    await machine.start_questions()
    return machine.context.to_dict()


@router.post("/answer")
async def answer_question(payload: AnswerRequest, user_id: UserId, registry: Registry, factory: Factory) -> dict[str, Any]:
  async with registry.acquire(user_id, factory) as machine:
    await machine.answer(payload.value)
    return machine.context.to_dict()


@router.post("/questions/next")
async def next_question(user_id: UserId, registry: Registry, factory: Factory) -> dict[str, Any]:
  async with registry.acquire(user_id, factory) as machine:
    await machine.next_question()
    return machine.context.to_dict()


@router.post("/questions/previous")
async def previous_question(user_id: UserId, registry: Registry, factory: Factory) -> dict[str, Any]:
  async with registry.acquire(user_id, factory) as machine:
    await machine.previous_question()
    return machine.context.to_dict()


@router.post("/finish")
async def finish_session(user_id: UserId, registry: Registry, factory: Factory) -> dict[str, Any]:
  """Grade the essay and complete the slot."""
  async with registry.acquire(user_id, factory) as machine:
    await machine.finish()
    return machine.context.to_dict()


@router.post("/reflection")
async def save_reflection(payload: ReflectionRequest, user_id: UserId, registry: Registry, factory: Factory) -> dict[str, Any]:
  async with registry.acquire(user_id, factory) as machine:
    await machine.save_reflection(payload.text)
    return machine.context.to_dict()


@router.post("/regenerate")
async def regenerate_session(user_id: UserId, registry: Registry, factory: Factory, options: LessonOptions | None = None) -> dict[str, Any]:
  """Discard and regenerate the viewing slot; limited to once per day."""
  request = (options or LessonOptions()).to_request()
  async with registry.acquire(user_id, factory) as machine:
    await machine.regenerate(request)
    return machine.context.to_dict()


@router.post("/review")
async def enter_review(user_id: UserId, registry: Registry, factory: Factory, payload: ReviewRequest | None = None) -> dict[str, Any]:
  """Enter review mode with the given strategy, or a fresh recommendation."""
  async with registry.acquire(user_id, factory) as machine:
    await machine.enter_review(payload.strategy if payload else None)
    return machine.context.to_dict()

"""Canonical lesson models produced by the content normalizer."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

MIN_TRUE_FALSE = 3
MIN_SORT = 2


class QuestionType(str, Enum):
  TRUE_FALSE = "true_false"
  SORT = "sort"
  ESSAY = "essay"


class TrueFalseQuestion(BaseModel):
  q: str = Field(min_length=1)
  options: list[str] = Field(min_length=2)
  correct: int = 0
  hint: str = ""
  exp: str = Field(min_length=1)
  intention_tag: str

  model_config = ConfigDict(extra="ignore")


class SortQuestion(BaseModel):
  q: str = Field(min_length=1)
  items: list[str] = Field(min_length=1)
  correct_order: list[int]
  hint: str = ""
  exp: str = Field(min_length=1)
  intention_tag: str

  model_config = ConfigDict(extra="ignore")


class EssayQuestion(BaseModel):
  q: str = Field(min_length=1)
  model: str = Field(min_length=1)
  hint: str = ""
  keywords: list[str] = Field(default_factory=list)
  rubric: str = Field(min_length=1)

  model_config = ConfigDict(extra="ignore", protected_namespaces=())

  @property
  def exp(self) -> str:
    """The essay explanation slot is the grading rubric."""
    return self.rubric


class EssentialTerm(BaseModel):
  term: str
  definition: str

  model_config = ConfigDict(extra="ignore")


class Lesson(BaseModel):
  """A repaired lesson guaranteed to carry the minimum question mix."""

  theme: str
  lecture: str
  true_false: list[TrueFalseQuestion] = Field(min_length=MIN_TRUE_FALSE)
  sort: list[SortQuestion] = Field(min_length=MIN_SORT)
  essay: EssayQuestion
  essential_terms: list[EssentialTerm] = Field(default_factory=list)
  era_tag: str | None = None
  theme_tag: str | None = None
  strategic_essence: str | None = None
  column: str | None = None

  model_config = ConfigDict(extra="ignore")

  def to_document(self) -> dict[str, Any]:
    """Serialize for persistence; `normalize_lesson` of this payload returns an equal Lesson."""
    return self.model_dump(mode="json")

  @property
  def question_count(self) -> int:
    return len(self.true_false) + len(self.sort) + 1


class FlatQuestion(BaseModel):
  """One entry of the ordered question sequence shown to the learner."""

  index: int
  type: QuestionType
  question: TrueFalseQuestion | SortQuestion | EssayQuestion


def flatten_questions(lesson: Lesson) -> list[FlatQuestion]:
  """Return the learner-facing question order: true/false, then ordering, then the essay."""
  flat: list[FlatQuestion] = []
  for question in lesson.true_false:
    flat.append(FlatQuestion(index=len(flat), type=QuestionType.TRUE_FALSE, question=question))
  for question in lesson.sort:
    flat.append(FlatQuestion(index=len(flat), type=QuestionType.SORT, question=question))
  flat.append(FlatQuestion(index=len(flat), type=QuestionType.ESSAY, question=lesson.essay))
  return flat


def is_answer_correct(flat: FlatQuestion, answer: Any) -> bool | None:
  """Check an objective answer; essays return None because they are graded by the AI."""
  question = flat.question
  if isinstance(question, TrueFalseQuestion):
    if isinstance(answer, bool):
      # A boolean answer means "the statement is true", which maps to option 0.
      return (0 if answer else 1) == question.correct
    if isinstance(answer, int):
      return answer == question.correct
    return False
  if isinstance(question, SortQuestion):
    if not isinstance(answer, list):
      return False
    try:
      return [int(value) for value in answer] == question.correct_order
    except (TypeError, ValueError):
      return False
  return None

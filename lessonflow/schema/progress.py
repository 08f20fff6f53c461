"""Persisted progress documents for daily session slots."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lessonflow.schema.grading import EssayGrading
from lessonflow.schema.lessons import Lesson, QuestionType


class QuizResult(BaseModel):
  """Correctness of one question, written when a session completes."""

  index: int
  type: QuestionType
  is_correct: bool = Field(alias="isCorrect")
  intention_tag: str | None = Field(default=None, alias="intentionTag")
  tags: list[str] = Field(default_factory=list)

  model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SessionProgress(BaseModel):
  """One slot's progress document (`daily_progress/{date}_{slot}`)."""

  content: Lesson
  user_answers: dict[int, Any] = Field(default_factory=dict, alias="userAnswers")
  q_index: int = Field(default=0, ge=0, alias="qIndex")
  essay_grading: EssayGrading | None = Field(default=None, alias="essayGrading")
  completed: bool = False
  reflection: str | None = None
  timestamp: str | None = None
  completed_at: str | None = Field(default=None, alias="completedAt")
  learning_mode: str | None = Field(default=None, alias="learningMode")
  difficulty: str | None = None
  quiz_results: list[QuizResult] = Field(default_factory=list, alias="quizResults")

  model_config = ConfigDict(populate_by_name=True, extra="ignore")

  def to_document(self) -> dict[str, Any]:
    """Serialize with store field names; answer keys become strings for document stores."""
    payload = self.model_dump(mode="json", by_alias=True)
    payload["userAnswers"] = answers_document(self.user_answers)
    return payload


class DailyStats(BaseModel):
  regen_count: int = Field(default=0, ge=0, alias="regenCount")

  model_config = ConfigDict(populate_by_name=True, extra="ignore")


@dataclass(frozen=True)
class SlotMeta:
  exists: bool = False
  completed: bool = False
  theme: str | None = None

  def to_dict(self) -> dict[str, Any]:
    return {"exists": self.exists, "completed": self.completed, "theme": self.theme}


HistoryMeta = dict[int, SlotMeta]


def answers_document(user_answers: dict[int, Any]) -> dict[str, Any]:
  return {str(index): value for index, value in user_answers.items()}

"""Schema package exports."""

from .grading import EssayGrading, normalize_grading
from .lesson_normalizer import FIELD_ALIASES, normalize_lesson
from .lessons import EssayQuestion, EssentialTerm, FlatQuestion, Lesson, QuestionType, SortQuestion, TrueFalseQuestion, flatten_questions
from .progress import DailyStats, HistoryMeta, QuizResult, SessionProgress, SlotMeta

__all__ = [
  "DailyStats",
  "EssayGrading",
  "EssayQuestion",
  "EssentialTerm",
  "FIELD_ALIASES",
  "FlatQuestion",
  "HistoryMeta",
  "Lesson",
  "QuestionType",
  "QuizResult",
  "SessionProgress",
  "SlotMeta",
  "SortQuestion",
  "TrueFalseQuestion",
  "flatten_questions",
  "normalize_grading",
  "normalize_lesson",
]

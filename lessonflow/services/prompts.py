"""Prompt builders for lesson generation, review lessons, and essay grading."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from lessonflow.schema.lessons import Lesson
from lessonflow.schema.tags import TagCategory, generate_tag_prompt
from lessonflow.services.review_strategy import ReviewStrategy


class LearningMode(str, Enum):
  SCHOOL = "school"
  EXAM = "exam"
  REVIEW = "review"


DIFFICULTY_INSTRUCTIONS: dict[LearningMode, dict[str, str]] = {
  LearningMode.SCHOOL: {
    "basic": "Stick to bold textbook terms and simple cause-and-effect. Questions check core vocabulary.",
    "standard": "Cover textbook content fully, including the reasons behind each event.",
    "advanced": "Go slightly past the textbook and ask about connections between periods.",
  },
  LearningMode.EXAM: {
    "basic": "Focus on frequently tested entrance exam facts and common traps.",
    "standard": "Emphasize causal chains and period comparisons as seen in university entrance exams.",
    "advanced": "Target essay-style reasoning at the level of selective national universities.",
  },
}
DEFAULT_DIFFICULTY = "standard"


class Intervention(BaseModel):
  """Admin-authored instructions injected into the next lesson prompt."""

  focus: str = ""
  interest: str = ""
  column_override: dict[str, Any] | str | None = None

  model_config = ConfigDict(extra="ignore")

  @property
  def is_empty(self) -> bool:
    return not (self.focus.strip() or self.interest.strip() or self.column_topic)

  @property
  def column_topic(self) -> str | None:
    """The requested column subject; object overrides carry it under `title` or `topic`."""
    override = self.column_override
    if isinstance(override, dict):
      override = override.get("title") or override.get("topic")
    if isinstance(override, str) and override.strip():
      return override.strip()
    return None


@dataclass(frozen=True)
class LessonRequest:
  learning_mode: LearningMode = LearningMode.SCHOOL
  difficulty: str = DEFAULT_DIFFICULTY
  unit: str = "Japanese history overview"
  intervention: Intervention | None = None
  review_strategy: ReviewStrategy | None = None


_LESSON_TEMPLATE = """You are a professional Japanese history lecturer. Generate today's learning content as JSON.

## Learning settings
- Mode: {{MODE}}
- Unit: {{UNIT}}
- Difficulty instruction: {{DIFFICULTY}}
{{INTERVENTION}}
## Requirements
1. theme: a catchy title for today's lesson
2. lecture: lecture text (about 1000 words, Markdown, key terms in **bold**)
3. strategic_essence: the key points in three lines
4. essential_terms: five key terms from the lecture as [{"term": "...", "definition": "..."}]
5. true_false: 3 questions as {"q": "...", "options": ["...", "..."], "correct": 0, "exp": "...", "hint": "...", "intention_tag": "..."}
6. sort: 2 ordering questions as {"q": "...", "items": ["A", "B", "C", "D"], "correct_order": [2, 0, 1, 3], "exp": "...", "intention_tag": "..."}
7. essay: 1 question as {"q": "...", "model": "model answer", "hint": "...", "keywords": ["..."], "rubric": "grading criteria"}
8. era_tag and theme_tag: one id each from the lists below
9. column: a short deep-dive column beyond the textbook{{COLUMN}}

## Tags
{{TAGS}}

Output JSON only."""

_REVIEW_TEMPLATE = """You are a professional Japanese history lecturer. Create a special lecture and test for a learner with the following weakness profile.

- Weak era or field: {{ERA}}
- Weak theme: {{THEME}}
- Frequent mistake: {{MISTAKE}}
- Analysis: {{REASON}}
{{INTERVENTION}}
## Output format (JSON)
{
  "theme": "Overcoming weaknesses: <specific theme>",
  "lecture": "Markdown lecture text targeting the mistake above",
  "strategic_essence": "the key points in three lines",
  "essential_terms": [{"term": "...", "definition": "..."}],
  "true_false": [{"q": "...", "options": ["True", "False"], "correct": 0, "exp": "...", "intention_tag": "{{MISTAKE_ID}}"}],
  "sort": [{"q": "...", "items": ["..."], "correct_order": [0, 1, 2, 3], "exp": "...", "intention_tag": "..."}],
  "essay": {"q": "...", "model": "...", "hint": "...", "keywords": ["..."], "rubric": "..."},
  "era_tag": "{{ERA_ID}}",
  "theme_tag": "{{THEME_ID}}"
}
Provide at least 3 true_false and 2 sort questions.

## Tags
{{TAGS}}

Output JSON only."""

_GRADING_TEMPLATE = """You are a professional Japanese history grader. Grade the learner's essay answer and write a dramatically improved correction.

## Context
- Lesson theme: {{THEME}}
- Question: {{QUESTION}}
- Grading reference (model answer): {{MODEL}}
- Rubric: {{RUBRIC}}
- Learner answer: {{ANSWER}}
- Mode: {{MODE}}

## Grading guidelines
{{PERSONA}}

## Output format: JSON only
1. score: integer from 0 to 10.
2. correction: Markdown with the learner answer quoted, an ideal rewrite, and bullet points for deductions, credit, and improvements.
3. overall_comment: 100-150 word summary for the learner.
4. tags: 1-2 mistake tag ids exposed by this answer, from the list below.
5. recommended_action: the single next thing to review.

{{TAGS}}

JSON output:"""

_SCHOOL_PERSONA = "You are a strict high school teacher. Deduct points for inaccurate textbook terms and vague definitions, and suggest fixes faithful to the textbook."
_EXAM_PERSONA = "You are a strategic cram school coach. Grade the logical structure (A leads to B); keywords without connected reasoning lose points, sharp original insight gains points."


def _replace_placeholders(template: str, values: dict[str, str]) -> str:
  """Substitute {{PLACEHOLDER}} markers with prompt context."""
  rendered = template
  for key, value in values.items():
    rendered = rendered.replace(f"{{{{{key}}}}}", value)
  return rendered


def _mode_label(mode: LearningMode | str) -> str:
  if LearningMode(mode) is LearningMode.EXAM:
    return "University entrance exam preparation"
  return "Regular school test preparation (textbook based)"


def difficulty_instruction(mode: LearningMode | str, difficulty: str) -> str:
  table = DIFFICULTY_INSTRUCTIONS.get(LearningMode(mode), DIFFICULTY_INSTRUCTIONS[LearningMode.SCHOOL])
  return table.get(difficulty, table[DEFAULT_DIFFICULTY])


def _intervention_block(intervention: Intervention | None) -> str:
  if intervention is None or intervention.is_empty:
    return ""
  return f"\n## Highest priority instruction (intervention)\nTeaching focus: {intervention.focus}\nHook for interest: {intervention.interest}\nAlways reflect this instruction.\n"


def build_lesson_prompt(request: LessonRequest) -> str:
  """Build the generation prompt; a review strategy switches to the review template."""
  if request.review_strategy is not None:
    return build_review_prompt(request.review_strategy, request.intervention)

  column = ""
  if request.intervention is not None and request.intervention.column_topic:
    column = f" (write it about: {request.intervention.column_topic})"
  return _replace_placeholders(
    _LESSON_TEMPLATE,
    {
      "MODE": _mode_label(request.learning_mode),
      "UNIT": request.unit,
      "DIFFICULTY": difficulty_instruction(request.learning_mode, request.difficulty),
      "INTERVENTION": _intervention_block(request.intervention),
      "COLUMN": column,
      "TAGS": generate_tag_prompt([TagCategory.MISTAKE, TagCategory.ERA, TagCategory.THEME]),
    },
  )


def build_review_prompt(strategy: ReviewStrategy, intervention: Intervention | None = None) -> str:
  return _replace_placeholders(
    _REVIEW_TEMPLATE,
    {
      "ERA": strategy.target_era_label,
      "THEME": strategy.target_theme_label,
      "MISTAKE": strategy.target_mistake_label,
      "REASON": strategy.reason,
      "INTERVENTION": _intervention_block(intervention),
      "MISTAKE_ID": strategy.target_mistake,
      "ERA_ID": strategy.target_era,
      "THEME_ID": strategy.target_theme,
      "TAGS": generate_tag_prompt([TagCategory.MISTAKE]),
    },
  )


def build_grading_prompt(lesson: Lesson, essay_answer: Any, learning_mode: LearningMode | str | None) -> str:
  mode = LearningMode(learning_mode) if learning_mode else LearningMode.SCHOOL
  return _replace_placeholders(
    _GRADING_TEMPLATE,
    {
      "THEME": lesson.theme,
      "QUESTION": lesson.essay.q,
      "MODEL": json.dumps(lesson.essay.model, ensure_ascii=False),
      "RUBRIC": lesson.essay.rubric,
      "ANSWER": json.dumps(str(essay_answer or ""), ensure_ascii=False),
      "MODE": mode.value,
      "PERSONA": _SCHOOL_PERSONA if mode is LearningMode.SCHOOL else _EXAM_PERSONA,
      "TAGS": generate_tag_prompt([TagCategory.MISTAKE]),
    },
  )

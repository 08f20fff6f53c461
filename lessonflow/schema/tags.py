"""Weakness tag catalog shared by prompts, grading, stats, and review scoring."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any


class TagCategory(str, Enum):
  ERA = "era"
  THEME = "theme"
  MISTAKE = "mistake"
  UNKNOWN = "unknown"


@dataclass(frozen=True)
class TagDefinition:
  id: str
  label: str
  category: TagCategory
  description: str


def _catalog(category: TagCategory, rows: Iterable[tuple[str, str, str]]) -> Mapping[str, TagDefinition]:
  return MappingProxyType({tag_id: TagDefinition(id=tag_id, label=label, category=category, description=description) for tag_id, label, description in rows})


MISTAKE_TAGS = _catalog(
  TagCategory.MISTAKE,
  [
    # Chronology
    ("err_chronology", "#When did it happen?", "Confuses the order of events, centuries, or which era came first."),
    ("err_period_gap", "#Century or year drift", "Has no concrete sense of the century or year."),
    ("err_flow", "#Reversed flow", "Remembers cause and effect in the wrong order."),
    # Causality
    ("err_cause", "#Why did it happen?", "Does not understand the background or reasons for the event."),
    ("err_effect", "#What happened next?", "Misreads the consequences or later influence of the event."),
    ("err_purpose", "#Mistaken purpose", "Confuses the real aim of a policy or action."),
    # Structure
    ("err_actor", "#Who did it?", "Confuses the leading figure (emperor, shogun, regent)."),
    ("err_relation", "#Who was the opponent?", "Mixes up rivalries or diplomatic counterparts."),
    ("err_mechanism", "#How the system worked", "Does not understand how an institution (tax, law) worked."),
    # Facts
    ("err_term_confuse", "#Similar terms mixed up", "Cannot tell apart terms with similar names."),
    ("err_basic_fact", "#Missing basics", "Has not memorized the basic term itself."),
    ("err_reading", "#Source reading", "Misreads information in a presented source or passage."),
  ],
)

ERA_TAGS = _catalog(
  TagCategory.ERA,
  [
    ("era_ancient", "#Ancient (Asuka/Nara)", "Asuka and Nara periods"),
    ("era_heian", "#Heian", "Heian period"),
    ("era_kamakura", "#Kamakura", "Kamakura period"),
    ("era_muromachi", "#Muromachi", "Muromachi period"),
    ("era_edo", "#Edo", "Edo period"),
    ("era_modern", "#Modern (Meiji onward)", "Meiji period and later"),
    # Transition points
    ("trans_ritsuryo", "#Ritsuryo in decline", "Ancient to medieval transition (regency, cloistered rule, Taira)"),
    ("trans_buke", "#Rise of warrior rule", "Late Heian to Kamakura transition (Genpei war to the regency)"),
    ("trans_sengoku", "#Warring states", "Muromachi to Sengoku transition (Onin war to daimyo rule)"),
    ("trans_bakuhan", "#Shogunate-domain order", "Azuchi-Momoyama to Edo transition"),
    ("trans_ishin", "#Opening and restoration", "Bakumatsu to Meiji transition"),
  ],
)

THEME_TAGS = _catalog(
  TagCategory.THEME,
  [
    ("theme_politics", "#Politics and diplomacy", "Political history, diplomacy, war"),
    ("theme_social", "#Life and economy", "Social and economic history, land systems, commerce"),
    ("theme_culture", "#Culture and arts", "Cultural history, religion, thought, arts"),
    ("theme_law", "#Law and institutions", "Legal history and systems of government"),
  ],
)

ALL_TAGS: Mapping[str, TagDefinition] = MappingProxyType({**MISTAKE_TAGS, **ERA_TAGS, **THEME_TAGS})

CATALOG_BY_CATEGORY: Mapping[TagCategory, Mapping[str, TagDefinition]] = MappingProxyType({TagCategory.ERA: ERA_TAGS, TagCategory.THEME: THEME_TAGS, TagCategory.MISTAKE: MISTAKE_TAGS})

# Stats document keys per category.
STATS_KEYS: Mapping[TagCategory, str] = MappingProxyType({TagCategory.ERA: "eras", TagCategory.THEME: "themes", TagCategory.MISTAKE: "mistakes"})

DEFAULT_INTENTION_TAG = "err_basic_fact"


def get_tag(tag_id: str) -> TagDefinition:
  """Return the catalog entry for `tag_id`, or an UNKNOWN placeholder."""
  known = ALL_TAGS.get(tag_id)
  if known is not None:
    return known
  return TagDefinition(id=tag_id, label=f"#{tag_id}", category=TagCategory.UNKNOWN, description="")


def validate_tags(tag_list: Any, *, category: TagCategory | None = None) -> list[str]:
  """Keep only known tag ids (optionally of one category), preserving order without duplicates."""
  if isinstance(tag_list, str):
    tag_list = [tag_list]
  if not isinstance(tag_list, list | tuple):
    return []
  valid: list[str] = []
  for tag_id in tag_list:
    if not isinstance(tag_id, str):
      continue
    normalized = tag_id.strip().lstrip("#")
    tag = ALL_TAGS.get(normalized)
    if tag is None or normalized in valid:
      continue
    if category is not None and tag.category is not category:
      continue
    valid.append(normalized)
  return valid


def generate_tag_prompt(categories: Iterable[TagCategory]) -> str:
  """Render the tag catalog as prompt text for the selected categories."""
  selected = set(categories)
  sections = [
    (TagCategory.MISTAKE, "Mistake Types (Select 1-2 if applicable)"),
    (TagCategory.ERA, "Era Tags (Select 1)"),
    (TagCategory.THEME, "Theme Tags (Select 1)"),
  ]
  blocks: list[str] = []
  for category, title in sections:
    if category not in selected:
      continue
    lines = "\n".join(f"- {tag.id}: {tag.description}" for tag in CATALOG_BY_CATEGORY[category].values())
    blocks.append(f"### {title}:\n{lines}")
  return "\n\n".join(blocks)

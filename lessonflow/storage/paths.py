"""Document key layout shared by every store backend."""

from __future__ import annotations

from dataclasses import dataclass


def progress_doc_id(date_key: str, slot: int) -> str:
  return f"{date_key}_{slot}"


@dataclass(frozen=True)
class DocumentPaths:
  """Resolve slash-delimited document paths under `artifacts/{app_id}` for one learner."""

  app_id: str
  user_id: str

  @property
  def root(self) -> str:
    return f"artifacts/{self.app_id}"

  @property
  def user_root(self) -> str:
    return f"{self.root}/users/{self.user_id}"

  @property
  def progress_collection(self) -> str:
    return f"{self.user_root}/daily_progress"

  def progress(self, date_key: str, slot: int) -> str:
    return f"{self.progress_collection}/{progress_doc_id(date_key, slot)}"

  def daily_stats(self, date_key: str) -> str:
    return f"{self.user_root}/daily_stats/{date_key}"

  @property
  def stats_summary(self) -> str:
    return f"{self.user_root}/stats/summary"

  @property
  def heatmap(self) -> str:
    return f"{self.user_root}/stats/heatmap"

  @property
  def user_ai_config(self) -> str:
    return f"{self.user_root}/settings/ai_config"

  @property
  def global_ai_config(self) -> str:
    return f"{self.root}/config/ai"

  @property
  def intervention(self) -> str:
    return f"{self.root}/interventions/{self.user_id}"

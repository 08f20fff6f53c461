from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from lessonflow.api.deps import get_paths, get_review_engine, get_store
from lessonflow.services.review_strategy import ReviewStrategy, ReviewStrategyEngine
from lessonflow.storage.document_store import DocumentStore
from lessonflow.storage.paths import DocumentPaths

router = APIRouter()


@router.get("/strategy", response_model=ReviewStrategy)
async def get_review_strategy(
  store: Annotated[DocumentStore, Depends(get_store)], paths: Annotated[DocumentPaths, Depends(get_paths)], engine: Annotated[ReviewStrategyEngine, Depends(get_review_engine)]
) -> ReviewStrategy:
  """Recommend the next review focus from the learner's weakness stats."""
  return await engine.load_and_recommend(store, paths)

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from lessonflow.core.firebase import initialize_firebase
from lessonflow.core.logging import initialize_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and the Firebase Admin SDK after uvicorn starts."""
  from lessonflow.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("lessonflow.core.lifespan")

  try:
    initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
  except RuntimeError:
    # Keep serving with the default handlers when the log directory is unusable.
    logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

  if settings.store_backend == "firestore":
    initialize_firebase(settings)
  else:
    logger.info("Using the in-memory document store; data is not persisted across restarts.")

  yield

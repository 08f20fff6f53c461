from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from lessonflow.ai.errors import GenerationError
from lessonflow.api.routes import review, sessions
from lessonflow.config import get_settings
from lessonflow.core.exceptions import generation_exception_handler, global_exception_handler, http_exception_handler, invalid_transition_exception_handler, request_validation_exception_handler
from lessonflow.core.lifespan import lifespan
from lessonflow.core.middleware import RequestLoggingMiddleware
from lessonflow.services.session_context import InvalidTransitionError

settings = get_settings()

app = FastAPI(title="lessonflow", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "x-user-id"], expose_headers=["content-length", "x-request-id"])

# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(InvalidTransitionError, invalid_transition_exception_handler)
app.add_exception_handler(GenerationError, generation_exception_handler)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(sessions.router, prefix="/v1/sessions", tags=["sessions"])
app.include_router(review.router, prefix="/v1/review", tags=["review"])

"""Gemini provider implementation using the google-genai SDK."""

from __future__ import annotations

import logging
import os
from typing import Final

from google import genai

from lessonflow.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse

logger = logging.getLogger(__name__)


class GeminiModel(AIModel):
  """Gemini model client returning plain text completions."""

  def __init__(self, name: str, api_key: str | None = None) -> None:
    self.name: str = name

    api_key = api_key or os.getenv("GEMINI_API_KEY")
    if not api_key:
      raise ValueError("GEMINI_API_KEY environment variable is required")

    self._client = genai.Client(api_key=api_key)

  async def generate(self, prompt: str) -> ModelResponse:
    """Generate text response from Gemini."""
    # Use the async client to avoid blocking the asyncio event loop.
    response = await self._client.aio.models.generate_content(model=self.name, contents=prompt)
    logger.debug("Gemini response (%s):\n%s", self.name, response.text)

    usage = None
    if response.usage_metadata:
      usage = {"prompt_tokens": response.usage_metadata.prompt_token_count, "completion_tokens": response.usage_metadata.candidates_token_count, "total_tokens": response.usage_metadata.total_token_count}
    return SimpleModelResponse(content=response.text or "", usage=usage)


class GeminiProvider(Provider):
  """Gemini provider."""

  _DEFAULT_MODEL: Final[str] = "gemma-3-27b-it"

  def __init__(self, api_key: str | None = None) -> None:
    self.name: str = "gemini"
    self._api_key = api_key
    self._models: dict[str, GeminiModel] = {}

  def get_model(self, model: str | None = None) -> AIModel:
    """Return a cached Gemini model client."""
    model_name = model or self._DEFAULT_MODEL
    if model_name not in self._models:
      self._models[model_name] = GeminiModel(model_name, api_key=self._api_key)
    return self._models[model_name]

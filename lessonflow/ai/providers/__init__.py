"""Provider implementations."""

from lessonflow.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse
from lessonflow.ai.providers.gemini import GeminiModel, GeminiProvider

__all__ = ["AIModel", "ModelResponse", "SimpleModelResponse", "Provider", "GeminiModel", "GeminiProvider"]

"""AI providers: video analysis (Gemini), text fallback analysis, embeddings."""

from .embeddings import EmbeddingClient, EmbeddingConfig
from .gemini import GeminiConfig, GeminiVideoAnalyzer, MediaRef
from .llm_client import (
    LLMClient,
    LLMClientConfig,
    LLMClientError,
    LLMResponseError,
    LLMServerUnavailableError,
)
from .schemas import Analysis, Classification, Recipe
from .text_analyzer import TextAnalyzer

__all__ = [
    # Schemas
    "Analysis",
    "Classification",
    "Recipe",
    # Providers
    "EmbeddingClient",
    "EmbeddingConfig",
    "GeminiConfig",
    "GeminiVideoAnalyzer",
    "MediaRef",
    "TextAnalyzer",
    # LLM Client
    "LLMClient",
    "LLMClientConfig",
    "LLMClientError",
    "LLMResponseError",
    "LLMServerUnavailableError",
]

"""Provider implementations."""

from mediafan.ai.providers.base import ClientConfig, GenerationClient
from mediafan.ai.providers.gemini import GeminiImageClient

__all__ = ["ClientConfig", "GenerationClient", "GeminiImageClient"]

"""Boundary interface between the pipeline and a generative-media engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from mediafan.ai.pipeline.contracts import GenerationRequest, Media
from mediafan.config import Settings


@dataclass(frozen=True)
class ClientConfig:
  """Host-supplied configuration for a generation adapter."""

  credential: str | None
  model: str
  default_timeout_ms: int = 120_000
  max_concurrent_submissions: int = 1
  retry_delays: tuple[float, ...] = (5.0, 20.0, 50.0)

  @property
  def default_timeout_seconds(self) -> float:
    return self.default_timeout_ms / 1000

  @classmethod
  def from_settings(cls, settings: Settings) -> ClientConfig:
    return cls(
      credential=settings.gemini_api_key,
      model=settings.model,
      default_timeout_ms=settings.default_timeout_ms,
      max_concurrent_submissions=settings.max_concurrent_submissions,
      retry_delays=settings.retry_delays,
    )


class GenerationClient(ABC):
  """Opaque capability: submit a request, get back one media artifact.

  Implementations raise NotConfiguredError, EmptyResponseError,
  NoMediaInResponseError, or TransportError on failure.
  """

  name: str = "generation"

  @abstractmethod
  async def submit(self, request: GenerationRequest) -> Media:
    """Submit a request and return the produced artifact."""

  def ensure_configured(self) -> None:
    """Raise NotConfiguredError when the client cannot possibly succeed."""

  @property
  def default_timeout_seconds(self) -> float | None:
    """Per-submit timeout used when the execution policy sets none."""
    return None

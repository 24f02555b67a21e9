"""Shared fixtures for pipeline tests."""

from __future__ import annotations

import asyncio
import io

import httpx
import pytest
from PIL import Image

from mediafan.ai.pipeline.contracts import GenerationRequest, Media
from mediafan.ai.providers.base import GenerationClient
from mediafan.media.codec import HttpxFetcher, MediaCodec


# Force anyio to use asyncio
@pytest.fixture
def anyio_backend():
  return "asyncio"


def _image_bytes(color: tuple[int, int, int], image_format: str = "PNG") -> bytes:
  buffer = io.BytesIO()
  Image.new("RGB", (1, 1), color).save(buffer, format=image_format)
  return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
  return _image_bytes((255, 0, 0))


@pytest.fixture
def png_media(png_bytes) -> Media:
  return Media(mime_type="image/png", payload=png_bytes)


@pytest.fixture
def jpeg_media() -> Media:
  return Media(mime_type="image/jpeg", payload=_image_bytes((0, 0, 255), "JPEG"))


class ScriptedClient(GenerationClient):
  """Generation client whose outcome is chosen by a keyword found in the instruction."""

  name = "scripted"

  def __init__(self, default: Media | None = None, outcomes: dict[str, Media | BaseException] | None = None, delays: dict[str, float] | None = None, timeout: float | None = None) -> None:
    self._default = default
    self._outcomes = outcomes or {}
    self._delays = delays or {}
    self._timeout = timeout
    self.submitted: list[GenerationRequest] = []
    self.in_flight = 0
    self.max_in_flight = 0

  @property
  def default_timeout_seconds(self) -> float | None:
    return self._timeout

  def _match(self, mapping: dict, instruction: str):
    for keyword, value in mapping.items():
      if keyword in instruction:
        return value
    return None

  async def submit(self, request: GenerationRequest) -> Media:
    self.submitted.append(request)
    self.in_flight += 1
    self.max_in_flight = max(self.max_in_flight, self.in_flight)
    try:
      delay = self._match(self._delays, request.instruction)
      await asyncio.sleep(delay or 0)
      outcome = self._match(self._outcomes, request.instruction)
      if outcome is None:
        outcome = self._default
      if isinstance(outcome, BaseException):
        raise outcome
      if outcome is None:
        raise AssertionError(f"No scripted outcome for {request.instruction!r}")
      return outcome
    finally:
      self.in_flight -= 1


@pytest.fixture
def scripted_client():
  return ScriptedClient


@pytest.fixture
def mock_codec(png_bytes):
  """Codec whose remote fetches are served by an in-memory httpx transport."""

  def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("missing.png"):
      return httpx.Response(404)
    if request.url.path.endswith("unlabelled.png"):
      return httpx.Response(200, content=png_bytes, headers={"content-type": "application/octet-stream"})
    return httpx.Response(200, content=png_bytes, headers={"content-type": "image/png; charset=binary"})

  client = httpx.AsyncClient(transport=httpx.MockTransport(_handler))
  return MediaCodec(HttpxFetcher(client=client))

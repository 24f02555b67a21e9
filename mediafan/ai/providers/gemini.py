"""Gemini image-generation adapter using the google-genai SDK."""

from __future__ import annotations

import logging
from typing import Any, Final

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from mediafan.ai.backoff import retry_with_backoff
from mediafan.ai.errors import EmptyResponseError, NoMediaInResponseError, NotConfiguredError, TransportError, is_configuration_error, is_transport_error
from mediafan.ai.pipeline.contracts import GenerationRequest, Media
from mediafan.ai.providers.base import ClientConfig, GenerationClient
from mediafan.media.imaging import is_decodable_image

logger = logging.getLogger(__name__)

_PLACEHOLDER_CREDENTIALS: Final[frozenset[str]] = frozenset({"YOUR_API_KEY", "changeme"})


class GeminiImageClient(GenerationClient):
  """GenerationClient that asks a Gemini image model for TEXT+IMAGE output."""

  name = "gemini"

  def __init__(self, config: ClientConfig, *, sdk_client: Any | None = None) -> None:
    self._config = config
    # Injected SDK clients skip credential checks; tests and hosts with custom auth use this.
    self._client = sdk_client

  @property
  def model(self) -> str:
    return self._config.model

  @property
  def default_timeout_seconds(self) -> float | None:
    return self._config.default_timeout_seconds

  def ensure_configured(self) -> None:
    self._get_client()

  def _get_client(self) -> Any:
    if self._client is not None:
      return self._client
    credential = (self._config.credential or "").strip()
    if not credential or credential in _PLACEHOLDER_CREDENTIALS:
      raise NotConfiguredError("Gemini API key not configured. Set GEMINI_API_KEY.")
    if not self._config.model:
      raise NotConfiguredError("No Gemini model configured. Set MEDIAFAN_MODEL.")
    self._client = genai.Client(api_key=credential)
    return self._client

  async def submit(self, request: GenerationRequest) -> Media:
    """Send the instruction followed by each attachment, in order, and return the first image part."""
    client = self._get_client()
    parts = [types.Part.from_text(text=request.instruction)]
    parts.extend(types.Part.from_bytes(data=media.payload, mime_type=media.mime_type) for media in request.attachments)
    contents = [types.Content(role="user", parts=parts)]
    config = types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"])

    logger.info("Gemini submit model=%s attachments=%d instruction=%.120s", self._config.model, len(request.attachments), request.instruction)
    try:
      # Use the async client to avoid blocking the asyncio event loop.
      response = await retry_with_backoff(client.aio.models.generate_content, model=self._config.model, contents=contents, config=config, delays=self._config.retry_delays)
    except genai_errors.APIError as exc:
      if exc.code in (401, 403) or is_configuration_error(exc):
        raise NotConfiguredError(f"Gemini rejected the configured credential: {exc}") from exc
      raise TransportError(f"Gemini request failed with status {exc.code}: {exc}") from exc
    except Exception as exc:
      if is_transport_error(exc):
        raise TransportError(f"Gemini request failed: {exc}") from exc
      # Non-transport failures reach the task boundary unchanged and are recorded as unexpected.
      raise

    return _extract_media(response)


def _extract_media(response: Any) -> Media:
  """Return the first inline image part of a generate_content response."""
  candidates = getattr(response, "candidates", None) if response is not None else None
  if not candidates:
    raise EmptyResponseError("No candidates in response")

  content = candidates[0].content
  parts = getattr(content, "parts", None) if content is not None else None
  if not parts:
    raise EmptyResponseError("No content or parts in response")

  texts: list[str] = []
  for part in parts:
    inline = getattr(part, "inline_data", None)
    if inline is not None and inline.data and (inline.mime_type or "").startswith("image/"):
      if not is_decodable_image(inline.data):
        raise EmptyResponseError(f"Gemini returned an undecodable {inline.mime_type} payload")
      return Media(mime_type=inline.mime_type, payload=inline.data)
    if getattr(part, "text", None):
      texts.append(part.text)

  reply = " ".join(texts).strip() or None
  raise NoMediaInResponseError("No image found in response", text=reply)

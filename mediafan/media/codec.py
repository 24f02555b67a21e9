"""Conversion between files, remote blobs, data URIs, and canonical Media."""

from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx
from pydantic import ValidationError

from mediafan.ai.errors import UnreadableSourceError
from mediafan.ai.pipeline.contracts import Media
from mediafan.config import Settings
from mediafan.media.imaging import convert_to_webp, sniff_mime_type

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
_DATA_URI_PREFIX = "data:"
_BASE64_MARKER = ";base64"


@dataclass(frozen=True)
class FetchedBody:
  """Raw body and declared content type returned by a remote fetch."""

  content: bytes
  content_type: str | None


class RemoteFetcher(Protocol):
  """Host-supplied capability that fetches the bytes at a URL."""

  async def fetch(self, url: str) -> FetchedBody:
    """Return the response body, raising UnreadableSourceError on any failure."""
    ...


class HttpxFetcher:
  """RemoteFetcher backed by an httpx.AsyncClient."""

  def __init__(self, *, timeout_seconds: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
    self._timeout_seconds = timeout_seconds
    self._client = client

  async def fetch(self, url: str) -> FetchedBody:
    if self._client is not None:
      return await self._fetch_with(self._client, url)
    async with httpx.AsyncClient(timeout=self._timeout_seconds, follow_redirects=True) as client:
      return await self._fetch_with(client, url)

  async def _fetch_with(self, client: httpx.AsyncClient, url: str) -> FetchedBody:
    try:
      response = await client.get(url)
      response.raise_for_status()
    except httpx.HTTPStatusError as exc:
      raise UnreadableSourceError(f"Fetching {url} returned HTTP {exc.response.status_code}.", source=url) from exc
    except httpx.HTTPError as exc:
      raise UnreadableSourceError(f"Fetching {url} failed: {exc}", source=url) from exc
    return FetchedBody(content=response.content, content_type=response.headers.get("content-type"))


class MediaCodec:
  """Single place that turns every media origin into Media and back into display form."""

  def __init__(self, fetcher: RemoteFetcher | None = None) -> None:
    self._fetcher = fetcher or HttpxFetcher()

  @classmethod
  def from_settings(cls, settings: Settings) -> MediaCodec:
    return cls(HttpxFetcher(timeout_seconds=settings.fetch_timeout_seconds))

  def from_file(self, path: str | Path, mime_type: str | None = None) -> Media:
    """Read a local file into Media, preferring the declared MIME type."""
    file_path = Path(path)
    try:
      payload = file_path.read_bytes()
    except OSError as exc:
      raise UnreadableSourceError(f"Could not read {file_path}: {exc.strerror or exc}", source=str(file_path)) from exc

    resolved_mime = mime_type or mimetypes.guess_type(file_path.name)[0] or sniff_mime_type(payload) or DEFAULT_MIME_TYPE
    try:
      media = Media(mime_type=resolved_mime, payload=payload)
    except ValidationError as exc:
      raise UnreadableSourceError(f"Invalid MIME type {resolved_mime!r} for {file_path}.", source=str(file_path)) from exc
    logger.debug("Read %d bytes (%s) from %s", media.size, media.mime_type, file_path)
    return media

  async def from_remote(self, url: str) -> Media:
    """Fetch a remote asset and capture its content type."""
    body = await self._fetcher.fetch(url)
    declared = _strip_parameters(body.content_type)
    # Servers commonly label images as octet-stream; trust the bytes over that label.
    if not declared or declared == DEFAULT_MIME_TYPE:
      declared = sniff_mime_type(body.content) or declared or DEFAULT_MIME_TYPE
    logger.debug("Fetched %d bytes (%s) from %s", len(body.content), declared, url)
    return Media(mime_type=declared, payload=body.content)

  def to_displayable(self, media: Media) -> str:
    """Encode Media as a data URI a renderer can display directly."""
    encoded = base64.b64encode(media.payload).decode("ascii")
    return f"{_DATA_URI_PREFIX}{media.mime_type}{_BASE64_MARKER},{encoded}"

  def split(self, data_uri: str) -> Media:
    """Recover MIME type and payload from a data URI produced by an upload widget or to_displayable."""
    if not data_uri.startswith(_DATA_URI_PREFIX):
      raise UnreadableSourceError("Not a data URI.", source=data_uri[:32])
    header, separator, encoded = data_uri.partition(",")
    if not separator:
      raise UnreadableSourceError("Data URI has no payload separator.", source=header)
    if not header.endswith(_BASE64_MARKER):
      raise UnreadableSourceError("Only base64 data URIs are supported.", source=header)

    mime_type = _strip_parameters(header[len(_DATA_URI_PREFIX) : -len(_BASE64_MARKER)]) or DEFAULT_MIME_TYPE
    try:
      payload = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
      raise UnreadableSourceError(f"Data URI payload is not valid base64: {exc}", source=header) from exc
    return Media(mime_type=mime_type, payload=payload)

  async def resolve(self, source: Media | str | Path) -> Media:
    """Route any supported media source (Media, data URI, URL, or path) to the matching decoder."""
    if isinstance(source, Media):
      return source
    if isinstance(source, Path):
      return self.from_file(source)
    if source.startswith(_DATA_URI_PREFIX):
      return self.split(source)
    if source.startswith(("http://", "https://")):
      return await self.from_remote(source)
    return self.from_file(source)

  def to_webp(self, media: Media) -> Media:
    """Re-encode an image as WebP for compact storage or download."""
    if not media.is_image:
      raise UnreadableSourceError(f"Cannot convert {media.mime_type} to WebP.")
    try:
      payload = convert_to_webp(media.payload)
    except OSError as exc:
      raise UnreadableSourceError(f"Image payload could not be decoded: {exc}") from exc
    return Media(mime_type="image/webp", payload=payload)


def _strip_parameters(content_type: str | None) -> str | None:
  if not content_type:
    return None
  value = content_type.split(";", 1)[0].strip().lower()
  if "/" not in value:
    return None
  return value

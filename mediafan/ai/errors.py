"""Error taxonomy for media resolution, generation calls, and batch control."""

from __future__ import annotations

from collections.abc import Iterable

import httpx


class MediaFanError(Exception):
  """Base class for every error raised by the pipeline."""

  code: str = "error"
  retryable: bool = False


class UnreadableSourceError(MediaFanError):
  """A local file, remote URL, or data URI could not be read into bytes."""

  code = "unreadable_source"

  def __init__(self, message: str, *, source: str | None = None) -> None:
    super().__init__(message)
    self.source = source


class GenerationError(MediaFanError):
  """Base class for failures reported by a generation client."""

  code = "generation_error"


class NotConfiguredError(GenerationError):
  """The generation capability is missing a credential or model."""

  code = "not_configured"


class EmptyResponseError(GenerationError):
  """The engine answered but returned no usable artifact."""

  code = "empty_response"


class NoMediaInResponseError(GenerationError):
  """The engine answered with text only when a binary artifact was required."""

  code = "no_media"

  def __init__(self, message: str, *, text: str | None = None) -> None:
    super().__init__(message)
    # Keep the model's text reply so hosts can show why nothing was drawn.
    self.text = text


class TransportError(GenerationError):
  """Network failure, timeout, or rate limit while talking to the engine."""

  code = "transport"
  retryable = True


class PrerequisiteFailedError(MediaFanError):
  """A shared intermediate artifact failed before per-target fan-out began."""

  code = "prerequisite_failed"

  def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
    super().__init__(message)
    self.cause = cause


class BatchStateError(MediaFanError):
  """A batch was used in a lifecycle state that does not allow the operation."""

  code = "batch_state"


class InvalidTransitionError(MediaFanError):
  """An item task was asked to move to a state its lifecycle does not allow."""

  code = "invalid_transition"


_RATE_LIMIT_HINTS: tuple[str, ...] = ("429", "too many requests", "resource exhausted", "resource_exhausted", "quota exceeded", "rate limit")

_TRANSPORT_HINTS: tuple[str, ...] = (
  "timeout",
  "timed out",
  "connection",
  "network",
  "service unavailable",
  "bad gateway",
  "gateway",
  "503",
  "502",
)

_CONFIGURATION_HINTS: tuple[str, ...] = ("api key not valid", "api_key_invalid", "unauthorized", "permission denied", "401", "403")


def _match_hint(message: str, hints: Iterable[str]) -> bool:
  """Return True when any hint appears in the message."""
  for hint in hints:
    if hint in message:
      return True
  return False


def is_rate_limit_error(exc: BaseException) -> bool:
  """Return True when an exception indicates a 429 or quota failure."""
  return _match_hint(str(exc).lower(), _RATE_LIMIT_HINTS)


def is_transport_error(exc: BaseException) -> bool:
  """Return True when an exception looks like a network/availability failure."""
  if isinstance(exc, TimeoutError | ConnectionError | httpx.TransportError):
    return True
  message = str(exc).lower()
  return is_rate_limit_error(exc) or _match_hint(message, _TRANSPORT_HINTS)


def is_configuration_error(exc: BaseException) -> bool:
  """Return True when an exception indicates a rejected credential."""
  return _match_hint(str(exc).lower(), _CONFIGURATION_HINTS)

"""Library configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from mediafan.utils.env import load_env_file, resolve_env_path

DEFAULT_MODEL = "gemini-2.0-flash-preview-image-generation"
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the fan-out pipeline and its generation adapter."""

  gemini_api_key: str | None
  model: str
  default_timeout_ms: int
  max_concurrent_submissions: int
  retry_delays: tuple[float, ...]
  fetch_timeout_seconds: float
  log_dir: str
  log_level: str
  log_max_bytes: int
  log_backup_count: int
  env_file: str | None = None

  @property
  def default_timeout_seconds(self) -> float:
    return self.default_timeout_ms / 1000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process, after applying the .env file if one is found."""

  env_path = resolve_env_path()
  if env_path is not None:
    load_env_file(env_path, override=False)

  default_timeout_ms = _parse_int("MEDIAFAN_DEFAULT_TIMEOUT_MS", "120000")
  if default_timeout_ms <= 0:
    raise ValueError("MEDIAFAN_DEFAULT_TIMEOUT_MS must be a positive integer.")

  # 1 keeps submissions strictly sequential, which the upstream rate limits expect.
  max_concurrent_submissions = _parse_int("MEDIAFAN_MAX_CONCURRENT_SUBMISSIONS", "1")
  if max_concurrent_submissions < 1:
    raise ValueError("MEDIAFAN_MAX_CONCURRENT_SUBMISSIONS must be at least 1.")

  fetch_timeout_seconds = _parse_float("MEDIAFAN_FETCH_TIMEOUT_SECONDS", "30")
  if fetch_timeout_seconds <= 0:
    raise ValueError("MEDIAFAN_FETCH_TIMEOUT_SECONDS must be positive.")

  log_level = (os.getenv("MEDIAFAN_LOG_LEVEL") or "INFO").strip().upper()
  if log_level not in _LOG_LEVELS:
    raise ValueError(f"MEDIAFAN_LOG_LEVEL must be one of {', '.join(sorted(_LOG_LEVELS))}.")

  log_max_bytes = _parse_int("MEDIAFAN_LOG_MAX_BYTES", "5242880")  # 5MB default
  if log_max_bytes <= 0:
    raise ValueError("MEDIAFAN_LOG_MAX_BYTES must be a positive integer.")

  log_backup_count = _parse_int("MEDIAFAN_LOG_BACKUP_COUNT", "10")
  if log_backup_count < 0:
    raise ValueError("MEDIAFAN_LOG_BACKUP_COUNT must be zero or a positive integer.")

  return Settings(
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    model=(os.getenv("MEDIAFAN_MODEL") or DEFAULT_MODEL).strip(),
    default_timeout_ms=default_timeout_ms,
    max_concurrent_submissions=max_concurrent_submissions,
    retry_delays=_parse_delays(os.getenv("MEDIAFAN_RETRY_DELAYS")),
    fetch_timeout_seconds=fetch_timeout_seconds,
    log_dir=(os.getenv("MEDIAFAN_LOG_DIR") or "./logs").strip(),
    log_level=log_level,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    env_file=str(env_path) if env_path is not None else None,
  )


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _parse_int(name: str, default: str) -> int:
  raw = os.getenv(name, default)
  try:
    return int(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be an integer, got {raw!r}.") from exc


def _parse_float(name: str, default: str) -> float:
  raw = os.getenv(name, default)
  try:
    return float(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be a number, got {raw!r}.") from exc


def _parse_delays(raw: str | None) -> tuple[float, ...]:
  """Parse a comma separated list of backoff delays in seconds."""

  if raw is None or raw.strip() == "":
    return (5.0, 20.0, 50.0)

  delays: list[float] = []
  for chunk in raw.split(","):
    chunk = chunk.strip()
    if not chunk:
      continue
    try:
      delay = float(chunk)
    except ValueError as exc:
      raise ValueError(f"MEDIAFAN_RETRY_DELAYS must be comma separated numbers, got {raw!r}.") from exc
    if delay < 0:
      raise ValueError("MEDIAFAN_RETRY_DELAYS must not contain negative delays.")
    delays.append(delay)
  return tuple(delays)

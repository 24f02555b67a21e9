"""Locate and apply the optional .env file that seeds mediafan settings."""

from __future__ import annotations

import os
from pathlib import Path

ENV_FILE_VARIABLE = "MEDIAFAN_ENV_FILE"


def default_env_path() -> Path:
  """Return the .env path at the repo root."""
  return Path(__file__).resolve().parents[2] / ".env"


def resolve_env_path() -> Path | None:
  """Return the .env file to load: MEDIAFAN_ENV_FILE when set, else the repo-root file if present.

  An explicit MEDIAFAN_ENV_FILE that does not point at a file raises ValueError,
  so a typo never silently falls back to unconfigured defaults.
  """
  explicit = (os.getenv(ENV_FILE_VARIABLE) or "").strip()
  if explicit:
    path = Path(explicit).expanduser()
    if not path.is_file():
      raise ValueError(f"{ENV_FILE_VARIABLE} points to {path}, which is not a file.")
    return path

  fallback = default_env_path()
  return fallback if fallback.is_file() else None


def parse_env_line(raw_line: str) -> tuple[str, str] | None:
  """Parse one KEY=value line; comments, blanks, and malformed lines yield None."""
  line = raw_line.strip()
  if not line or line.startswith("#"):
    return None
  line = line.removeprefix("export ").lstrip()
  key, separator, value = line.partition("=")
  key = key.strip()
  if not separator or not key:
    return None
  value = value.strip()
  if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
    value = value[1:-1]
  return key, value


def load_env_file(path: Path, *, override: bool = False) -> list[str]:
  """Apply a .env file to the process environment and return the keys it set.

  Variables already present in the environment win unless override is True.
  """
  applied: list[str] = []
  for raw_line in path.read_text(encoding="utf-8").splitlines():
    parsed = parse_env_line(raw_line)
    if parsed is None:
      continue
    key, value = parsed
    if not override and key in os.environ:
      continue
    os.environ[key] = value
    applied.append(key)
  return applied

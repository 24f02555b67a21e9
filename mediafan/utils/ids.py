"""Identifier utilities."""

from __future__ import annotations

import re
import uuid


def generate_batch_id() -> str:
  """Return a new batch identifier."""
  return str(uuid.uuid4())


def generate_task_id() -> str:
  """Return a new item task identifier."""
  return str(uuid.uuid4())


def slugify_label(label: str) -> str:
  """Return a stable target id derived from a human label ("Black Hoodie" -> "black-hoodie")."""
  slug = re.sub(r"[^a-z0-9]+", "-", label.strip().lower()).strip("-")
  return slug or "target"

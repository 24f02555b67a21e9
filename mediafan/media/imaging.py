"""Pillow helpers for inspecting and normalizing image payloads."""

from __future__ import annotations

import io

from PIL import Image, UnidentifiedImageError


def sniff_mime_type(payload: bytes) -> str | None:
  """Return the image MIME type Pillow detects in the payload, or None."""
  if not payload:
    return None
  try:
    with Image.open(io.BytesIO(payload)) as image:
      image_format = image.format
  except (UnidentifiedImageError, OSError):
    return None
  if not image_format:
    return None
  return Image.MIME.get(image_format.upper())


def is_decodable_image(payload: bytes) -> bool:
  """Return True when the payload is a complete image Pillow can decode."""
  if not payload:
    return False
  try:
    with Image.open(io.BytesIO(payload)) as image:
      image.verify()
  except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
    return False
  return True


def convert_to_webp(image_bytes: bytes, *, quality: int = 88) -> bytes:
  """Convert image bytes into a WebP payload for storage or download."""
  image = Image.open(io.BytesIO(image_bytes))
  # Convert alpha-free and alpha images consistently to avoid mode-related encoder errors.
  converted = image.convert("RGBA") if image.mode not in {"RGB", "RGBA"} else image
  output = io.BytesIO()
  converted.save(output, format="WEBP", quality=quality, method=6)
  return output.getvalue()

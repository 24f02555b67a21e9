"""Shared data contracts for the fan-out pipeline."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Media(BaseModel):
  """Canonical in-memory binary asset with an explicit MIME type."""

  model_config = ConfigDict(frozen=True)

  mime_type: str
  payload: bytes = Field(repr=False)

  @field_validator("mime_type")
  @classmethod
  def _normalize_mime_type(cls, value: str) -> str:
    # Drop parameters such as "; charset=binary" so comparisons stay exact.
    normalized = value.split(";", 1)[0].strip().lower()
    if "/" not in normalized:
      raise ValueError(f"Invalid MIME type {value!r}.")
    return normalized

  @property
  def size(self) -> int:
    return len(self.payload)

  @property
  def is_image(self) -> bool:
    return self.mime_type.startswith("image/")


class Seed(BaseModel):
  """The user's creative input for a batch."""

  model_config = ConfigDict(frozen=True)

  instruction_text: str = ""
  reference_media: Media | None = None

  @model_validator(mode="after")
  def _require_some_input(self) -> Seed:
    if not self.instruction_text.strip() and self.reference_media is None:
      raise ValueError("A seed needs instruction text, a reference image, or both.")
    return self

  @property
  def has_instruction(self) -> bool:
    return bool(self.instruction_text.strip())


class Target(BaseModel):
  """A single unit the batch must produce an artifact for (a product, an angle, a style)."""

  model_config = ConfigDict(frozen=True)

  id: str = Field(min_length=1)
  label: str = Field(min_length=1)
  auxiliary_media: Media | None = None
  # Unresolved form of auxiliary_media (data URI, URL, or file path), decoded inside the item task.
  auxiliary_source: str | None = None
  metadata: dict[str, Any] = Field(default_factory=dict)

  @property
  def needs_resolution(self) -> bool:
    return self.auxiliary_media is None and bool(self.auxiliary_source)

  def with_media(self, media: Media) -> Target:
    """Return a copy carrying resolved auxiliary media."""
    return self.model_copy(update={"auxiliary_media": media})


class GenerationRequest(BaseModel):
  """Vendor-neutral instruction plus ordered attachments."""

  model_config = ConfigDict(frozen=True)

  instruction: str = Field(min_length=1)
  # Order is significant: adapters may give positions meaning (scene first, subject second).
  attachments: tuple[Media, ...] = ()

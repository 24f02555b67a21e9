"""Prompt builders that turn creative inputs into vendor-neutral generation requests.

Every builder is pure: media must already be resolved, and identical inputs
always produce identical requests.
"""

from __future__ import annotations

from typing import Final

from mediafan.ai.pipeline.contracts import GenerationRequest, Media

CAMERA_ANGLES: Final[tuple[str, ...]] = (
  "from a top-down view with professional studio lighting",
  "from a side profile view with dramatic lighting",
  "from a 45-degree angle with soft natural lighting",
)

USAGE_CONTEXTS: Final[tuple[str, ...]] = (
  "in its ideal use environment with realistic lighting and setting",
  "in a luxury lifestyle setting that matches its style and purpose",
  "in a modern, minimalist environment that highlights its design",
)

STORE_STYLES: Final[tuple[str, ...]] = (
  "Modern and minimal design with clean lines.",
  "Bold and colorful design with vibrant elements.",
  "Elegant and luxury design with premium aesthetics.",
)

DEFAULT_INTEGRATION_INSTRUCTION: Final[str] = "Place the subject naturally into this scene."


def _require_text(value: str, field_name: str) -> str:
  text = value.strip()
  if not text:
    raise ValueError(f"{field_name} must not be blank.")
  return text


def design_from_prompt(instruction_text: str, reference_media: Media | None = None) -> GenerationRequest:
  """Build a standalone print-ready design request, optionally guided by a reference image."""
  description = instruction_text.strip()
  if not description and reference_media is None:
    raise ValueError("A design needs a description, a reference image, or both.")

  subject = f"based on this description: {description}" if description else "based on the attached reference image"
  instruction = (
    f"Create a high-quality design image suitable for print-on-demand products {subject}. "
    "Make it visually appealing, with good contrast and clear details that would look great on merchandise like t-shirts, mugs, and other products."
  )
  if description and reference_media is not None:
    instruction += " Use the attached image as a style and composition reference."

  attachments = (reference_media,) if reference_media is not None else ()
  return GenerationRequest(instruction=instruction, attachments=attachments)


def composite_onto(instruction_text: str, base_media: Media, subject_media: Media) -> GenerationRequest:
  """Build a request that places the subject (second attachment) into the base scene (first attachment)."""
  direction = instruction_text.strip() or DEFAULT_INTEGRATION_INSTRUCTION
  instruction = (
    f"{direction} The first image is the scene; the second image is the subject to place into it. "
    "Make the subject look realistic and well-integrated, as if it naturally belongs in this environment, "
    "with proper lighting, shadows, and perspective."
  )
  return GenerationRequest(instruction=instruction, attachments=(base_media, subject_media))


def mockup_of(design_media: Media, target_media: Media, target_label: str) -> GenerationRequest:
  """Build a request for a product photo showing the design (first attachment) on the product (second attachment)."""
  label = _require_text(target_label, "target_label")
  instruction = (
    f"Create a realistic product mockup showing this design printed on a {label}. "
    "The design should be properly placed on the product with realistic lighting, shadows, and perspective. "
    "Make it look like a professional product photo that would be used in an e-commerce store. "
    "The design should appear naturally integrated onto the product surface."
  )
  return GenerationRequest(instruction=instruction, attachments=(design_media, target_media))


def perspective_of(subject_media: Media, subject_label: str, variant_description: str) -> GenerationRequest:
  """Build a request for one angle or context variant of a product photo."""
  label = _require_text(subject_label, "subject_label")
  variant = _require_text(variant_description, "variant_description")
  return GenerationRequest(instruction=f"Show this {label} {variant}.", attachments=(subject_media,))


def styled_preview_of(concept_text: str, style_description: str, reference_media: Media | None = None) -> GenerationRequest:
  """Build a storefront homepage preview request for one visual style."""
  concept = _require_text(concept_text, "concept_text")
  style = _require_text(style_description, "style_description")
  instruction = (
    f"Generate an image of a realistic e-commerce website UI preview for a store based on this description: {concept}. "
    "Make it look professional with products, navigation, and branding. Show a complete website homepage layout. "
    f"Style: {style}"
  )
  attachments = (reference_media,) if reference_media is not None else ()
  return GenerationRequest(instruction=instruction, attachments=attachments)


def variant_of(instruction_text: str, variant_label: str, reference_media: Media | None = None, variant_media: Media | None = None) -> GenerationRequest:
  """Build a generic per-target request: the seed instruction specialized for one variant label."""
  label = _require_text(variant_label, "variant_label")
  base = instruction_text.strip() or "Create a new image based on the attached reference."
  instruction = f"{base} Variant: {label}."
  attachments = tuple(media for media in (reference_media, variant_media) if media is not None)
  return GenerationRequest(instruction=instruction, attachments=attachments)

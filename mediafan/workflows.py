"""Use-case drivers built on the fan-out orchestrator.

Each workflow maps one product feature onto targets and a request factory:
print-on-demand mockups, product perspectives, products placed into a
reference scene, and multi-style storefront previews.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from mediafan.ai.pipeline.contracts import GenerationRequest, Media, Seed, Target
from mediafan.ai.prompts import CAMERA_ANGLES, DEFAULT_INTEGRATION_INSTRUCTION, STORE_STYLES, USAGE_CONTEXTS, composite_onto, design_from_prompt, mockup_of, perspective_of, styled_preview_of
from mediafan.ai.providers.base import ClientConfig
from mediafan.ai.providers.gemini import GeminiImageClient
from mediafan.config import Settings, get_settings
from mediafan.jobs.models import RequestFactory
from mediafan.jobs.orchestrator import BatchCompleteCallback, ExecutionPolicy, FanOutOrchestrator, TaskUpdateCallback, create_batch
from mediafan.jobs.progress import BatchResult
from mediafan.media.codec import MediaCodec
from mediafan.utils.ids import slugify_label

MediaSource = Media | str | Path

_STORE_NAME_PATTERN = re.compile(r"called ['\"](.*?)['\"]")


def build_orchestrator(settings: Settings | None = None) -> FanOutOrchestrator:
  """Wire a Gemini-backed orchestrator from environment settings."""
  settings = settings or get_settings()
  config = ClientConfig.from_settings(settings)
  return FanOutOrchestrator(GeminiImageClient(config), codec=MediaCodec.from_settings(settings), default_policy=ExecutionPolicy.from_config(config))


class ProductRef(BaseModel):
  """A catalog product or user upload: a name plus an image as data URI, URL, or local path."""

  model_config = ConfigDict(frozen=True)

  name: str = Field(min_length=1)
  image: str = Field(min_length=1)
  id: str | None = None


def products_as_targets(products: Sequence[ProductRef]) -> list[Target]:
  """Map products to targets; each image is decoded inside its own task so one bad image fails only that product."""
  targets: list[Target] = []
  used_ids: set[str] = set()
  for product in products:
    base_id = product.id or slugify_label(product.name)
    target_id = base_id
    suffix = 2
    while target_id in used_ids:
      target_id = f"{base_id}-{suffix}"
      suffix += 1
    used_ids.add(target_id)

    targets.append(Target(id=target_id, label=product.name, auxiliary_source=product.image))
  return targets


def extract_store_name(prompt: str, default: str = "Store") -> str:
  """Pull a store name out of prompts like: a candle shop called "Wick & Co"."""
  match = _STORE_NAME_PATTERN.search(prompt)
  if match and match.group(1).strip():
    return match.group(1).strip()
  return default


def _require_target_media(target: Target) -> Media:
  if target.auxiliary_media is None:
    raise ValueError(f"Target {target.id!r} has no resolved image.")
  return target.auxiliary_media


async def generate_product_mockups(
  orchestrator: FanOutOrchestrator,
  seed: Seed,
  products: Sequence[ProductRef],
  policy: ExecutionPolicy | None = None,
  on_task_update: TaskUpdateCallback | None = None,
  on_batch_complete: BatchCompleteCallback | None = None,
  *,
  cancel_event: asyncio.Event | None = None,
  placeholder: Media | None = None,
) -> BatchResult:
  """Put one design on every selected product.

  With prompt text the design is generated once first (the reference image, if any,
  guides it); without text the seed's reference image is the design itself.
  A placeholder stands in for a design the model answered with text only.
  """
  targets = products_as_targets(products)

  async def _design() -> Media:
    if seed.has_instruction:
      return await orchestrator.submit(design_from_prompt(seed.instruction_text, seed.reference_media), policy)
    return seed.reference_media

  def _factory_for(design: Media) -> RequestFactory:
    def _factory(_seed: Seed, target: Target) -> GenerationRequest:
      return mockup_of(design, _require_target_media(target), target.label)

    return _factory

  return await orchestrator.run_with_prerequisite(seed, targets, _design, _factory_for, policy, on_task_update, on_batch_complete, cancel_event=cancel_event, placeholder=placeholder)


def perspective_targets(subject_label: str, angles: Sequence[str] = CAMERA_ANGLES, contexts: Sequence[str] = USAGE_CONTEXTS) -> list[Target]:
  """One target per camera angle, then one per usage context."""
  targets = [Target(id=f"angle-{i}", label=f"{subject_label} - Angle View {i}", metadata={"kind": "angle", "variant": angle}) for i, angle in enumerate(angles, start=1)]
  targets.extend(Target(id=f"context-{i}", label=f"{subject_label} - Context {i}", metadata={"kind": "context", "variant": context}) for i, context in enumerate(contexts, start=1))
  return targets


async def generate_product_perspectives(
  orchestrator: FanOutOrchestrator,
  subject: MediaSource,
  subject_label: str,
  policy: ExecutionPolicy | None = None,
  on_task_update: TaskUpdateCallback | None = None,
  on_batch_complete: BatchCompleteCallback | None = None,
  *,
  angles: Sequence[str] = CAMERA_ANGLES,
  contexts: Sequence[str] = USAGE_CONTEXTS,
  cancel_event: asyncio.Event | None = None,
) -> BatchResult:
  """Render one product from several camera angles and in several usage contexts."""
  seed = Seed(instruction_text=subject_label)
  targets = perspective_targets(subject_label, angles, contexts)

  async def _subject() -> Media:
    return await orchestrator.codec.resolve(subject)

  def _factory_for(subject_media: Media) -> RequestFactory:
    def _factory(_seed: Seed, target: Target) -> GenerationRequest:
      return perspective_of(subject_media, subject_label, target.metadata["variant"])

    return _factory

  return await orchestrator.run_with_prerequisite(seed, targets, _subject, _factory_for, policy, on_task_update, on_batch_complete, cancel_event=cancel_event)


async def visualize_in_scene(
  orchestrator: FanOutOrchestrator,
  scene: MediaSource,
  products: Sequence[ProductRef],
  instruction_text: str = "",
  policy: ExecutionPolicy | None = None,
  on_task_update: TaskUpdateCallback | None = None,
  on_batch_complete: BatchCompleteCallback | None = None,
  *,
  cancel_event: asyncio.Event | None = None,
) -> BatchResult:
  """Composite each product into the user's reference scene, scene first and product second."""
  seed = Seed(instruction_text=instruction_text.strip() or DEFAULT_INTEGRATION_INSTRUCTION)
  targets = products_as_targets(products)

  async def _scene() -> Media:
    return await orchestrator.codec.resolve(scene)

  def _factory_for(scene_media: Media) -> RequestFactory:
    def _factory(_seed: Seed, target: Target) -> GenerationRequest:
      return composite_onto(instruction_text, scene_media, _require_target_media(target))

    return _factory

  return await orchestrator.run_with_prerequisite(seed, targets, _scene, _factory_for, policy, on_task_update, on_batch_complete, cancel_event=cancel_event)


async def generate_store_previews(
  orchestrator: FanOutOrchestrator,
  seed: Seed,
  styles: Sequence[str] = STORE_STYLES,
  policy: ExecutionPolicy | None = None,
  on_task_update: TaskUpdateCallback | None = None,
  on_batch_complete: BatchCompleteCallback | None = None,
  *,
  cancel_event: asyncio.Event | None = None,
) -> BatchResult:
  """Render the same store concept in several visual styles."""
  if not seed.has_instruction:
    raise ValueError("Store previews need a store description.")

  store_name = extract_store_name(seed.instruction_text)
  targets = [Target(id=f"style-{i}", label=style, metadata={"store_name": store_name}) for i, style in enumerate(styles, start=1)]

  def _factory(batch_seed: Seed, target: Target) -> GenerationRequest:
    return styled_preview_of(batch_seed.instruction_text, target.label, batch_seed.reference_media)

  batch = create_batch(seed, targets, _factory)
  return await orchestrator.run(batch, policy, on_task_update, on_batch_complete, cancel_event=cancel_event)

"""Pipeline contracts."""

from mediafan.ai.pipeline.contracts import GenerationRequest, Media, Seed, Target

__all__ = ["GenerationRequest", "Media", "Seed", "Target"]

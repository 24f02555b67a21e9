"""Generative-media fan-out pipeline."""

__version__ = "0.1.0"

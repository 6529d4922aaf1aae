"""Core package for the widefield stimulus-triggered analysis pipeline."""

__all__ = [
    "analysis",
    "errors",
    "metadata",
    "pipeline",
    "preprocessing",
]

"""Widefield preprocessing entry points."""

from . import channels, hemo, motion, utils

__all__ = ["channels", "hemo", "motion", "utils"]

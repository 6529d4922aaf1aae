"""Hemodynamic correction of blue (GCaMP) frames using the violet channel."""

from __future__ import annotations

import logging
import warnings
from typing import Sequence

import numpy as np
from scipy.ndimage import uniform_filter1d

logger = logging.getLogger(__name__)


def baseline_dff(stack: np.ndarray, baseline_frames: Sequence[int]) -> np.ndarray:
    """Convert ``(rows, cols, frames)`` to dF/F against its own baseline mean.

    Pixels whose baseline is zero or missing become NaN. Baseline frames past
    the end of a short stack are ignored; without any baseline frame the
    whole stack is NaN.
    """

    stack = np.asarray(stack, dtype=np.float32)
    frames = [f for f in baseline_frames if f < stack.shape[-1]]
    if not frames:
        logger.warning(
            "No baseline frames within a %d-frame stack; values are treated as missing",
            stack.shape[-1],
        )
        return np.full(stack.shape, np.nan, dtype=np.float32)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        baseline = np.nanmean(stack[..., frames], axis=-1, keepdims=True)
    baseline = np.where(baseline == 0, np.nan, baseline)
    return ((stack - baseline) / baseline).astype(np.float32, copy=False)


def hemo_correct(
    blue: np.ndarray,
    violet: np.ndarray,
    baseline_frames: Sequence[int],
    smooth_frames: int = 5,
) -> np.ndarray:
    """Remove the violet-predicted hemodynamic component from the blue channel.

    Both channels are expressed as dF/F, the violet trace is smoothed over
    ``smooth_frames`` frames, and each pixel's violet trace is scaled by its
    least-squares coefficient ``sum(b * v) / sum(v ** 2)`` and subtracted from
    the blue trace. The result is already in dF/F units.
    """

    if np.shape(blue) != np.shape(violet):
        raise ValueError(
            f"Blue {np.shape(blue)} and violet {np.shape(violet)} stacks must have the same shape"
        )
    if len(baseline_frames) == 0:
        raise ValueError("Hemodynamic correction needs at least one baseline frame")

    blue_dff = baseline_dff(blue, baseline_frames)
    violet_dff = baseline_dff(violet, baseline_frames)
    if smooth_frames > 1:
        violet_dff = uniform_filter1d(violet_dff, size=smooth_frames, axis=-1, mode="nearest")

    numerator = np.nansum(blue_dff * violet_dff, axis=-1)
    denominator = np.nansum(violet_dff ** 2, axis=-1)
    denominator = np.where(denominator == 0, np.nan, denominator)
    coefficients = numerator / denominator

    corrected = blue_dff - violet_dff * coefficients[..., np.newaxis]
    logger.debug(
        "Hemodynamic regression: median coefficient %.3f over %d pixels",
        float(np.nanmedian(coefficients)) if np.isfinite(coefficients).any() else float("nan"),
        coefficients.size,
    )
    return corrected.astype(np.float32, copy=False)

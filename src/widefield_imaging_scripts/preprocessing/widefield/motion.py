"""Rigid motion correction by phase correlation against a fixed reference."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.fft import fft2, ifft2
from scipy.ndimage import fourier_shift

logger = logging.getLogger(__name__)

DEFAULT_MAX_SHIFT = 10


@dataclass(frozen=True)
class ReferenceImages:
    """Frequency-domain references for the blue and (optional) violet channel.

    Computed once from the first trial and shared, read-only, by every
    registration call of the run.
    """

    blue: np.ndarray
    violet: Optional[np.ndarray]
    source_trial: int = 1


def compute_reference(stack: np.ndarray) -> np.ndarray:
    """Return the 2-D spectrum of the per-pixel median frame of ``(rows, cols, frames)``."""

    stack = np.asarray(stack, dtype=np.float32)
    if stack.ndim != 3 or stack.shape[-1] == 0:
        raise ValueError(f"Expected a non-empty (rows, cols, frames) stack, got {stack.shape}")
    return fft2(np.median(stack, axis=-1))


def build_references(
    blue: np.ndarray, violet: Optional[np.ndarray], source_trial: int = 1
) -> ReferenceImages:
    return ReferenceImages(
        blue=compute_reference(blue),
        violet=compute_reference(violet) if violet is not None else None,
        source_trial=source_trial,
    )


def _wrapped_offsets(n: int) -> np.ndarray:
    return np.rint(np.fft.fftfreq(n) * n).astype(int)


def dft_registration(
    reference: np.ndarray,
    moving: np.ndarray,
    max_shift: int = DEFAULT_MAX_SHIFT,
) -> Tuple[np.ndarray, np.ndarray]:
    """Register a frame spectrum to a reference spectrum.

    The cross-correlation peak is searched only within ``max_shift`` pixels
    along each axis. Returns the ``(row, col)`` shift that moves the frame onto
    the reference and the shifted frame spectrum.
    """

    if reference.shape != moving.shape:
        raise ValueError(
            f"Reference {reference.shape} and frame {moving.shape} spectra differ in shape"
        )

    correlation = np.abs(ifft2(reference * np.conj(moving)))
    row_offsets = _wrapped_offsets(correlation.shape[0])
    col_offsets = _wrapped_offsets(correlation.shape[1])
    allowed = (np.abs(row_offsets)[:, None] <= max_shift) & (
        np.abs(col_offsets)[None, :] <= max_shift
    )
    correlation = np.where(allowed, correlation, -np.inf)

    peak_row, peak_col = np.unravel_index(np.argmax(correlation), correlation.shape)
    shift = np.array([row_offsets[peak_row], col_offsets[peak_col]], dtype=np.float64)
    if not shift.any():
        return shift, moving
    return shift, fourier_shift(moving, shift)


def register_stack(
    stack: np.ndarray,
    reference: np.ndarray,
    max_shift: int = DEFAULT_MAX_SHIFT,
) -> np.ndarray:
    """Motion-correct every frame of ``(rows, cols, frames)`` in place.

    Returns the per-frame ``(row, col)`` shifts as a ``(frames, 2)`` array.
    """

    shifts = np.zeros((stack.shape[-1], 2), dtype=np.float64)
    for frame_idx in range(stack.shape[-1]):
        shift, registered = dft_registration(
            reference, fft2(stack[:, :, frame_idx]), max_shift=max_shift
        )
        stack[:, :, frame_idx] = np.abs(ifft2(registered))
        shifts[frame_idx] = shift
    return shifts


def register_trial(
    blue: np.ndarray,
    violet: Optional[np.ndarray],
    references: ReferenceImages,
    max_shift: int = DEFAULT_MAX_SHIFT,
) -> np.ndarray:
    """Register both channels against their references; returns the blue shifts."""

    blue_shifts = register_stack(blue, references.blue, max_shift=max_shift)
    if violet is not None:
        if references.violet is None:
            raise ValueError("Violet frames supplied but no violet reference was computed")
        register_stack(violet, references.violet, max_shift=max_shift)
    if blue_shifts.size:
        logger.debug(
            "Largest blue-channel shift: %.0f px",
            float(np.abs(blue_shifts).max()),
        )
    return blue_shifts

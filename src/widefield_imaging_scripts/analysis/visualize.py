"""Stimulus-triggered activity map and trace figures."""

from __future__ import annotations

import logging
import warnings
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.colors import LinearSegmentedColormap

if TYPE_CHECKING:  # pragma: no cover
    from ..pipeline.orchestrator import PipelineResult

logger = logging.getLogger(__name__)


def _nanmean(data: np.ndarray, axis) -> np.ndarray:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        return np.nanmean(data, axis=axis)


def time_axis(n_frames: int, sampling_rate: float, pre_stim: float) -> np.ndarray:
    """Time of each frame in seconds relative to stimulus onset."""

    return np.arange(1, n_frames + 1) / sampling_rate - pre_stim


def activity_map(all_data: np.ndarray, stim_on_frame: int) -> np.ndarray:
    """Average activity after stimulus onset, over frames and then trials."""

    return _nanmean(_nanmean(all_data[:, :, stim_on_frame:, :], axis=2), axis=2)


def activity_trace(all_data: np.ndarray, pixel: Optional[Sequence[int]] = None) -> np.ndarray:
    """``(frames, trials)`` trace of one pixel, or of the mean over all pixels."""

    if pixel is None:
        flat = all_data.reshape(-1, all_data.shape[2], all_data.shape[3])
        return _nanmean(flat, axis=0)
    row, col = int(pixel[0]), int(pixel[1])
    if not (0 <= row < all_data.shape[0] and 0 <= col < all_data.shape[1]):
        raise ValueError(f"Pixel {(row, col)} outside the {all_data.shape[:2]} frame")
    return all_data[row, col, :, :]


def trial_average(all_data: np.ndarray) -> np.ndarray:
    """``(rows, cols, frames)`` average over trials."""

    return _nanmean(all_data, axis=3)


def colormap_blueblackred(n: int = 256) -> LinearSegmentedColormap:
    return LinearSegmentedColormap.from_list(
        "blueblackred", [(0.0, 0.0, 1.0), (0.0, 0.0, 0.0), (1.0, 0.0, 0.0)], N=n
    )


def stdshade(ax, traces: np.ndarray, alpha: float = 0.5, color: str = "r", x=None):
    """Plot the mean of ``(trials, frames)`` *traces* with a shaded SEM band."""

    traces = np.asarray(traces, dtype=float)
    if x is None:
        x = np.arange(traces.shape[1])
    mean = _nanmean(traces, axis=0)
    counts = np.sum(np.isfinite(traces), axis=0)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        sem = np.nanstd(traces, axis=0) / np.sqrt(np.maximum(counts, 1))
    ax.fill_between(x, mean - sem, mean + sem, color=color, alpha=alpha, linewidth=0)
    (line,) = ax.plot(x, mean, color=color)
    return line


def plot_stimulus_response(
    result: "PipelineResult",
    color_range: float = 0.03,
    pixel: Optional[Sequence[int]] = None,
    save_path: Optional[Path] = None,
):
    """Draw the post-stimulus activity map next to the dF/F trace.

    The figure is returned open; it is only written to disk when *save_path*
    is given.
    """

    all_data = result.all_data
    avg_map = activity_map(all_data, result.stim_on_frame)
    trace = activity_trace(all_data, pixel)
    times = time_axis(all_data.shape[2], result.sampling_rate, result.pre_stim)

    fig, (ax_map, ax_trace) = plt.subplots(1, 2, figsize=(10, 4.5))

    image = ax_map.imshow(
        avg_map, cmap=colormap_blueblackred(256), vmin=-color_range, vmax=color_range
    )
    fig.colorbar(image, ax=ax_map)
    ax_map.set_title("Stimulus-triggered activity")
    ax_map.axis("off")

    stdshade(ax_trace, trace.T, alpha=0.5, color="r", x=times)
    ax_trace.axvline(0, linestyle="--", color="k")
    ax_trace.axhline(0, linestyle="--", color="k")
    ax_trace.set_xlim(times.min(), times.max())
    ax_trace.set_box_aspect(1)
    ax_trace.set_xlabel("time after stimulus (s)")
    ax_trace.set_ylabel("fluorescence change (dF/F)")
    if pixel is None:
        ax_trace.set_title("Average change over all pixels")
    else:
        ax_trace.set_title(f"Average change at pixel ({pixel[0]}, {pixel[1]})")

    fig.tight_layout()
    if save_path is not None:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=150)
        logger.info("Saved stimulus response figure to %s", save_path)
    return fig

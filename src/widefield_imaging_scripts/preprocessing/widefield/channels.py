"""Split alternating blue/violet illumination frames into separate channels."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from ...metadata.config import AnalysisConfig
from ...metadata.models import TrialFile, parse_file_layout
from . import utils

logger = logging.getLogger(__name__)

_ANALOG_TEMPLATE = "Analog_{trial}.dat"


@dataclass
class ChannelSplit:
    """Per-channel ``(rows, cols, frames)`` stacks of one trial."""

    blue: np.ndarray
    violet: Optional[np.ndarray]
    stim_frame: Optional[int] = None

    @property
    def n_channels(self) -> int:
        return 1 if self.violet is None else 2


def _line(analog: np.ndarray, line: int) -> np.ndarray:
    if line < 1 or line > analog.shape[0]:
        raise ValueError(f"Analog line {line} not available ({analog.shape[0]} lines recorded)")
    return analog[line - 1]


def rising_edges(trace: np.ndarray) -> np.ndarray:
    """Sample indices where *trace* crosses half its range upwards."""

    trace = np.asarray(trace, dtype=np.float64)
    lo, hi = trace.min(), trace.max()
    if hi <= lo:
        return np.empty(0, dtype=int)
    high = trace > (lo + hi) / 2
    edges = np.flatnonzero(high[1:] & ~high[:-1]) + 1
    if high[0]:
        edges = np.concatenate(([0], edges))
    return edges


def detect_channel_order(analog: np.ndarray, trig_lines: Sequence[int]) -> bool:
    """Return ``True`` when the first frame of the trial was lit by the blue LED."""

    blue = rising_edges(_line(analog, trig_lines[0]))
    violet = rising_edges(_line(analog, trig_lines[1]))
    if blue.size == 0 and violet.size == 0:
        logger.debug("No light triggers found; assuming blue illumination first")
        return True
    if violet.size == 0:
        return True
    if blue.size == 0:
        return False
    return bool(blue[0] <= violet[0])


def detect_stimulus_frame(
    analog: np.ndarray, stim_line: int, frame_line: int
) -> Optional[int]:
    """Number of frame triggers on *frame_line* that precede the stimulus onset."""

    stim = rising_edges(_line(analog, stim_line))
    if stim.size == 0:
        return None
    frames = rising_edges(_line(analog, frame_line))
    return int(np.searchsorted(frames, stim[0], side="left"))


def analog_path(data_path: Path, trial_index: int) -> Path:
    return Path(data_path) / _ANALOG_TEMPLATE.format(trial=trial_index)


def split_channels(cfg: AnalysisConfig, trial: TrialFile) -> ChannelSplit:
    """Load a raw trial file and return its blue and violet frame stacks.

    Frames alternate between the two LEDs. The analog trigger lines decide
    which LED lit the first frame; without an ``Analog_<trial>.dat`` file the
    first frame is taken as blue. When the stimulus line shows an onset, both
    channels are trimmed to start ``cfg.stim_on_frame`` frames before it.
    """

    layout = parse_file_layout(trial.path)
    dtype = cfg.pixel_dtype or layout.dtype or "uint16"
    frame_size = None
    if layout.height is not None and layout.width is not None:
        frame_size = (layout.height, layout.width)

    _, stack = utils.load_raw_data(trial.path, dtype=dtype, frame_size=frame_size)
    stack = stack.astype(np.float32, copy=False)

    analog = None
    source = analog_path(cfg.data_path, trial.index)
    if source.exists():
        analog = utils.load_analog_data(source)
    else:
        logger.debug("No analog file for trial %d at %s", trial.index, source)

    if layout.n_channels == 1:
        blue, violet = stack, None
    else:
        blue_first = detect_channel_order(analog, cfg.trig_lines) if analog is not None else True
        first, second = stack[..., 0::2], stack[..., 1::2]
        n_frames = min(first.shape[-1], second.shape[-1])
        first, second = first[..., :n_frames], second[..., :n_frames]
        blue, violet = (first, second) if blue_first else (second, first)

    stim_frame = None
    if analog is not None:
        # blue LED pulses mark the per-channel frame clock
        stim_frame = detect_stimulus_frame(analog, cfg.stim_line, cfg.trig_lines[0])

    if stim_frame is not None:
        start = stim_frame - cfg.stim_on_frame
        if start < 0:
            logger.warning(
                "Trial %d: stimulus at frame %d leaves fewer than %d baseline frames",
                trial.index,
                stim_frame,
                cfg.stim_on_frame,
            )
            start = 0
        blue = blue[..., start:]
        if violet is not None:
            violet = violet[..., start:]

    if cfg.plot_chans:
        if violet is None:
            logger.info(
                "Trial %d: single channel, mean %.1f over %d frames",
                trial.index,
                float(blue.mean()) if blue.size else float("nan"),
                blue.shape[-1],
            )
        else:
            logger.info(
                "Trial %d: blue mean %.1f, violet mean %.1f over %d frames per channel",
                trial.index,
                float(blue.mean()) if blue.size else float("nan"),
                float(violet.mean()) if violet.size else float("nan"),
                blue.shape[-1],
            )

    return ChannelSplit(blue=blue, violet=violet, stim_frame=stim_frame)

"""Trial-by-trial orchestration of a stimulus-triggered widefield run."""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

import numpy as np
import pandas as pd

from ..errors import UnsupportedChannelConfigurationError
from ..metadata.config import AnalysisConfig, load_analysis_config
from ..metadata.loader import enumerate_trials, frame_times_path, load_frame_times
from ..metadata.models import TrialFile, TrialMetadata
from ..preprocessing.widefield import channels, hemo, motion, utils

logger = logging.getLogger(__name__)

_LOGGING_CONFIGURED = False

PREPROCESSED_DTYPE = "uint16"


@dataclass
class RunContext:
    """State shared by all trials of one run.

    ``references`` is filled by the first trial and only read afterwards.
    """

    cfg: AnalysisConfig
    data_size: tuple[int, int]
    n_frames: int
    baseline_frames: range
    references: Optional[motion.ReferenceImages] = None

    @property
    def hemo_applied(self) -> bool:
        return self.cfg.hemo_correct and not self.cfg.pre_proc


@dataclass
class TrialResult:
    """Bookkeeping for one processed trial."""

    trial_index: int
    path: Path
    n_channels: int
    native_frames: int
    stored_frames: int = 0
    stim_frame: Optional[int] = None
    max_shift_px: Optional[float] = None
    missing_values: int = 0

    def to_record(self) -> dict[str, object]:
        return {
            "trial": self.trial_index,
            "path": str(self.path),
            "n_channels": self.n_channels,
            "native_frames": self.native_frames,
            "stored_frames": self.stored_frames,
            "stim_frame": self.stim_frame,
            "max_shift_px": self.max_shift_px,
            "missing_values": self.missing_values,
        }


@dataclass
class PipelineResult:
    """Accumulated dF/F stack of a run plus the values needed to plot it.

    ``all_data`` is ``(rows, cols, frames, trials)``; NaN marks frames that a
    short trial never wrote and pixels without a usable baseline.
    """

    all_data: np.ndarray
    baseline_map: Optional[np.ndarray]
    stim_on_frame: int
    sampling_rate: float
    pre_stim: float
    trials: list[TrialResult] = field(default_factory=list)
    references: Optional[motion.ReferenceImages] = None

    @property
    def n_trials(self) -> int:
        return self.all_data.shape[-1]

    @property
    def valid_mask(self) -> np.ndarray:
        return valid_mask(self.all_data)

    def iter_trial_records(self) -> Iterator[dict[str, object]]:
        for trial in self.trials:
            yield trial.to_record()

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self.iter_trial_records())


def valid_mask(all_data: np.ndarray) -> np.ndarray:
    """Boolean mask that is ``False`` wherever the missing-value sentinel sits."""

    return ~np.isnan(all_data)


def allocate_accumulator(
    data_size: Sequence[int], n_frames: int, n_trials: int
) -> np.ndarray:
    """Pre-allocate the ``(rows, cols, frames, trials)`` stack filled with NaN."""

    return np.full(
        (int(data_size[0]), int(data_size[1]), int(n_frames), int(n_trials)),
        np.nan,
        dtype=np.float32,
    )


def store_trial(all_data: np.ndarray, slot: int, stack: np.ndarray, n_frames: int) -> int:
    """Copy at most ``n_frames`` frames of *stack* into trial *slot*.

    Short trials leave their remaining frames at NaN; long trials are cut.
    Returns the number of frames written.
    """

    stored = min(stack.shape[-1], n_frames)
    all_data[:, :, :stored, slot] = stack[:, :, :stored]
    return stored


def _mark_non_finite(data: np.ndarray, trial_index: int) -> tuple[np.ndarray, int]:
    bad = ~np.isfinite(data)
    n_bad = int(bad.sum())
    if n_bad:
        logger.warning(
            "Trial %d: %d non-finite values after correction are treated as missing",
            trial_index,
            n_bad,
        )
        data = np.where(bad, np.nan, data).astype(np.float32, copy=False)
    return data, n_bad


def _load_preprocessed(trial: TrialFile, cfg: AnalysisConfig) -> np.ndarray:
    metadata: Optional[TrialMetadata] = trial.metadata
    if metadata is None:
        metadata = load_frame_times(
            frame_times_path(cfg.data_path, trial.index), trial_index=trial.index
        )
    _, data = utils.load_raw_data(
        trial.path,
        dtype=cfg.pixel_dtype or PREPROCESSED_DTYPE,
        frame_size=metadata.img_size,
    )
    return data


def process_trial(trial: TrialFile, context: RunContext) -> tuple[np.ndarray, TrialResult]:
    """Load, correct and downsample one trial.

    Raw trials are split into blue and violet frames and motion-corrected
    against the run's references, which the first trial creates. With
    hemodynamic correction the returned stack is already dF/F; otherwise it is
    the registered blue channel in raw units. Preprocessed trials are loaded
    as a single channel without correction.
    """

    cfg = context.cfg
    stim_frame = None
    max_shift_px = None

    if not cfg.pre_proc:
        split = channels.split_channels(cfg, trial)
        if cfg.hemo_correct and split.violet is None:
            raise UnsupportedChannelConfigurationError(
                f"Hemodynamic correction needs two channels but {trial.path.name} has one"
            )

        if context.references is not None and (
            (split.violet is None) != (context.references.violet is None)
        ):
            raise UnsupportedChannelConfigurationError(
                f"Trial {trial.index} has {split.n_channels} channel(s), unlike the reference trial "
                f"{context.references.source_trial}"
            )

        if split.blue.shape[-1] == 0:
            # nothing to register; the next trial with frames provides the references
            logger.warning(
                "Trial %d has no frames after channel splitting; it stays missing",
                trial.index,
            )
            data = split.blue
        else:
            if context.references is None:
                context.references = motion.build_references(
                    split.blue, split.violet, source_trial=trial.index
                )
                logger.info("Computed motion-correction references from trial %d", trial.index)

            shifts = motion.register_trial(
                split.blue, split.violet, context.references, max_shift=cfg.max_shift
            )
            if shifts.size:
                max_shift_px = float(np.abs(shifts).max())

            if cfg.hemo_correct:
                data = hemo.hemo_correct(
                    split.blue,
                    split.violet,
                    context.baseline_frames,
                    smooth_frames=cfg.hemo_smooth_frames,
                )
            else:
                data = split.blue
        n_channels = split.n_channels
        stim_frame = split.stim_frame
    else:
        data = _load_preprocessed(trial, cfg)
        n_channels = 1

    data, n_bad = _mark_non_finite(np.asarray(data, dtype=np.float32), trial.index)
    resized = utils.array_resize(data, cfg.downsample)
    if resized.shape[:2] != tuple(context.data_size):
        raise ValueError(
            f"Trial {trial.index} downsamples to {resized.shape[:2]}, "
            f"expected {tuple(context.data_size)} from the run metadata"
        )

    result = TrialResult(
        trial_index=trial.index,
        path=trial.path,
        n_channels=n_channels,
        native_frames=resized.shape[-1],
        stim_frame=stim_frame,
        max_shift_px=max_shift_px,
        missing_values=n_bad,
    )
    return resized, result


def accumulate_trials(
    cfg: AnalysisConfig,
    trials: Sequence[TrialFile],
    run_metadata: TrialMetadata,
) -> tuple[np.ndarray, list[TrialResult], RunContext]:
    """Process every trial in order and collect them in one 4-D stack."""

    data_size = (
        run_metadata.height // cfg.downsample,
        run_metadata.width // cfg.downsample,
    )
    if min(data_size) == 0:
        raise ValueError(
            f"Downsampling factor {cfg.downsample} is larger than the image size "
            f"{run_metadata.height} x {run_metadata.width}"
        )

    n_frames = cfg.n_frames
    n_trials = len(trials)
    all_data = allocate_accumulator(data_size, n_frames, n_trials)
    context = RunContext(
        cfg=cfg,
        data_size=data_size,
        n_frames=n_frames,
        baseline_frames=cfg.baseline_frames,
    )

    report_every = n_trials // 5
    results: list[TrialResult] = []
    for slot, trial in enumerate(trials):
        stack, result = process_trial(trial, context)
        result.stored_frames = store_trial(all_data, slot, stack, n_frames)
        if result.native_frames < n_frames:
            logger.debug(
                "Trial %d has %d of %d frames; the rest stay missing",
                trial.index,
                result.native_frames,
                n_frames,
            )
        results.append(result)

        if report_every and (slot + 1) % report_every == 0:
            logger.info("%d / %d files loaded", slot + 1, n_trials)

    return all_data, results, context


def compute_baseline(all_data: np.ndarray, baseline_frames: Sequence[int]) -> np.ndarray:
    """Per-pixel mean over the baseline frames of each trial, then over trials.

    Missing values are ignored; pixels without any baseline value are NaN.
    """

    frames = list(baseline_frames)
    if not frames:
        raise ValueError("Baseline window is empty")
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        per_trial = np.nanmean(all_data[:, :, frames, :], axis=2)
        baseline = np.nanmean(per_trial, axis=2)

    n_missing = int(np.isnan(baseline).sum())
    if n_missing:
        logger.warning("%d pixel(s) have no baseline values", n_missing)
    return baseline.astype(np.float32, copy=False)


def compute_dff(
    all_data: np.ndarray, baseline_frames: Sequence[int]
) -> tuple[np.ndarray, np.ndarray]:
    """Return ``((all_data - baseline) / baseline, baseline)``.

    Pixels with a zero or missing baseline are NaN in the result.
    """

    baseline = compute_baseline(all_data, baseline_frames)
    divisor = np.where(baseline == 0, np.nan, baseline)[:, :, np.newaxis, np.newaxis]
    dff = (all_data - divisor) / divisor
    return dff.astype(np.float32, copy=False), baseline


def _configure_logging(cfg: AnalysisConfig) -> None:
    global _LOGGING_CONFIGURED
    if not cfg.apply_log_settings or _LOGGING_CONFIGURED:
        return
    level_name = str(cfg.log_level).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        try:
            level = int(level_name)
        except ValueError:
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )
    logging.getLogger().setLevel(level)
    _LOGGING_CONFIGURED = True
    logger.setLevel(level)


def run_pipeline(cfg: Optional[AnalysisConfig] = None, **overrides: Any) -> PipelineResult:
    """Load, correct, downsample and normalise every trial of a run.

    Options come from *cfg* (or :func:`load_analysis_config`) with *overrides*
    applied on top. Any error aborts the whole run; nothing is written to disk.
    """

    if cfg is None:
        cfg = load_analysis_config(**overrides)
    elif overrides:
        cfg = AnalysisConfig.model_validate({**cfg.model_dump(), **overrides})

    _configure_logging(cfg)
    logger.info("========== Starting widefield analysis (%s) ==========", cfg.data_path)

    trials, run_metadata = enumerate_trials(cfg)
    all_data, results, context = accumulate_trials(cfg, trials, run_metadata)

    baseline_map = None
    if not context.hemo_applied:
        # hemodynamic correction already returns dF/F
        all_data, baseline_map = compute_dff(all_data, context.baseline_frames)

    logger.info(
        "========== Finished: %d trial(s), stack shape %s ==========",
        len(results),
        all_data.shape,
    )
    return PipelineResult(
        all_data=all_data,
        baseline_map=baseline_map,
        stim_on_frame=cfg.stim_on_frame,
        sampling_rate=cfg.sampling_rate,
        pre_stim=cfg.pre_stim,
        trials=results,
        references=context.references,
    )

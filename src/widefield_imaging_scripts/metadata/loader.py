"""Helper functions to locate trial files and their metadata on disk."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
from scipy import io as scio

from ..errors import MissingMetadataError
from .config import AnalysisConfig
from .models import TrialFile, TrialMetadata

logger = logging.getLogger(__name__)

_FRAME_TIMES_TEMPLATE = "frameTimes_{trial:04d}"
_FRAME_TIMES_SUFFIXES = (".mat", ".json")


def discover_trial_files(
    data_path: Path,
    file_name: str,
    file_ext: Optional[str] = None,
    max_trials: Optional[int] = None,
) -> List[Path]:
    """Return files in *data_path* whose name starts with *file_name*.

    Files are sorted by name, which matches the acquisition's zero-padded trial
    numbering. When *file_ext* is given, other extensions are ignored.
    """

    data_path = Path(data_path)
    if not data_path.exists():
        raise FileNotFoundError(f"Data directory not found: {data_path}")

    candidates = sorted(p for p in data_path.glob(f"{file_name}*") if p.is_file())
    if file_ext:
        candidates = [p for p in candidates if p.suffix.lower() == file_ext.lower()]
    if not candidates:
        raise FileNotFoundError(
            f"No imaging files matching '{file_name}*{file_ext or ''}' found in {data_path}"
        )

    if max_trials is not None:
        candidates = candidates[:max_trials]
    return candidates


def frame_times_path(data_path: Path, trial_index: int) -> Path:
    """Return the ``frameTimes`` sidecar for a 1-based trial number."""

    stem = _FRAME_TIMES_TEMPLATE.format(trial=trial_index)
    for suffix in _FRAME_TIMES_SUFFIXES:
        candidate = Path(data_path) / f"{stem}{suffix}"
        if candidate.exists():
            return candidate
    raise MissingMetadataError(
        f"No {stem}.mat or {stem}.json found in {data_path}; cannot determine image size"
    )


def _read_mat_img_size(path: Path):
    try:
        payload = scio.loadmat(path, variable_names=["imgSize"])
    except NotImplementedError:
        # MATLAB v7.3 files are HDF5 containers
        import mat73

        payload = mat73.loadmat(str(path), only_include=["imgSize"])
    return payload.get("imgSize")


def load_frame_times(path: Path, trial_index: int = 1) -> TrialMetadata:
    """Load the ``imgSize`` record of one trial from ``.mat`` or ``.json``."""

    path = Path(path)
    if not path.exists():
        raise MissingMetadataError(f"Metadata file not found: {path}")

    if path.suffix.lower() == ".json":
        img_size = json.loads(path.read_text(encoding="utf-8")).get("imgSize")
    else:
        img_size = _read_mat_img_size(path)

    if img_size is None:
        raise MissingMetadataError(f"'imgSize' missing from {path}")

    values = np.asarray(img_size, dtype=float).ravel()
    return TrialMetadata(
        trial_index=trial_index,
        img_size=tuple(int(v) for v in values),
        source=path,
    )


def preprocessed_trial_path(cfg: AnalysisConfig, trial_index: int) -> Path:
    return Path(cfg.data_path) / f"{cfg.file_name}_{trial_index:04d}{cfg.file_ext}"


def enumerate_trials(cfg: AnalysisConfig) -> Tuple[List[TrialFile], TrialMetadata]:
    """Find the trials of a run and the run-level image size.

    Raw data take the image size from trial 1's sidecar. Preprocessed data are
    numbered ``<file_name>_XXXX<ext>`` and every trial carries its own sidecar.
    """

    data_path = Path(cfg.data_path)
    paths = discover_trial_files(
        data_path,
        cfg.file_name,
        file_ext=cfg.file_ext,
        max_trials=cfg.max_trials,
    )
    run_metadata = load_frame_times(frame_times_path(data_path, 1), trial_index=1)
    logger.info(
        "Found %d trial file(s) in %s (image size %s)",
        len(paths),
        data_path,
        run_metadata.img_size,
    )

    trials: List[TrialFile] = []
    for index, path in enumerate(paths, start=1):
        if not cfg.pre_proc:
            trials.append(TrialFile(index=index, path=path))
            continue
        metadata = load_frame_times(frame_times_path(data_path, index), trial_index=index)
        trials.append(
            TrialFile(
                index=index,
                path=preprocessed_trial_path(cfg, index),
                metadata=metadata,
            )
        )
    return trials, run_metadata

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Sequence

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from widefield_imaging_scripts.metadata.config import AnalysisConfig


def _write_header(fh, values: Sequence[float]) -> None:
    np.array([len(values)], dtype="<f8").tofile(fh)
    np.asarray(values, dtype="<f8").tofile(fh)


@pytest.fixture
def write_dat():
    """Write ``(frames, rows, cols)`` pixels in the binary trial format."""

    def _write(
        path: Path,
        frames: np.ndarray,
        dtype: str = "uint16",
        timestamps: Optional[Sequence[float]] = None,
        header: Optional[Sequence[float]] = None,
    ) -> Path:
        frames = np.asarray(frames)
        if header is None:
            n_frames, rows, cols = frames.shape
            header = list(timestamps or []) + [rows, cols, n_frames]
        with Path(path).open("wb") as fh:
            _write_header(fh, header)
            frames.astype(dtype).tofile(fh)
        return Path(path)

    return _write


@pytest.fixture
def write_analog():
    """Write ``(lines, samples)`` analog traces as ``Analog_<trial>.dat``."""

    def _write(path: Path, lines: np.ndarray) -> Path:
        lines = np.asarray(lines, dtype="<i2")
        with Path(path).open("wb") as fh:
            _write_header(fh, [0.0, lines.shape[0], lines.shape[1]])
            lines.tofile(fh)
        return Path(path)

    return _write


@pytest.fixture
def write_frame_times():
    def _write(folder: Path, trial: int, img_size: Sequence[int]) -> Path:
        path = Path(folder) / f"frameTimes_{trial:04d}.json"
        path.write_text(json.dumps({"imgSize": [int(v) for v in img_size]}))
        return path

    return _write


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides) -> AnalysisConfig:
        data = {
            "data_path": tmp_path,
            "file_name": "Frames_2_16_16_uint16",
            "sampling_rate": 10,
            "pre_stim": 0.5,
            "post_stim": 0.5,
            "downsample": 2,
            "hemo_correct": False,
            "plot_chans": False,
            "max_shift": 3,
        }
        data.update(overrides)
        return AnalysisConfig.model_validate(data)

    return _make


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    monkeypatch.delenv("WIDEFIELD_DATA_PATH", raising=False)

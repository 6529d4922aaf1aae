from __future__ import annotations

import os
import platform
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


_DEFAULT_CONFIG_FILENAMES = (
    "metadata/analysis_defaults.yaml",
    "metadata/analysis_defaults.yml",
)
_PROJECT_OVERRIDE_FILENAMES = (
    "metadata/analysis.yaml",
    "metadata/analysis.yml",
    "analysis.yaml",
)
_DATA_PATH_ENV = "WIDEFIELD_DATA_PATH"
_FRAME_TOLERANCE = 1e-6


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[3]


def _running_in_wsl() -> bool:
    if os.name == "nt":
        return False
    if os.environ.get("WSL_INTEROP") or os.environ.get("WSL_DISTRO_NAME"):
        return True
    try:
        release = Path("/proc/sys/kernel/osrelease").read_text(encoding="utf-8")
    except OSError:
        release = platform.uname().release
    return "microsoft" in release.lower()


def normalise_pathlike(value: str | Path | None) -> Optional[Path]:
    """Convert Windows-style paths to POSIX when running on WSL."""

    if value is None:
        return None

    text = str(value).strip()
    if text == "":
        return Path(text)

    # Drive letter paths (e.g. D:\widefield\mapping) land under /mnt on WSL.
    if _running_in_wsl() and len(text) >= 2 and text[1] == ":":
        base = Path("/mnt") / text[0].lower()
        for part in text[2:].replace("\\", "/").split("/"):
            if part:
                base /= part
        return base

    if "\\" in text:
        text = text.replace("\\", "/")

    return Path(text)


def _resolve_candidate_path(name: str | Path) -> Optional[Path]:
    candidate = Path(name)
    if candidate.is_absolute() and candidate.exists():
        return candidate
    repo_candidate = _repo_root() / candidate
    if repo_candidate.exists():
        return repo_candidate
    cwd_candidate = Path.cwd() / candidate
    if cwd_candidate.exists():
        return cwd_candidate
    return None


def load_yaml_mapping(path: Path) -> Dict[str, Any]:
    """Load a YAML mapping document."""

    from ruamel.yaml import YAML

    yaml = YAML(typ="safe")
    data = yaml.load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, Mapping):
        raise TypeError(f"Expected mapping at {path}, found {type(data).__name__}")
    return dict(data)


def _deep_update(base: Dict[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in updates.items():
        if (
            key in base
            and isinstance(base[key], Mapping)
            and isinstance(value, Mapping)
        ):
            base[key] = _deep_update(dict(base[key]), value)
        else:
            base[key] = value
    return base


def _as_frame_count(value: float, label: str) -> int:
    rounded = round(value)
    if abs(value - rounded) > _FRAME_TOLERANCE:
        raise ValueError(
            f"{label} must correspond to a whole number of frames, got {value:.6g}"
        )
    return int(rounded)


class AnalysisConfig(BaseModel):
    """Options for one stimulus-triggered analysis run.

    Durations are in seconds and the sampling rate is the per-channel frame
    rate, so ``sampling_rate * (pre_stim + post_stim)`` is the number of frames
    kept per trial. Analog line numbers are 1-based, matching the labels used
    by the acquisition software.
    """

    model_config = ConfigDict(extra="ignore")

    apply_log_settings: bool = Field(
        default=False,
        description="Configure logging automatically when running the pipeline.",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level to apply when configuring logging.",
    )
    data_path: Path = Field(
        default=Path("."),
        description="Folder containing trial files and frameTimes metadata.",
    )
    file_name: str = Field(
        default="Frames_2_512_512_uint8",
        description="Base name of the imaging data files.",
    )
    stim_line: int = Field(
        default=4,
        ge=1,
        description="Analog line that carries the stimulus trigger.",
    )
    trig_lines: tuple[int, int] = Field(
        default=(2, 3),
        description="Analog lines for the blue and violet light triggers.",
    )
    pre_stim: float = Field(
        default=0.5,
        gt=0,
        description="Pre-stimulus duration in seconds.",
    )
    post_stim: float = Field(
        default=1.0,
        ge=0,
        description="Post-stimulus duration in seconds.",
    )
    sampling_rate: float = Field(
        default=30.0,
        gt=0,
        description="Per-channel sampling rate in Hz.",
    )
    downsample: int = Field(
        default=4,
        ge=1,
        description="Spatial downsampling factor.",
    )
    hemo_correct: bool = Field(
        default=True,
        description="Apply hemodynamic correction (dual-wavelength raw data only).",
    )
    file_ext: str = Field(
        default=".dat",
        description="Extension of the imaging data files (.dat, .tif or .tiff).",
    )
    pre_proc: bool = Field(
        default=False,
        description="Data are a single preprocessed channel that can be loaded directly.",
    )
    plot_chans: bool = Field(
        default=True,
        description="Log a per-channel summary for each dual-wavelength trial.",
    )
    pixel_dtype: Optional[Literal["uint8", "uint16"]] = Field(
        default=None,
        description="Override for the per-pixel data width; inferred from file names when unset.",
    )
    max_shift: int = Field(
        default=10,
        ge=0,
        description="Largest rigid shift (pixels, per axis) searched during motion correction.",
    )
    hemo_smooth_frames: int = Field(
        default=5,
        ge=1,
        description="Temporal smoothing window applied to the violet channel before regression.",
    )
    max_trials: Optional[int] = Field(
        default=None,
        ge=1,
        description="Only use the first N trials to make a run quicker.",
    )
    color_range: float = Field(
        default=0.03,
        gt=0,
        description="Range of the colour scale for dF/F maps.",
    )
    trace_pixel: Optional[tuple[int, int]] = Field(
        default=(105, 75),
        description="Pixel (row, col) for the activity trace; null averages over all pixels.",
    )

    @field_validator("data_path", mode="before")
    @classmethod
    def _normalise_paths(cls, value):
        return normalise_pathlike(value)

    @field_validator("file_ext", mode="before")
    @classmethod
    def _normalise_extension(cls, value):
        text = str(value).strip().lower()
        if text and not text.startswith("."):
            text = "." + text
        return text

    @field_validator("trig_lines")
    @classmethod
    def _check_trigger_lines(cls, value):
        if any(line < 1 for line in value):
            raise ValueError("analog trigger lines are 1-based")
        return value

    @model_validator(mode="after")
    def _check_frame_counts(self) -> "AnalysisConfig":
        _as_frame_count(self.pre_stim * self.sampling_rate, "pre_stim * sampling_rate")
        _as_frame_count(
            (self.pre_stim + self.post_stim) * self.sampling_rate,
            "(pre_stim + post_stim) * sampling_rate",
        )
        if self.stim_on_frame < 1:
            raise ValueError("pre_stim must span at least one frame for the baseline window")
        return self

    @property
    def stim_on_frame(self) -> int:
        """Number of frames before stimulus onset."""

        return _as_frame_count(self.pre_stim * self.sampling_rate, "pre_stim * sampling_rate")

    @property
    def n_frames(self) -> int:
        """Frames kept per trial."""

        return _as_frame_count(
            (self.pre_stim + self.post_stim) * self.sampling_rate,
            "(pre_stim + post_stim) * sampling_rate",
        )

    @property
    def baseline_frames(self) -> range:
        # first second of the trial or the whole pre-stimulus period, whichever is shorter
        return range(0, int(min(self.sampling_rate, self.stim_on_frame)))

    @staticmethod
    def default_locations() -> list[Path]:
        return [Path(name) for name in _PROJECT_OVERRIDE_FILENAMES]


def load_analysis_config(path: Optional[Path] = None, **overrides: Any) -> AnalysisConfig:
    """Load analysis options from defaults, overrides, and environment.

    Later sources win: model defaults, the repository defaults YAML, a project
    override (``path`` or one of :meth:`AnalysisConfig.default_locations`),
    the ``WIDEFIELD_DATA_PATH`` environment variable, then ``overrides``.
    """

    data: Dict[str, Any] = {}

    for filename in _DEFAULT_CONFIG_FILENAMES:
        candidate = _resolve_candidate_path(filename)
        if candidate:
            data = _deep_update(data, load_yaml_mapping(candidate))
            break

    override_path: Optional[Path] = None
    if path is not None:
        override_path = Path(path)
        if not override_path.exists():
            raise FileNotFoundError(f"Analysis config not found: {override_path}")
    else:
        for candidate in AnalysisConfig.default_locations():
            resolved = _resolve_candidate_path(candidate)
            if resolved:
                override_path = resolved
                break

    if override_path is not None:
        data = _deep_update(data, load_yaml_mapping(override_path))

    data_env = os.getenv(_DATA_PATH_ENV)
    if data_env:
        data["data_path"] = data_env

    if overrides:
        data = _deep_update(data, overrides)

    return AnalysisConfig.model_validate(data)

"""Metadata domain models for widefield trial data.

Trial files carry their layout in the file name
(``<prefix>_<channels>_<height>_<width>_<dtype>``) and their dimensions in a
``frameTimes_XXXX`` sidecar. The models keep both explicit so that the loading
code can validate them before any pixel data is read.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import UnsupportedChannelConfigurationError
from .config import normalise_pathlike

_SUPPORTED_DTYPES = ("uint8", "uint16")
MAX_CHANNELS = 2


class RawFileLayout(BaseModel):
    """Channel count, frame size and pixel width encoded in a file name."""

    n_channels: int
    height: Optional[int] = None
    width: Optional[int] = None
    dtype: Optional[Literal["uint8", "uint16"]] = None


class TrialMetadata(BaseModel):
    """Image size record read from a ``frameTimes`` sidecar."""

    trial_index: int
    img_size: tuple[int, ...]
    source: Optional[Path] = None

    @field_validator("img_size")
    @classmethod
    def _check_img_size(cls, value):
        if len(value) < 3:
            raise ValueError(f"imgSize needs (height, width, ..., frames), got {value}")
        if any(item < 0 for item in value):
            raise ValueError(f"imgSize entries must be non-negative, got {value}")
        return value

    @field_validator("source", mode="before")
    @classmethod
    def _normalise_source(cls, value):
        return normalise_pathlike(value)

    @property
    def height(self) -> int:
        return self.img_size[0]

    @property
    def width(self) -> int:
        return self.img_size[1]

    @property
    def n_frames(self) -> int:
        return self.img_size[-1]


class TrialFile(BaseModel):
    """One trial's data file, optionally paired with its own metadata."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=1, description="1-based trial number.")
    path: Path
    metadata: Optional[TrialMetadata] = None


def parse_file_layout(name: str | Path) -> RawFileLayout:
    """Read the channel count (and, where present, frame size and dtype) from a file name.

    The channel count is the token after the first ``_`` delimiter, e.g.
    ``Frames_2_512_512_uint8_0001.dat`` holds two channels of 512 x 512
    ``uint8`` frames.
    """

    tokens = Path(name).name.split(".")[0].split("_")
    if len(tokens) < 2 or not tokens[1].isdigit():
        raise UnsupportedChannelConfigurationError(
            f"Could not read number of channels from filename {Path(name).name!r}; "
            "file names should contain the channel number after a '_' delimiter"
        )

    n_channels = int(tokens[1])
    if n_channels < 1 or n_channels > MAX_CHANNELS:
        raise UnsupportedChannelConfigurationError(
            f"Channel number {n_channels} in {Path(name).name!r} is not supported "
            f"(expected 1 or {MAX_CHANNELS})"
        )

    def _int_token(position: int) -> Optional[int]:
        if len(tokens) > position and tokens[position].isdigit():
            return int(tokens[position])
        return None

    dtype = None
    for token in tokens[2:]:
        if token.lower() in _SUPPORTED_DTYPES:
            dtype = token.lower()
            break

    return RawFileLayout(
        n_channels=n_channels,
        height=_int_token(2),
        width=_int_token(3),
        dtype=dtype,
    )

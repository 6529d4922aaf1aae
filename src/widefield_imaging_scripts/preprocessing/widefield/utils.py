"""Shared helpers for reading and resizing widefield trial data."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Tuple

import logging
import numpy as np
import tifffile
from skimage.measure import block_reduce

logger = logging.getLogger(__name__)

_HEADER_DTYPE = "<f8"
_ANALOG_DTYPE = "<i2"
_TIFF_SUFFIXES = {".tif", ".tiff"}


def _read_header(fh) -> np.ndarray:
    size = np.fromfile(fh, dtype=_HEADER_DTYPE, count=1)
    if size.size == 0:
        raise ValueError("File is empty; expected a header length")
    n_values = int(size[0])
    header = np.fromfile(fh, dtype=_HEADER_DTYPE, count=n_values)
    if header.size != n_values:
        raise ValueError(f"Header truncated: expected {n_values} values, read {header.size}")
    return header


def load_tiff_stack(path: Path) -> np.ndarray:
    """Load a multi-page TIFF as a ``(rows, cols, frames)`` array."""

    with tifffile.TiffFile(path) as tif:
        # Page-by-page reading ignores ImageJ shape tags that sometimes
        # disagree with the number of frames actually written.
        frames = [page.asarray() for page in tif.pages]

    stack = np.stack(frames, axis=0)
    if stack.ndim > 3:
        stack = stack.reshape(-1, stack.shape[-2], stack.shape[-1])
    return np.moveaxis(stack, 0, -1)


def load_raw_data(
    path: Path,
    dtype: str = "uint16",
    frame_size: Optional[Sequence[int]] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Load one trial's frames as ``(header, stack)`` with stack ``(rows, cols, frames)``.

    Binary ``.dat`` files start with a float64 header length followed by the
    header values. The last three header values are height, width and frame
    count; any values before them are frame timestamps. Pixel data follow in
    ``(frames, rows, cols)`` order. When the header is shorter than three
    values, *frame_size* (``imgSize``) supplies the frame dimensions.

    TIFF files are read page by page; their header is empty.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Imaging file not found: {path}")

    if path.suffix.lower() in _TIFF_SUFFIXES:
        return np.empty(0), load_tiff_stack(path)

    with path.open("rb") as fh:
        header = _read_header(fh)
        data = np.fromfile(fh, dtype=np.dtype(dtype))

    if header.size >= 3:
        height, width, expected = (int(v) for v in header[-3:])
    elif frame_size is not None and len(frame_size) >= 2:
        height, width = int(frame_size[0]), int(frame_size[1])
        expected = int(frame_size[-1]) if len(frame_size) > 2 else None
    else:
        raise ValueError(f"Cannot determine frame size for {path}: header has {header.size} values")

    pixels = height * width
    if pixels == 0:
        raise ValueError(f"Invalid frame size {height} x {width} in {path}")
    n_frames = data.size // pixels
    if expected is not None and n_frames != expected:
        logger.warning(
            "%s holds %d complete frames but the header lists %d",
            path.name,
            n_frames,
            expected,
        )
    if data.size != n_frames * pixels:
        logger.warning(
            "Dropping %d trailing values in %s that do not form a complete frame",
            data.size - n_frames * pixels,
            path.name,
        )
        data = data[: n_frames * pixels]

    stack = data.reshape(n_frames, height, width)
    return header, np.moveaxis(stack, 0, -1)


def load_analog_data(path: Path) -> np.ndarray:
    """Load analog recordings as ``(lines, samples)`` int16.

    The header's last two values are the number of lines and samples.
    """

    path = Path(path)
    with path.open("rb") as fh:
        header = _read_header(fh)
        data = np.fromfile(fh, dtype=_ANALOG_DTYPE)

    if header.size < 2:
        raise ValueError(f"Analog header in {path} needs line and sample counts")
    n_lines, n_samples = int(header[-2]), int(header[-1])
    if data.size != n_lines * n_samples:
        raise ValueError(
            f"Analog data in {path} has {data.size} values, expected {n_lines} x {n_samples}"
        )
    return data.reshape(n_lines, n_samples)


def array_resize(stack: np.ndarray, factor: int) -> np.ndarray:
    """Reduce the spatial resolution of a 2-D or 3-D array by block averaging.

    Rows and columns are cropped to a multiple of *factor* first, so the output
    is ``floor(dim / factor)`` along both spatial axes. Trailing axes (frames)
    are left untouched.
    """

    factor = int(factor)
    if factor < 1:
        raise ValueError("factor must be a positive integer")

    stack = np.asarray(stack)
    if stack.ndim not in (2, 3):
        raise ValueError(f"Expected a 2-D or 3-D array, got shape {stack.shape}")

    rows, cols = stack.shape[0] // factor, stack.shape[1] // factor
    if rows == 0 or cols == 0:
        raise ValueError(
            f"Downsampling factor {factor} is larger than the frame size {stack.shape[:2]}"
        )

    cropped = stack[: rows * factor, : cols * factor].astype(np.float32, copy=False)
    if factor == 1:
        return cropped.copy()
    if stack.ndim == 3 and stack.shape[-1] == 0:
        return np.empty((rows, cols, 0), dtype=np.float32)

    block = (factor, factor) + (1,) * (stack.ndim - 2)
    return block_reduce(cropped, block_size=block, func=np.mean).astype(np.float32, copy=False)

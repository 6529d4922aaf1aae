import numpy as np
import pytest

from widefield_imaging_scripts.errors import UnsupportedChannelConfigurationError
from widefield_imaging_scripts.metadata.models import TrialFile
from widefield_imaging_scripts.preprocessing.widefield import channels


def _pulses(n_samples, starts, width=5, amplitude=5000):
    trace = np.zeros(n_samples)
    for start in starts:
        trace[start : start + width] = amplitude
    return trace


def _analog(blue_starts, violet_starts, stim_start=None, n_samples=200):
    lines = np.zeros((4, n_samples))
    lines[1] = _pulses(n_samples, blue_starts)
    lines[2] = _pulses(n_samples, violet_starts)
    if stim_start is not None:
        lines[3, stim_start:] = 5000
    return lines


def _indexed_frames(n_frames, rows=4, cols=4):
    # every pixel of frame i holds the value i
    return np.broadcast_to(np.arange(n_frames)[:, None, None], (n_frames, rows, cols))


def test_rising_edges():
    trace = np.array([0, 0, 5, 5, 0, 5, 0])

    assert channels.rising_edges(trace).tolist() == [2, 5]
    assert channels.rising_edges(np.array([5, 0, 5])).tolist() == [0, 2]
    assert channels.rising_edges(np.zeros(5)).size == 0


def test_detect_channel_order_and_stimulus_frame():
    analog = _analog(range(20, 200, 20), range(10, 200, 20), stim_start=105)

    assert channels.detect_channel_order(analog, (2, 3)) is False
    # blue pulses at 20, 40, 60, 80, 100 precede the stimulus
    assert channels.detect_stimulus_frame(analog, 4, 2) == 5
    assert channels.detect_stimulus_frame(analog[:, :100], 4, 2) is None


def test_analog_lines_are_one_based():
    with pytest.raises(ValueError):
        channels.detect_stimulus_frame(np.zeros((4, 10)), 5, 2)


def test_split_channels_deinterleaves_and_trims_to_stimulus(
    make_config, tmp_path, write_dat, write_analog
):
    path = write_dat(tmp_path / "Frames_2_4_4_uint16_0001.dat", _indexed_frames(20))
    write_analog(tmp_path / "Analog_1.dat", _analog(range(10, 200, 20), range(20, 200, 20), 105))
    cfg = make_config(sampling_rate=10, pre_stim=0.2, post_stim=0.3)

    split = channels.split_channels(cfg, TrialFile(index=1, path=path))

    assert split.n_channels == 2
    assert split.stim_frame == 5
    # trimmed to start stim_on_frame (2) frames before the stimulus frame
    assert split.blue[0, 0].tolist() == [6, 8, 10, 12, 14, 16, 18]
    assert split.violet[0, 0].tolist() == [7, 9, 11, 13, 15, 17, 19]
    assert split.blue.dtype == np.float32


def test_split_channels_follows_violet_first_triggers(make_config, tmp_path, write_dat, write_analog):
    path = write_dat(tmp_path / "Frames_2_4_4_uint16_0001.dat", _indexed_frames(9))
    write_analog(tmp_path / "Analog_1.dat", _analog(range(20, 200, 20), range(10, 200, 20)))

    split = channels.split_channels(make_config(), TrialFile(index=1, path=path))

    assert split.stim_frame is None
    # odd frame count: the unpaired last frame is dropped
    assert split.blue[0, 0].tolist() == [1, 3, 5, 7]
    assert split.violet[0, 0].tolist() == [0, 2, 4, 6]


def test_split_channels_without_analog_assumes_blue_first(make_config, tmp_path, write_dat):
    path = write_dat(tmp_path / "Frames_2_4_4_uint16_0001.dat", _indexed_frames(6))

    split = channels.split_channels(make_config(), TrialFile(index=1, path=path))

    assert split.blue[0, 0].tolist() == [0, 2, 4]
    assert split.violet[0, 0].tolist() == [1, 3, 5]


def test_split_channels_single_channel(make_config, tmp_path, write_dat):
    path = write_dat(tmp_path / "Frames_1_4_4_uint16_0001.dat", _indexed_frames(6))

    split = channels.split_channels(make_config(plot_chans=True), TrialFile(index=1, path=path))

    assert split.violet is None
    assert split.blue.shape == (4, 4, 6)


def test_split_channels_rejects_unsupported_channel_count(make_config, tmp_path, write_dat):
    path = write_dat(tmp_path / "Frames_3_4_4_uint16_0001.dat", _indexed_frames(6))

    with pytest.raises(UnsupportedChannelConfigurationError):
        channels.split_channels(make_config(), TrialFile(index=1, path=path))

from pathlib import Path

import pytest

from widefield_imaging_scripts.metadata import config
from widefield_imaging_scripts.metadata.config import AnalysisConfig, load_analysis_config


def test_tutorial_defaults_give_45_frames_and_15_baseline_frames():
    cfg = AnalysisConfig()

    assert cfg.n_frames == 45
    assert cfg.stim_on_frame == 15
    assert cfg.baseline_frames == range(0, 15)
    assert cfg.trig_lines == (2, 3)
    assert cfg.max_shift == 10


def test_baseline_window_is_capped_at_one_second():
    cfg = AnalysisConfig(pre_stim=2.0, post_stim=1.0, sampling_rate=30)

    assert cfg.stim_on_frame == 60
    assert cfg.baseline_frames == range(0, 30)


def test_fractional_frame_counts_are_rejected():
    with pytest.raises(ValueError, match="whole number of frames"):
        AnalysisConfig(pre_stim=0.51, sampling_rate=30)


@pytest.mark.parametrize("field, value", [("downsample", 0), ("sampling_rate", 0), ("pre_stim", 0)])
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValueError):
        AnalysisConfig(**{field: value})


def test_trigger_lines_are_one_based():
    with pytest.raises(ValueError):
        AnalysisConfig(trig_lines=(0, 1))


def test_file_extension_is_normalised():
    assert AnalysisConfig(file_ext="TIF").file_ext == ".tif"


def test_load_merges_yaml_environment_and_overrides(tmp_path, monkeypatch):
    override = tmp_path / "analysis.yaml"
    override.write_text("downsample: 2\nhemo_correct: false\ntrig_lines: [5, 6]\n")
    monkeypatch.setenv("WIDEFIELD_DATA_PATH", str(tmp_path / "session"))

    cfg = load_analysis_config(override, max_trials=3)

    assert cfg.downsample == 2
    assert cfg.hemo_correct is False
    assert cfg.trig_lines == (5, 6)
    assert cfg.data_path == tmp_path / "session"
    assert cfg.max_trials == 3


def test_load_rejects_non_mapping_yaml(tmp_path):
    override = tmp_path / "analysis.yaml"
    override.write_text("- just\n- a list\n")

    with pytest.raises(TypeError):
        load_analysis_config(override)


def test_load_missing_override_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_analysis_config(tmp_path / "nope.yaml")


def test_normalise_pathlike_maps_drive_letters_on_wsl(monkeypatch):
    monkeypatch.setattr(config, "_running_in_wsl", lambda: True)

    assert config.normalise_pathlike(r"D:\widefield\mapping") == Path("/mnt/d/widefield/mapping")


def test_normalise_pathlike_converts_backslashes(monkeypatch):
    monkeypatch.setattr(config, "_running_in_wsl", lambda: False)

    assert config.normalise_pathlike(r"data\trial") == Path("data/trial")
    assert config.normalise_pathlike(None) is None

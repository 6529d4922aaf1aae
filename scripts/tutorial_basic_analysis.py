"""Analyse raw widefield imaging data by downsampling and baseline correction.

Shows the result as a map of stimulus-triggered activity and a dF/F trace.
Point ``data_path`` (or ``WIDEFIELD_DATA_PATH``) at the folder with the
imaging data; the defaults in ``metadata/analysis_defaults.yaml`` reproduce
the hindpaw map of the 'preproc_tactile_hindpawMap' example dataset from
http://labshare.cshl.edu/shares/library/repository/38599/

    python scripts/tutorial_basic_analysis.py D:\\data\\preproc_tactile_hindpawMap --pre-proc
"""

from __future__ import annotations

import sys
from pathlib import Path

import matplotlib.pyplot as plt

from widefield_imaging_scripts.analysis import plot_stimulus_response, trial_average
from widefield_imaging_scripts.metadata.config import load_analysis_config
from widefield_imaging_scripts.pipeline import run_pipeline


def main(argv: list[str]) -> int:
    overrides = {}
    paths = [arg for arg in argv if not arg.startswith("--")]
    if paths:
        overrides["data_path"] = paths[0]
    if "--pre-proc" in argv:
        overrides["pre_proc"] = True

    cfg = load_analysis_config(**overrides)
    result = run_pipeline(cfg)
    print(result.to_dataframe().to_string(index=False))

    plot_stimulus_response(
        result,
        color_range=cfg.color_range,
        pixel=cfg.trace_pixel,
        save_path=Path(cfg.data_path) / "stimulus_response.png" if "--save" in argv else None,
    )

    avg_data = trial_average(result.all_data)
    print(f"Average stack over trials: {avg_data.shape}")
    plt.show()
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))

"""Figures summarising a finished run."""

from .visualize import (
    activity_map,
    activity_trace,
    colormap_blueblackred,
    plot_stimulus_response,
    time_axis,
    trial_average,
)

__all__ = [
    "activity_map",
    "activity_trace",
    "colormap_blueblackred",
    "plot_stimulus_response",
    "time_axis",
    "trial_average",
]

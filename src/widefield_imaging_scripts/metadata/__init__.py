"""Configuration, trial metadata models, and loaders."""

from .config import AnalysisConfig, load_analysis_config
from .loader import enumerate_trials, load_frame_times
from .models import RawFileLayout, TrialFile, TrialMetadata, parse_file_layout

__all__ = [
    "AnalysisConfig",
    "RawFileLayout",
    "TrialFile",
    "TrialMetadata",
    "enumerate_trials",
    "load_analysis_config",
    "load_frame_times",
    "parse_file_layout",
]

"""Pipeline orchestration entry points."""

from .orchestrator import (
    PipelineResult,
    RunContext,
    TrialResult,
    accumulate_trials,
    compute_baseline,
    compute_dff,
    process_trial,
    run_pipeline,
)

__all__ = [
    "PipelineResult",
    "RunContext",
    "TrialResult",
    "accumulate_trials",
    "compute_baseline",
    "compute_dff",
    "process_trial",
    "run_pipeline",
]

"""Two-stage schedule extraction pipeline."""

from continuity_engine.pipeline.controller import StagePipelineController, process_schedule
from continuity_engine.pipeline.models import DayOutcome, Progress, ScheduleJob, Stage1Output, StageState

__all__ = [
    "StagePipelineController",
    "process_schedule",
    "DayOutcome",
    "Progress",
    "ScheduleJob",
    "Stage1Output",
    "StageState",
]

"""State carried by one schedule's two-stage extraction job."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from continuity_engine.errors import ExtractionFailure, ParseAnomaly
from continuity_engine.models import CastEntry, ShootDay, Snapshot
from continuity_engine.normalizer import build_schedule_snapshot


class StageState(str, Enum):
    IDLE = "idle"
    STAGE1_PARSING = "stage1-parsing"
    STAGE1_DONE = "stage1-done"
    STAGE2_PROCESSING = "stage2-processing"
    STAGE2_DONE = "stage2-done"
    STAGE2_ERROR = "stage2-error"


# Allowed transitions.  Entering stage2-processing from itself resumes an
# interrupted run; from done or error it is a day-level retry.
TRANSITIONS: Dict[StageState, FrozenSet[StageState]] = {
    StageState.IDLE: frozenset({StageState.STAGE1_PARSING}),
    StageState.STAGE1_PARSING: frozenset({StageState.STAGE1_DONE, StageState.IDLE}),
    StageState.STAGE1_DONE: frozenset({StageState.STAGE2_PROCESSING, StageState.STAGE1_PARSING, StageState.IDLE}),
    StageState.STAGE2_PROCESSING: frozenset(
        {StageState.STAGE2_PROCESSING, StageState.STAGE2_DONE, StageState.STAGE2_ERROR, StageState.STAGE1_PARSING, StageState.IDLE}
    ),
    StageState.STAGE2_DONE: frozenset({StageState.STAGE2_PROCESSING, StageState.STAGE1_PARSING, StageState.IDLE}),
    StageState.STAGE2_ERROR: frozenset({StageState.STAGE2_PROCESSING, StageState.STAGE1_PARSING, StageState.IDLE}),
}


class Progress(BaseModel):
    """Stage 2 progress: days finished (done or failed) out of the total."""

    current: int = 0
    total: int = 0
    message: str = ""


class DayOutcome(BaseModel):
    status: Literal["pending", "done", "failed"] = "pending"
    attempts: int = 0
    error: Optional[str] = None


class DaySkeleton(BaseModel):
    """One shooting day as Stage 1 sees it: identity plus its raw text."""

    model_config = ConfigDict(extra="ignore")

    day_number: int = Field(gt=0)
    date: Optional[str] = None
    location: str = ""
    text: str = ""


class Stage1Output(BaseModel):
    """What the fast structural parse must return."""

    model_config = ConfigDict(extra="ignore")

    cast_list: List[CastEntry] = []
    days: List[DaySkeleton] = []


class ScheduleJob(BaseModel):
    """The whole pipeline state for one schedule, serializable for resume."""

    model_config = ConfigDict(extra="ignore")

    schema_version: str = "1.0.0"
    schedule_id: str
    state: StageState = StageState.IDLE
    generation: int = 0
    raw_text: Optional[str] = None
    cast_list: List[CastEntry] = []
    day_texts: Dict[int, str] = {}
    skeleton: Dict[int, ShootDay] = {}
    days: Dict[int, ShootDay] = {}
    outcomes: Dict[int, DayOutcome] = {}
    progress: Progress = Field(default_factory=Progress)
    anomalies: List[ParseAnomaly] = []

    def day_numbers(self) -> List[int]:
        return sorted(self.skeleton)

    def pending_days(self) -> List[int]:
        return [n for n in self.day_numbers() if self.outcomes.get(n, DayOutcome()).status == "pending"]

    def failed_days(self) -> List[int]:
        return [n for n in self.day_numbers() if self.outcomes.get(n, DayOutcome()).status == "failed"]

    @property
    def failures(self) -> List[ExtractionFailure]:
        out = []
        for n in self.failed_days():
            outcome = self.outcomes[n]
            out.append(ExtractionFailure(day_number=n, error=outcome.error or "", attempts=outcome.attempts))
        return out

    def needs_resume(self) -> bool:
        """Raw input exists but Stage 2 never finished."""
        return bool(self.raw_text) and self.state in (StageState.STAGE1_DONE, StageState.STAGE2_PROCESSING)

    def finished_count(self) -> int:
        return sum(1 for n in self.day_numbers() if self.outcomes.get(n, DayOutcome()).status != "pending")

    def to_snapshot(self) -> Snapshot:
        """Schedule snapshot of every successfully extracted day."""
        snapshot, _ = build_schedule_snapshot(
            (self.days[n] for n in sorted(self.days)), self.cast_list
        )
        return snapshot

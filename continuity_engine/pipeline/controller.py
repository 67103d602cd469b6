"""Stage Pipeline Controller: two-stage schedule extraction.

Stage 1 (``upload``) runs the fast structural parser once and records the cast
list plus one skeleton per shooting day.  Stage 2 (``run_stage2``) walks the
days in ascending order and awaits the extraction service for each, one at a
time.  A day that fails is recorded against that day and the run moves on;
``retry_day`` re-runs a single day.

Every run captures the job's generation when it starts.  ``upload`` and
``clear`` start a new generation, and a run whose generation is no longer
current never commits another day.
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, Dict, Optional, Union

import anyio
from anyio.abc import TaskGroup
from pydantic import BaseModel

from continuity_engine.cast_resolver import cast_reference
from continuity_engine.errors import EXTRACTION_FAILURE_EXCEPTIONS, SYSTEMIC_EXCEPTIONS, ParseAnomaly
from continuity_engine.log import get_logger
from continuity_engine.normalizer import normalize_cast_list, normalize_day, normalize_extracted_day
from continuity_engine.pipeline.models import (
    TRANSITIONS,
    DayOutcome,
    Progress,
    ScheduleJob,
    Stage1Output,
    StageState,
)

logger = get_logger(__name__)

Stage1Parser = Callable[[str], Awaitable[Union[Stage1Output, Dict[str, Any]]]]
DayExtractor = Callable[[int, str, str], Awaitable[Union[Dict[str, Any], str, bytes]]]
ProgressCallback = Callable[[str, Progress], None]


class StagePipelineController:
    """Drives one schedule at a time through Stage 1 and Stage 2.

    Args:
        parser:      Async Stage 1 parser: raw text → cast list and day skeletons.
        extractor:   Async per-day extractor: (day_number, day_text, cast_reference) → day record.
        on_progress: Optional hook called with (schedule_id, progress) after every state
                     change and after every finished day.
    """

    def __init__(
        self,
        parser: Stage1Parser,
        extractor: DayExtractor,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._parser = parser
        self._extractor = extractor
        self._on_progress = on_progress
        self._generation = 0
        self._running_generation: Optional[int] = None
        self.job: Optional[ScheduleJob] = None

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _is_current(self, generation: int) -> bool:
        return self.job is not None and self.job.generation == generation

    def _transition(self, job: ScheduleJob, state: StageState) -> None:
        if state not in TRANSITIONS[job.state]:
            raise RuntimeError(f"Schedule {job.schedule_id}: cannot go from {job.state.value} to {state.value}")
        if job.state != state:
            logger.info("Schedule %s: %s -> %s", job.schedule_id, job.state.value, state.value)
        job.state = state

    def _notify(self, job: ScheduleJob) -> None:
        if self._on_progress is not None:
            self._on_progress(job.schedule_id, job.progress.model_copy())

    @property
    def is_running(self) -> bool:
        return self.job is not None and self._running_generation == self.job.generation

    # ── Stage 1 ──────────────────────────────────────────────────────────────

    async def upload(self, schedule_id: str, raw_text: str) -> ScheduleJob:
        """Start a new schedule, superseding any current one, and run Stage 1.

        Raises:
            Whatever the parser raises; the job is left idle.
        """
        self._generation += 1
        generation = self._generation
        job = ScheduleJob(schedule_id=schedule_id, generation=generation, raw_text=raw_text)
        self.job = job
        self._transition(job, StageState.STAGE1_PARSING)
        job.progress = Progress(message="Reading schedule structure")
        self._notify(job)

        try:
            raw = await self._parser(raw_text)
        except Exception:
            if self._is_current(generation):
                self._transition(job, StageState.IDLE)
                job.progress = Progress(message="Schedule could not be read")
                self._notify(job)
            raise

        if not self._is_current(generation):
            logger.info("Schedule %s: discarding Stage 1 result of a superseded upload", schedule_id)
            return job

        self._apply_stage1(job, raw)
        self._transition(job, StageState.STAGE1_DONE)
        job.progress = Progress(
            current=0,
            total=len(job.skeleton),
            message=f"Found {len(job.cast_list)} cast members and {len(job.skeleton)} shooting days",
        )
        self._notify(job)
        return job

    def _apply_stage1(self, job: ScheduleJob, raw: Union[Stage1Output, Dict[str, Any]]) -> None:
        data = raw.model_dump() if isinstance(raw, BaseModel) else dict(raw)

        cast_list, anomalies = normalize_cast_list(data.get("cast_list") or data.get("castList"))
        job.cast_list = cast_list
        job.anomalies.extend(anomalies)

        for raw_day in data.get("days") or []:
            if not isinstance(raw_day, dict):
                job.anomalies.append(ParseAnomaly(record_kind="day", reason="day skeleton is not an object"))
                continue
            day, day_anomalies = normalize_day({**raw_day, "scenes": []})
            job.anomalies.extend(day_anomalies)
            if day is None:
                continue
            if day.day_number in job.skeleton:
                job.anomalies.append(
                    ParseAnomaly(record_kind="day", identifier=str(day.day_number), reason="duplicate day number skipped")
                )
                logger.warning("Schedule %s: duplicate day %d skipped", job.schedule_id, day.day_number)
                continue
            job.skeleton[day.day_number] = day
            job.day_texts[day.day_number] = str(raw_day.get("text") or raw_day.get("raw_text") or "")
            job.outcomes[day.day_number] = DayOutcome()

    # ── Stage 2 ──────────────────────────────────────────────────────────────

    async def run_stage2(self) -> ScheduleJob:
        """Extract every pending day, ascending.  Returns at once if a run is active.

        Raises:
            RuntimeError: no schedule has been uploaded.
            StoreUnavailableError: raised while extracting; the job stays in
                stage2-processing and resumes on ``load``.
        """
        job = self.job
        if job is None:
            raise RuntimeError("No schedule uploaded")
        if self._running_generation == job.generation:
            logger.info("Schedule %s: Stage 2 already running", job.schedule_id)
            return job

        generation = job.generation
        self._running_generation = generation
        try:
            self._transition(job, StageState.STAGE2_PROCESSING)
            job.progress = Progress(
                current=job.finished_count(), total=len(job.skeleton), message="Extracting shooting days"
            )
            self._notify(job)

            for day_number in job.pending_days():
                if not self._is_current(generation):
                    return job
                await self._process_day(job, day_number, generation)

            if self._is_current(generation):
                self._finish(job)
        finally:
            if self._running_generation == generation:
                self._running_generation = None
        return job

    async def retry_day(self, day_number: int) -> ScheduleJob:
        """Re-run extraction for one day only.

        Raises:
            RuntimeError: no schedule uploaded, or Stage 2 is already running.
            ValueError: the schedule has no such day.
        """
        job = self.job
        if job is None:
            raise RuntimeError("No schedule uploaded")
        if day_number not in job.skeleton:
            raise ValueError(f"Schedule {job.schedule_id} has no day {day_number}")
        if self._running_generation == job.generation:
            raise RuntimeError(f"Stage 2 is already running for schedule {job.schedule_id}")

        generation = job.generation
        self._running_generation = generation
        try:
            self._transition(job, StageState.STAGE2_PROCESSING)
            await self._process_day(job, day_number, generation)
            if self._is_current(generation) and not job.pending_days():
                self._finish(job)
        finally:
            if self._running_generation == generation:
                self._running_generation = None
        return job

    async def _process_day(self, job: ScheduleJob, day_number: int, generation: int) -> None:
        text = job.day_texts.get(day_number, "")
        previous = job.outcomes.get(day_number, DayOutcome())
        job.progress.message = f"Processing Day {day_number}"

        if not text.strip():
            job.days[day_number] = job.skeleton[day_number]
            job.anomalies.append(
                ParseAnomaly(
                    record_kind="day",
                    identifier=str(day_number),
                    reason="no text for this day; extraction skipped",
                )
            )
            job.outcomes[day_number] = DayOutcome(status="done", attempts=previous.attempts)
            self._day_finished(job, f"Day {day_number} has no text")
            return

        try:
            payload = await self._extractor(day_number, text, cast_reference(job.cast_list))
            day, anomalies = normalize_extracted_day(payload, day_number, job.skeleton.get(day_number))
        except SYSTEMIC_EXCEPTIONS:
            raise
        except EXTRACTION_FAILURE_EXCEPTIONS as exc:
            if not self._is_current(generation):
                return
            logger.warning("Schedule %s: Day %d extraction failed: %s", job.schedule_id, day_number, exc)
            job.outcomes[day_number] = DayOutcome(
                status="failed", attempts=previous.attempts + 1, error=str(exc) or type(exc).__name__
            )
            self._day_finished(job, f"Day {day_number} failed")
            return

        if not self._is_current(generation):
            logger.info("Schedule %s: discarding Day %d from a superseded run", job.schedule_id, day_number)
            return
        job.days[day_number] = day
        job.anomalies.extend(anomalies)
        job.outcomes[day_number] = DayOutcome(status="done", attempts=previous.attempts + 1)
        self._day_finished(job, f"Day {day_number} complete ({len(day.scenes)} scenes)")

    def _day_finished(self, job: ScheduleJob, message: str) -> None:
        job.progress = Progress(current=job.finished_count(), total=len(job.skeleton), message=message)
        self._notify(job)

    def _finish(self, job: ScheduleJob) -> None:
        failed = job.failed_days()
        if failed:
            self._transition(job, StageState.STAGE2_ERROR)
            message = f"{len(failed)} of {len(job.skeleton)} days failed; retry them individually"
        else:
            self._transition(job, StageState.STAGE2_DONE)
            message = "Schedule processing complete"
        job.progress = Progress(current=job.finished_count(), total=len(job.skeleton), message=message)
        self._notify(job)

    def start_stage2(self, task_group: TaskGroup) -> None:
        """Run Stage 2 in the background of *task_group*."""
        task_group.start_soon(self.run_stage2)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def load(self, job: ScheduleJob) -> ScheduleJob:
        """Adopt a persisted job, resuming Stage 2 when it was interrupted."""
        self._generation = max(self._generation, job.generation) + 1
        self.job = job.model_copy(deep=True, update={"generation": self._generation})
        if self.job.needs_resume():
            logger.info("Schedule %s: resuming interrupted Stage 2", self.job.schedule_id)
            await self.run_stage2()
        return self.job

    def clear(self) -> None:
        """Drop the current schedule; any in-flight run stops committing."""
        self._generation += 1
        if self.job is not None:
            logger.info("Schedule %s: cleared", self.job.schedule_id)
        self.job = None


async def _process_schedule(
    parser: Stage1Parser, extractor: DayExtractor, schedule_id: str, raw_text: str
) -> ScheduleJob:
    controller = StagePipelineController(parser, extractor)
    await controller.upload(schedule_id, raw_text)
    return await controller.run_stage2()


def process_schedule(
    parser: Stage1Parser, extractor: DayExtractor, schedule_id: str, raw_text: str
) -> ScheduleJob:
    """Run both stages to completion from synchronous code."""
    return anyio.run(partial(_process_schedule, parser, extractor, schedule_id, raw_text))

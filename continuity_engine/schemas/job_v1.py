"""ScheduleJob schema v1.0.0: load, dump, validate.

A dumped job is what a host persists between sessions so that an
interrupted Stage 2 can be resumed with StagePipelineController.load.
Day-keyed maps are written with string keys and read back as ints.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import List, Union

from pydantic import ValidationError

from continuity_engine.pipeline.models import ScheduleJob

SCHEMA_VERSION = "1.0.0"


def load_job(source: Union[str, bytes, dict, Path]) -> ScheduleJob:
    """Parse a ScheduleJob from JSON string, bytes, dict, or file Path.

    Raises:
        ValidationError: data does not conform to the ScheduleJob schema.
        ValueError: schema_version is not 1.0.0.
    """
    if isinstance(source, Path):
        data = json.loads(source.read_text(encoding="utf-8"))
    elif isinstance(source, (str, bytes)):
        data = json.loads(source)
    else:
        data = source
    job = ScheduleJob.model_validate(data)
    if job.schema_version != SCHEMA_VERSION:
        raise ValueError(
            f"Unsupported ScheduleJob schema_version {job.schema_version!r}; expected {SCHEMA_VERSION}"
        )
    return job


def dump_job(job: ScheduleJob, *, indent: int = 2) -> str:
    raw = json.loads(job.model_dump_json())
    return json.dumps(raw, sort_keys=True, indent=indent, ensure_ascii=False)


def validate_job(data: dict) -> List[str]:
    try:
        job = ScheduleJob.model_validate(data)
    except ValidationError as exc:
        return [f"{e['loc']}: {e['msg']}" for e in exc.errors()]
    if job.schema_version != SCHEMA_VERSION:
        return [f"('schema_version',): expected {SCHEMA_VERSION}, got {job.schema_version}"]
    return []

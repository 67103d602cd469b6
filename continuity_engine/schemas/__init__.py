"""Versioned schema loaders and validators."""

from continuity_engine.schemas.amendment_v1 import dump_amendment, load_amendment, validate_amendment_data
from continuity_engine.schemas.job_v1 import dump_job, load_job, validate_job
from continuity_engine.schemas.snapshot_v1 import dump_snapshot, load_snapshot, validate_snapshot

__all__ = [
    "load_snapshot",
    "dump_snapshot",
    "validate_snapshot",
    "load_amendment",
    "dump_amendment",
    "validate_amendment_data",
    "load_job",
    "dump_job",
    "validate_job",
]

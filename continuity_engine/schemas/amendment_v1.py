"""AmendmentResult schema v1.0.0: load, dump, validate.

An AmendmentResult is handed to the review UI and back to the merge, so it
must survive a JSON round trip unchanged.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import List, Union

from pydantic import ValidationError

from continuity_engine.models import AmendmentResult

SCHEMA_VERSION = "1.0.0"


def load_amendment(source: Union[str, bytes, dict, Path]) -> AmendmentResult:
    """Parse an AmendmentResult from JSON string, bytes, dict, or file Path.

    Raises:
        ValidationError: data does not conform to the AmendmentResult schema.
        ValueError: schema_version is not 1.0.0.
    """
    if isinstance(source, Path):
        data = json.loads(source.read_text(encoding="utf-8"))
    elif isinstance(source, (str, bytes)):
        data = json.loads(source)
    else:
        data = source
    result = AmendmentResult.model_validate(data)
    if result.schema_version != SCHEMA_VERSION:
        raise ValueError(
            f"Unsupported AmendmentResult schema_version {result.schema_version!r}; expected {SCHEMA_VERSION}"
        )
    return result


def dump_amendment(result: AmendmentResult, *, indent: int = 2) -> str:
    raw = json.loads(result.model_dump_json())
    return json.dumps(raw, sort_keys=True, indent=indent, ensure_ascii=False)


def validate_amendment_data(data: dict) -> List[str]:
    """Validate a raw dict against the AmendmentResult schema.  Does not raise."""
    try:
        result = AmendmentResult.model_validate(data)
    except ValidationError as exc:
        return [f"{e['loc']}: {e['msg']}" for e in exc.errors()]
    if result.schema_version != SCHEMA_VERSION:
        return [f"('schema_version',): expected {SCHEMA_VERSION}, got {result.schema_version}"]
    return []

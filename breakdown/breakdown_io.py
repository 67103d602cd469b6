"""
breakdown_io.py: Load and save Breakdown JSON documents.

Breakdown files are written with sorted keys and consistent indentation so
that identical Breakdown states always produce byte-identical files.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Union

from continuity_engine.models import Breakdown


def breakdown_to_dict(breakdown: Breakdown) -> Dict[str, Any]:
    """JSON-compatible dict of *breakdown* (enums and nested models flattened)."""
    return json.loads(breakdown.model_dump_json())


def dump_json(data: Any) -> str:
    """Deterministic JSON text: sorted keys, 2-space indent, trailing newline."""
    return json.dumps(data, sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def load_breakdown_file(path: Union[str, Path]) -> Breakdown:
    """Load a Breakdown from a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        pydantic.ValidationError: If the JSON is not a Breakdown.
    """
    with open(path, "r", encoding="utf-8") as f:
        return Breakdown.model_validate(json.load(f))


def save_breakdown_file(path: Union[str, Path], breakdown: Breakdown) -> None:
    """Save a Breakdown to a JSON file (created or overwritten)."""
    with open(path, "w", encoding="utf-8") as f:
        f.write(dump_json(breakdown_to_dict(breakdown)))

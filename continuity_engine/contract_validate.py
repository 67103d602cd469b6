import json
from typing import List

import jsonschema

from .schema_loader import load_schema


def validate_breakdown_contract(data: dict) -> None:
    """Validate a Breakdown dict against the canonical Breakdown.v1.json contract.

    Raises jsonschema.ValidationError if non-conformant.
    """
    schema = load_schema("Breakdown.v1.json")
    jsonschema.validate(data, schema)


def validate_breakdown_model(breakdown) -> None:
    """Validate a Breakdown model against the canonical Breakdown.v1.json contract.

    Raises jsonschema.ValidationError if the serialized document is non-conformant.
    """
    validate_breakdown_contract(json.loads(breakdown.model_dump_json()))


def breakdown_contract_errors(data: dict) -> List[str]:
    """Every contract violation in *data* as "path: message" strings.  Does not raise."""
    validator = jsonschema.Draft7Validator(load_schema("Breakdown.v1.json"))
    errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
    return [f"{'/'.join(str(p) for p in e.absolute_path) or '<root>'}: {e.message}" for e in errors]

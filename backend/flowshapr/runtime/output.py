"""Final formatting of a flow's output value."""

from __future__ import annotations

import json
from typing import Any

import jsonschema


class OutputFormatError(ValueError):
    pass


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def format_output(value: Any, output_format: str = "text", schema: dict[str, Any] | None = None) -> Any:
    """
    Shape `value` for the flow's caller.

    text: strings pass through, anything else is stringified (dicts/lists as JSON).
    json: strings are parsed as JSON; the result is checked against `schema` if given.
    structured: the value is kept as produced, and checked against `schema` if given.
    """
    if output_format == "text":
        return _to_text(value)

    if output_format == "json" and isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as exc:
            raise OutputFormatError(f"Output is not valid JSON: {exc}") from exc

    if schema:
        try:
            jsonschema.validate(instance=value, schema=schema)
        except jsonschema.ValidationError as exc:
            raise OutputFormatError(f"Output does not match schema: {exc.message}") from exc
    return value

"""Derive a JSON schema and default values from ``@field`` prompt notes.

A note such as ``@field title: string = "Main headline"`` contributes one
property to the schema and one entry to the defaults map.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from template_pipeline.prompt_models import ParsedPrompt


_FIELD_RE = re.compile(
    r"@field\s+(?P<name>[\w.-]+)\s*:\s*(?P<type>\w+)(?:\s*=\s*(?P<default>.+))?",
    re.IGNORECASE,
)


class SchemaGenerationError(ValueError):
    """Raised when a prompt cannot produce a configuration schema."""


@dataclass
class SchemaResult:
    schema: Dict[str, Any]
    defaults: Dict[str, Any]
    warnings: List[str] = field(default_factory=list)


def _map_type(type_name: str) -> Dict[str, Any]:
    if type_name == "number":
        return {"type": "number"}
    if type_name == "boolean":
        return {"type": "boolean"}
    if type_name == "array":
        return {"type": "array", "items": {"type": "string"}}
    return {"type": "string"}


def _number(value: str) -> Optional[float]:
    try:
        number = float(value)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    if number.is_integer() and not re.search(r"[.eE]", value):
        return int(number)
    return number


def _reject_constant(token: str) -> Any:
    raise ValueError(f"Non-standard JSON constant: {token}")


def coerce_default(type_name: str, value: str) -> Any:
    if type_name == "number":
        return _number(value.strip())
    if type_name == "boolean":
        return re.search(r"true", value, re.IGNORECASE) is not None
    if type_name == "array":
        try:
            parsed = json.loads(value, parse_constant=_reject_constant)
        except ValueError:
            return [value]
        return parsed if isinstance(parsed, list) else [value]
    return value


def generate_schema(prompt: Optional[ParsedPrompt]) -> SchemaResult:
    if prompt is None or prompt.component is None:
        raise SchemaGenerationError("Parsed prompt missing component section")

    properties: Dict[str, Any] = {}
    defaults: Dict[str, Any] = {}

    for note in prompt.notes:
        match = _FIELD_RE.search(note)
        if not match:
            continue
        name = match.group("name")
        type_name = match.group("type").lower()
        raw_default = match.group("default")

        prop = _map_type(type_name)
        if type_name != "boolean":
            prop["nullable"] = True
        properties[name] = prop

        if raw_default is not None:
            defaults[name] = coerce_default(type_name, raw_default.strip())
        else:
            defaults[name] = False if type_name == "boolean" else None

    schema = {
        "title": prompt.name or "Component",
        "type": "object",
        "properties": properties,
        "required": [],
    }

    warnings: List[str] = []
    if not properties:
        warnings.append("No @field metadata found; schema contains no configurable properties")

    return SchemaResult(schema=schema, defaults=defaults, warnings=warnings)

"""Bundled JSON schemas for ``manifest.json`` and profile files."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Union

import yaml
from jsonschema import Draft202012Validator

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"

MAX_REPORTED_PROBLEMS = 10


class SchemaValidationError(RuntimeError):
    """A document broke its schema; ``problems`` holds one entry per violation."""

    def __init__(self, where: str, problems: Sequence[str]) -> None:
        self.where = where
        self.problems = list(problems)
        shown = "; ".join(self.problems[:MAX_REPORTED_PROBLEMS])
        hidden = len(self.problems) - MAX_REPORTED_PROBLEMS
        if hidden > 0:
            shown += f" (+{hidden} more)"
        super().__init__(f"{where}: {shown}")


def load_yaml_or_json(path: Path) -> Any:
    """Load a YAML/JSON document; the caller checks the top-level shape."""
    if not path.exists():
        raise FileNotFoundError(path)

    if path.suffix.lower() in {".yaml", ".yml"}:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    if path.suffix.lower() == ".json":
        return json.loads(path.read_text(encoding="utf-8"))
    raise ValueError(f"Unsupported file extension: {path}")


@lru_cache(maxsize=None)
def load_bundled_schema(name: str) -> Dict[str, Any]:
    schema_path = SCHEMAS_DIR / name
    schema = json.loads(schema_path.read_text(encoding="utf-8"))
    if not isinstance(schema, dict):
        raise ValueError(f"Bundled schema is not an object: {schema_path}")
    return schema


def field_path(parts: Iterable[Union[str, int]]) -> str:
    """``["profiles", "low", "display", "width"]`` -> ``profiles.low.display.width``."""

    out = ""
    for part in parts:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else str(part)
    return out or "<document>"


def schema_problems(instance: Any, schema: Dict[str, Any]) -> List[str]:
    """Every violation as ``<field path>: <message>``, ordered by field path."""

    errors = Draft202012Validator(schema).iter_errors(instance)
    located = [(field_path(e.absolute_path), e.message) for e in errors]
    return [f"{loc}: {msg}" for loc, msg in sorted(located)]


def validate_against_schema(instance: Any, schema: Dict[str, Any], *, where: str) -> None:
    problems = schema_problems(instance, schema)
    if problems:
        raise SchemaValidationError(where, problems)

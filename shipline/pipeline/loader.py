"""Load and validate pipeline definitions."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import ValidationError

from shipline._yaml import read_yaml_mapping
from shipline.errors import PipelineValidationError
from shipline.pipeline.schema import PipelineDefinition, StepGraphError


def _step_name_at(data: dict[str, Any], loc: tuple[int | str, ...]) -> str | None:
    """Map a pydantic error location like ``('spec', 'steps', 2, 'run')`` to a step name."""
    if len(loc) < 3 or loc[0] != "spec" or loc[1] != "steps" or not isinstance(loc[2], int):
        return None
    try:
        step = data["spec"]["steps"][loc[2]]
    except (KeyError, IndexError, TypeError):
        return None
    if isinstance(step, dict) and isinstance(step.get("name"), str):
        return step["name"]
    return f"#{loc[2] + 1}"


def _translate(e: ValidationError, data: dict[str, Any], source: str) -> PipelineValidationError:
    for err in e.errors():
        cause = err.get("ctx", {}).get("error")
        if isinstance(cause, StepGraphError):
            return PipelineValidationError(
                f"Invalid pipeline {source}: {cause}", step=cause.step, rule=cause.rule
            )

    first = e.errors()[0]
    step = _step_name_at(data, tuple(first["loc"]))
    return PipelineValidationError(f"Validation failed for {source}:\n{e}", step=step, rule="schema")


def parse_pipeline(data: dict[str, Any], *, source: str = "<pipeline>") -> PipelineDefinition:
    """Validate an in-memory mapping as a PipelineDefinition."""
    try:
        return PipelineDefinition.model_validate(data)
    except ValidationError as e:
        raise _translate(e, data, source) from e


def load_pipeline(path: Path) -> PipelineDefinition:
    """Read a YAML (or JSON) file and validate it as a PipelineDefinition."""
    data = read_yaml_mapping(path)
    return parse_pipeline(data, source=str(path))

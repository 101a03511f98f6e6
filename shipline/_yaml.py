"""Read a YAML document into a plain mapping."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from shipline.errors import PipelineValidationError


def read_yaml_mapping(path: Path) -> dict[str, Any]:
    """Read *path* and return its top-level YAML mapping.

    Raises:
        PipelineValidationError: with rule ``io`` when the file cannot be
            read and ``syntax`` when it is not a YAML mapping.
    """
    try:
        raw = path.read_text()
    except OSError as e:
        raise PipelineValidationError(f"Cannot read {path}: {e}", rule="io") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise PipelineValidationError(f"Invalid YAML in {path}: {e}", rule="syntax") from e

    if not isinstance(data, dict):
        raise PipelineValidationError(
            f"Expected a YAML mapping in {path}, got {type(data).__name__}", rule="syntax"
        )
    return data

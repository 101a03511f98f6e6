"""Shared test fixtures and helpers."""

from __future__ import annotations

import shlex
import sys

from shipline.pipeline.results import RunResult, StepResult
from shipline.pipeline.schema import (
    PipelineDefinition,
    PipelineMetadata,
    PipelineSpec,
    PipelineStep,
)


def py(code: str) -> str:
    """Return a command template that runs *code* with the current interpreter."""
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


def make_step(name: str, depends_on: list[str] | None = None, **kwargs) -> PipelineStep:
    return PipelineStep(
        name=name,
        run=kwargs.pop("run", py("print('ok')")),
        depends_on=depends_on or [],
        **kwargs,
    )


def make_pipeline(steps: list[PipelineStep], **kwargs) -> PipelineDefinition:
    return PipelineDefinition(
        apiVersion="shipline/v1",
        kind="Pipeline",
        metadata=PipelineMetadata(name="test-pipeline"),
        spec=PipelineSpec(steps=steps, **kwargs),
    )


def step_result(result: RunResult, name: str) -> StepResult | None:
    return next((sr for sr in result.step_results if sr.name == name), None)

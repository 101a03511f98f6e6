"""Pydantic models for pipeline YAML definitions."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shipline.config import DEFAULT_STEP_TIMEOUT

_STEP_NAME = r"^[A-Za-z0-9_][A-Za-z0-9_-]*$"
_INPUT_NAME = r"^[A-Za-z_][A-Za-z0-9_.-]*$"


def _scalar_to_str(value: Any) -> Any:
    # YAML turns `true` and `8080` into bool and int; keep the YAML spelling.
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    return value


def _stringify_values(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _scalar_to_str(v) for k, v in value.items()}
    return value


class StepGraphError(ValueError):
    """A rule of the step graph was violated.

    Raised from the model validator so pydantic wraps it; the loader digs
    it back out of ``ValidationError.errors()`` to keep *step* and *rule*.
    """

    def __init__(self, message: str, *, step: str, rule: str) -> None:
        self.step = step
        self.rule = rule
        super().__init__(message)


class PipelineStep(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: Annotated[str, Field(pattern=_STEP_NAME)]
    run: Annotated[str, Field(min_length=1)]
    inputs: list[Annotated[str, Field(pattern=_INPUT_NAME)]] = []
    defaults: dict[str, str] = {}
    enabled_when: str | None = Field(default=None, alias="if")
    depends_on: list[str] = []
    continue_on_error: bool | None = None
    timeout_seconds: Annotated[int, Field(ge=1)] = DEFAULT_STEP_TIMEOUT
    shell: bool = False
    env: dict[str, str] = {}
    secrets: dict[str, str] = {}
    working_dir: str | None = None

    @field_validator("enabled_when", mode="before")
    @classmethod
    def _coerce_condition(cls, v: Any) -> Any:
        return _scalar_to_str(v)

    @field_validator("defaults", "env", mode="before")
    @classmethod
    def _coerce_values(cls, v: Any) -> Any:
        return _stringify_values(v)


class PipelineMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""


class PipelineSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    steps: list[PipelineStep] = Field(min_length=1)
    inputs: dict[str, str] = {}
    env: dict[str, str] = {}
    error_strategy: Literal["fail-fast", "continue"] = "fail-fast"
    timeout_seconds: Annotated[int, Field(ge=1)] | None = None

    @field_validator("inputs", "env", mode="before")
    @classmethod
    def _coerce_values(cls, v: Any) -> Any:
        return _stringify_values(v)

    @model_validator(mode="after")
    def _validate_dag(self) -> PipelineSpec:
        names = [s.name for s in self.steps]

        seen: set[str] = set()
        for s in self.steps:
            if s.name in seen:
                raise StepGraphError(
                    f"Duplicate step name: '{s.name}'", step=s.name, rule="duplicate-name"
                )
            seen.add(s.name)

        for step in self.steps:
            for dep in step.depends_on:
                if dep == step.name:
                    raise StepGraphError(
                        f"Step '{step.name}' depends on itself",
                        step=step.name,
                        rule="cyclic-dependency",
                    )
                if dep not in seen:
                    raise StepGraphError(
                        f"Step '{step.name}' depends on unknown step '{dep}'",
                        step=step.name,
                        rule="unknown-dependency",
                    )

        from shipline._graph import CycleError, detect_cycle

        edges = {step.name: list(step.depends_on) for step in self.steps}
        try:
            detect_cycle(names, edges, "dependency")
        except CycleError as e:
            raise StepGraphError(
                f"Pipeline contains a dependency cycle through: {', '.join(e.nodes)}",
                step=e.nodes[0],
                rule="cyclic-dependency",
            ) from None

        # Dependencies must point backwards so the file reads top to bottom.
        position = {name: i for i, name in enumerate(names)}
        for step in self.steps:
            for dep in step.depends_on:
                if position[dep] > position[step.name]:
                    raise StepGraphError(
                        f"Step '{step.name}' depends on '{dep}', which is declared after it",
                        step=step.name,
                        rule="forward-dependency",
                    )

        return self

    def step(self, name: str) -> PipelineStep:
        for s in self.steps:
            if s.name == name:
                return s
        raise KeyError(name)

    def continues_on_error(self, step: PipelineStep) -> bool:
        """Resolve a step's failure policy against the pipeline default."""
        if step.continue_on_error is not None:
            return step.continue_on_error
        return self.error_strategy == "continue"


class PipelineDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    apiVersion: Literal["shipline/v1"]
    kind: Literal["Pipeline"]
    metadata: PipelineMetadata
    spec: PipelineSpec

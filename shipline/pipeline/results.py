"""Step and run result types."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any


class StepStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PARTIALLY_FAILED = "partially_failed"


@dataclass(frozen=True)
class StepResult:
    name: str
    status: StepStatus
    output: str = ""
    outputs: Mapping[str, str] = field(default_factory=dict)
    error: str | None = None
    error_kind: str | None = None  # "missing-input" | "secret" | "execution" | "cancelled"
    exit_code: int | None = None
    duration_ms: int = 0
    skip_reason: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "outputs", MappingProxyType(dict(self.outputs)))

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status == StepStatus.FAILED

    @property
    def skipped(self) -> bool:
        return self.status == StepStatus.SKIPPED

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": str(self.status),
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "error_kind": self.error_kind,
            "skip_reason": self.skip_reason,
            "outputs": dict(self.outputs),
            "output": self.output,
        }


def new_run_id(length: int = 12) -> str:
    """Return a random hex run ID of *length* characters."""
    return uuid.uuid4().hex[:length]


@dataclass
class RunResult:
    """Outcome of one run; created at run start and finalized at run end."""

    pipeline_name: str
    run_id: str = field(default_factory=new_run_id)
    status: RunStatus = RunStatus.PENDING
    step_results: list[StepResult] = field(default_factory=list)
    cause: str | None = None
    cancelled: bool = False
    started_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline": self.pipeline_name,
            "status": str(self.status),
            "cause": self.cause,
            "cancelled": self.cancelled,
            "started_at": self.started_at,
            "duration_ms": self.duration_ms,
            "steps": [sr.to_dict() for sr in self.step_results],
        }

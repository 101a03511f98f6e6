"""Exception hierarchy shared by the loader, executor and orchestrator."""

from __future__ import annotations


class ShiplineError(Exception):
    """Base class for all shipline errors."""


class PipelineValidationError(ShiplineError):
    """A pipeline definition is malformed; raised before any step runs.

    ``step`` is the offending step name (``None`` when the problem is not
    attributable to one step) and ``rule`` is a short slug such as
    ``duplicate-name`` or ``cyclic-dependency``.
    """

    def __init__(self, message: str, *, step: str | None = None, rule: str = "schema") -> None:
        self.step = step
        self.rule = rule
        super().__init__(message)


class MissingInputError(ShiplineError):
    """A step needs an input that is neither in the run context nor defaulted."""

    def __init__(self, step: str, name: str) -> None:
        self.step = step
        self.name = name
        super().__init__(f"Step '{step}' requires input '{name}' but it was not provided")


class StepExecutionError(ShiplineError):
    """The external command failed to launch, timed out or exited non-zero."""

    def __init__(self, step: str, message: str, *, exit_code: int | None = None) -> None:
        self.step = step
        self.exit_code = exit_code
        super().__init__(message)


class RunCancelledError(ShiplineError):
    """The run was aborted by an external signal or the run timeout."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Run cancelled: {reason}")


class SecretNotFoundError(ShiplineError):
    """The secret resolver has no value for the requested name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Secret '{name}' could not be resolved")

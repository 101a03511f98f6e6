"""Sequential orchestrator: walk the plan and aggregate a run result."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from shipline._graph import topological_order
from shipline._log import get_logger, handler_filter
from shipline._signal import CancelToken, cancel_after
from shipline.errors import PipelineValidationError, RunCancelledError
from shipline.pipeline.context import RunContext
from shipline.pipeline.executor import execute_step
from shipline.pipeline.results import RunResult, RunStatus, StepResult, StepStatus
from shipline.pipeline.schema import PipelineDefinition, PipelineStep
from shipline.secrets import MaskingFilter, SecretMasker

if TYPE_CHECKING:
    from shipline.secrets import SecretResolver

logger = get_logger("pipeline.orchestrator")

StepCallback = Callable[[PipelineStep], None]
ResultCallback = Callable[[StepResult], None]


def execution_order(pipeline: PipelineDefinition) -> list[PipelineStep]:
    """Return steps in dependency order, ties broken by declaration order."""
    spec = pipeline.spec
    edges = {s.name: list(s.depends_on) for s in spec.steps}
    return [spec.step(name) for name in topological_order([s.name for s in spec.steps], edges)]


def check_run_inputs(pipeline: PipelineDefinition, inputs: Mapping[str, str]) -> None:
    """Reject run inputs that would shadow a step's published outputs.

    Raises:
        PipelineValidationError: If an input is named ``<step>.<key>`` for a
            step of *pipeline*.
    """
    names = {s.name for s in pipeline.spec.steps}
    for key in inputs:
        owner, dot, _ = key.partition(".")
        if dot and owner in names:
            raise PipelineValidationError(
                f"Run input '{key}' is reserved for outputs of step '{owner}'",
                step=owner,
                rule="reserved-input",
            )


def _cancelled_result(step: PipelineStep, reason: str, duration_ms: int) -> StepResult:
    return StepResult(
        name=step.name,
        status=StepStatus.FAILED,
        error=f"Cancelled: {reason}",
        error_kind="cancelled",
        duration_ms=duration_ms,
    )


def run_pipeline(
    pipeline: PipelineDefinition,
    inputs: Mapping[str, str] | None = None,
    *,
    secrets: SecretResolver | None = None,
    cancel: CancelToken | None = None,
    base_dir: Path | None = None,
    on_step_start: StepCallback | None = None,
    on_step_result: ResultCallback | None = None,
) -> RunResult:
    """Execute *pipeline* one step at a time and return the run result.

    A failing step halts the run unless it continues on error; in that case
    the run goes on and only the failed step's dependents are skipped.
    Cancellation (via *cancel* or the pipeline's ``timeout_seconds``) stops
    the run at once and marks it Failed.

    Raises:
        PipelineValidationError: If *inputs* names a step output; nothing
            runs in that case.
    """
    spec = pipeline.spec
    check_run_inputs(pipeline, inputs or {})
    cancel = cancel or CancelToken()
    masker = SecretMasker()
    context = RunContext(inputs)
    result = RunResult(pipeline_name=pipeline.metadata.name)
    blocked: dict[str, str] = {}  # step name -> failed upstream step
    soft_failures: list[str] = []

    timer = cancel_after(cancel, spec.timeout_seconds) if spec.timeout_seconds else None
    start = time.monotonic()
    result.status = RunStatus.RUNNING
    logger.info("Run %s of '%s' started", result.run_id, result.pipeline_name)

    try:
        with handler_filter(MaskingFilter(masker)):
            for step in execution_order(pipeline):
                if cancel.is_cancelled:
                    raise RunCancelledError(cancel.reason or "cancelled")

                upstream = next((blocked[d] for d in step.depends_on if d in blocked), None)
                if upstream is not None:
                    blocked[step.name] = upstream
                    sr = StepResult(
                        name=step.name,
                        status=StepStatus.SKIPPED,
                        skip_reason=f"Upstream step '{upstream}' failed",
                    )
                    result.step_results.append(sr)
                    if on_step_result is not None:
                        on_step_result(sr)
                    continue

                if on_step_start is not None:
                    on_step_start(step)
                step_start = time.monotonic()
                try:
                    sr = execute_step(
                        step,
                        context,
                        pipeline_inputs=spec.inputs,
                        pipeline_env=spec.env,
                        secrets=secrets,
                        masker=masker,
                        base_dir=base_dir,
                        cancel=cancel,
                    )
                except RunCancelledError:
                    elapsed = int((time.monotonic() - step_start) * 1000)
                    sr = _cancelled_result(step, cancel.reason or "cancelled", elapsed)
                    result.step_results.append(sr)
                    if on_step_result is not None:
                        on_step_result(sr)
                    raise

                # A cancel that lands as the process exits still wins.
                if cancel.is_cancelled and not sr.skipped:
                    sr = _cancelled_result(step, cancel.reason or "cancelled", sr.duration_ms)
                    result.step_results.append(sr)
                    if on_step_result is not None:
                        on_step_result(sr)
                    raise RunCancelledError(cancel.reason or "cancelled")

                result.step_results.append(sr)
                if on_step_result is not None:
                    on_step_result(sr)

                if sr.succeeded:
                    context.publish(step.name, sr.outputs)
                    logger.info("Step '%s' succeeded in %dms", step.name, sr.duration_ms)
                elif sr.failed:
                    if not spec.continues_on_error(step):
                        result.status = RunStatus.FAILED
                        result.cause = f"Step '{step.name}' failed: {sr.error}"
                        logger.warning("Run halted: %s", result.cause)
                        break
                    blocked[step.name] = step.name
                    soft_failures.append(step.name)
                    logger.warning("Step '%s' failed; continuing: %s", step.name, sr.error)
    except RunCancelledError as e:
        result.status = RunStatus.FAILED
        result.cancelled = True
        result.cause = f"cancelled: {e.reason}"
        logger.warning("Run %s cancelled: %s", result.run_id, e.reason)
    finally:
        if timer is not None:
            timer.cancel()

    if result.status == RunStatus.RUNNING:
        if soft_failures:
            result.status = RunStatus.PARTIALLY_FAILED
            result.cause = f"Non-blocking step(s) failed: {', '.join(soft_failures)}"
        else:
            result.status = RunStatus.SUCCEEDED

    result.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info("Run %s finished: %s", result.run_id, result.status)
    return result

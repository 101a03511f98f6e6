"""Pipeline module: declarative steps, executed in dependency order."""

from shipline.pipeline.context import RunContext
from shipline.pipeline.executor import execute_step
from shipline.pipeline.loader import load_pipeline, parse_pipeline
from shipline.pipeline.orchestrator import execution_order, run_pipeline
from shipline.pipeline.results import RunResult, RunStatus, StepResult, StepStatus
from shipline.pipeline.schema import PipelineDefinition, PipelineSpec, PipelineStep

__all__ = [
    "PipelineDefinition",
    "PipelineSpec",
    "PipelineStep",
    "RunContext",
    "RunResult",
    "RunStatus",
    "StepResult",
    "StepStatus",
    "execute_step",
    "execution_order",
    "load_pipeline",
    "parse_pipeline",
    "run_pipeline",
]

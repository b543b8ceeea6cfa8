"""GitHub-Actions-style workflow definitions executed through the pipeline runner."""

from .engine import WorkflowEngine
from .models import (
    CLAUDE_ACTION,
    Job,
    StepOutput,
    Workflow,
    WorkflowExecution,
    WorkflowInput,
    WorkflowMetadata,
    WorkflowResult,
    WorkflowStatus,
    WorkflowStep,
)
from .parser import (
    create_sample_workflow,
    dump_workflow,
    list_workflows,
    load_workflow,
    parse_workflow,
    save_workflow,
)

__all__ = [
    "CLAUDE_ACTION",
    "Job",
    "StepOutput",
    "Workflow",
    "WorkflowEngine",
    "WorkflowExecution",
    "WorkflowInput",
    "WorkflowMetadata",
    "WorkflowResult",
    "WorkflowStatus",
    "WorkflowStep",
    "create_sample_workflow",
    "dump_workflow",
    "list_workflows",
    "load_workflow",
    "parse_workflow",
    "save_workflow",
]

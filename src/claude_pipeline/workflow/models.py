"""Pydantic models for workflow files and their executions."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..schemas import Step

CLAUDE_ACTION = "claude-pipeline-action"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowInput(BaseModel):
    description: Optional[str] = None
    required: bool = False
    default: Optional[str] = None
    type: Literal["string", "boolean", "choice"] = "string"
    options: List[str] = Field(default_factory=list)


class WorkflowDispatch(BaseModel):
    model_config = ConfigDict(extra="allow")

    inputs: Dict[str, WorkflowInput] = Field(default_factory=dict)


class WorkflowTrigger(BaseModel):
    model_config = ConfigDict(extra="allow")

    workflow_dispatch: Optional[WorkflowDispatch] = None


class WorkflowStep(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, str] = Field(default_factory=dict)
    run: Optional[str] = None
    if_: Optional[str] = Field(default=None, alias="if")
    continue_on_error: Optional[bool] = Field(default=None, alias="continue-on-error")

    @property
    def is_claude_step(self) -> bool:
        return bool(self.uses) and CLAUDE_ACTION in self.uses

    @property
    def label(self) -> str:
        return self.name or self.id or "unnamed"


class Job(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    runs_on: Optional[str] = Field(default=None, alias="runs-on")
    env: Dict[str, str] = Field(default_factory=dict)
    steps: List[WorkflowStep] = Field(default_factory=list)


class Workflow(BaseModel):
    """A parsed workflow file. Jobs run in file order, their steps in order."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    on: Optional[WorkflowTrigger] = None
    inputs: Dict[str, WorkflowInput] = Field(default_factory=dict)
    env: Dict[str, str] = Field(default_factory=dict)
    jobs: Dict[str, Job] = Field(default_factory=dict)

    def declared_inputs(self) -> Dict[str, WorkflowInput]:
        """Top-level inputs merged with ``on.workflow_dispatch.inputs`` (the latter win)."""
        declared = dict(self.inputs)
        if self.on and self.on.workflow_dispatch:
            declared.update(self.on.workflow_dispatch.inputs)
        return declared

    def claude_steps(self) -> List[Tuple[str, WorkflowStep]]:
        return [
            (job_name, step)
            for job_name, job in self.jobs.items()
            for step in job.steps
            if step.is_claude_step
        ]


class StepOutput(BaseModel):
    model_config = ConfigDict(extra="allow")

    result: Optional[str] = None
    session_id: Optional[str] = None


class WorkflowExecution(BaseModel):
    workflow: Workflow
    inputs: Dict[str, str] = Field(default_factory=dict)
    outputs: Dict[str, StepOutput] = Field(default_factory=dict)
    current_step_index: int = 0
    status: WorkflowStatus = WorkflowStatus.PENDING
    error: Optional[str] = None

    def record_output(self, step_id: str, output: StepOutput) -> None:
        self.outputs[step_id] = output


class WorkflowResult(BaseModel):
    workflow_name: str
    status: WorkflowStatus
    outputs: Dict[str, StepOutput] = Field(default_factory=dict)
    steps: List[Step] = Field(default_factory=list)
    error: Optional[str] = None
    executed_steps: int = 0
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is WorkflowStatus.COMPLETED


class WorkflowMetadata(BaseModel):
    id: str
    name: str
    path: Path
    modified: datetime
    description: Optional[str] = None

"""Load, validate and write workflow YAML files."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError

from ..exceptions import WorkflowValidationError
from ..schemas import StepCondition
from ..sessions import session_reference
from .models import CLAUDE_ACTION, Job, Workflow, WorkflowMetadata

logger = logging.getLogger(__name__)

WORKFLOW_PREFIX = "claude-"
WORKFLOW_SUFFIXES = (".yml", ".yaml")
CLAUDE_ACTION_REF = f"{CLAUDE_ACTION}@v1"
VALID_CONDITIONS = tuple(condition.value for condition in StepCondition)


def parse_workflow(text: str) -> Workflow:
    """Parse and validate workflow YAML; raises :class:`WorkflowValidationError`."""

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise WorkflowValidationError(f"Failed to parse workflow YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise WorkflowValidationError("Workflow file must contain a mapping")

    # YAML 1.1 reads a bare ``on:`` key as boolean true.
    for key in [key for key in data if key is True]:
        data["on"] = data.pop(key)
    trigger = data.get("on")
    if isinstance(trigger, str):
        data["on"] = {trigger: None}
    elif isinstance(trigger, list):
        data["on"] = {str(name): None for name in trigger}

    if not data.get("name"):
        raise WorkflowValidationError("Workflow must have a name")
    try:
        workflow = Workflow.model_validate(data)
    except ValidationError as exc:
        raise WorkflowValidationError(f"Invalid workflow structure: {exc}") from exc
    validate_workflow(workflow)
    return workflow


def validate_workflow(workflow: Workflow) -> None:
    if not workflow.jobs:
        raise WorkflowValidationError("Workflow must have at least one job")
    for job_name, job in workflow.jobs.items():
        if not job.steps:
            raise WorkflowValidationError(f"Job '{job_name}' must have at least one step")
        _validate_job_steps(job)


def _validate_job_steps(job: Job) -> None:
    step_ids = {step.id for step in job.steps if step.id}
    for step in job.steps:
        if not step.is_claude_step:
            continue
        params = step.with_
        if not params.get("prompt"):
            raise WorkflowValidationError(f"Claude step '{step.label}' must have a prompt")

        check = params.get("check")
        if check is not None and not isinstance(check, str):
            raise WorkflowValidationError(f"Check command in step '{step.label}' must be a string")

        condition = params.get("condition")
        if condition is not None and condition not in VALID_CONDITIONS:
            raise WorkflowValidationError(
                f"Invalid condition type in step '{step.label}': {condition}. "
                f"Must be one of: {', '.join(VALID_CONDITIONS)}"
            )

        resume = params.get("resume_session")
        if resume:
            reference = session_reference(str(resume))
            if reference is None:
                raise WorkflowValidationError(f"Invalid session reference in step '{step.label}': {resume}")
            if reference not in step_ids:
                raise WorkflowValidationError(f"Step '{step.label}' references unknown step '{reference}'")


def load_workflow(path: Path) -> Workflow:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise WorkflowValidationError(f"Cannot read workflow {path}: {exc}") from exc
    return parse_workflow(text)


def dump_workflow(workflow: Workflow) -> str:
    data = workflow.model_dump(mode="json", by_alias=True, exclude_defaults=True)
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)


def save_workflow(path: Path, workflow: Workflow) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_workflow(workflow), encoding="utf-8")
    logger.debug("Wrote workflow %s", path)
    return path


def list_workflows(directory: Path) -> List[WorkflowMetadata]:
    """Workflows named ``claude-*.yml``/``.yaml`` in ``directory``, newest first."""

    directory = Path(directory)
    if not directory.is_dir():
        return []

    found: List[WorkflowMetadata] = []
    for path in sorted(directory.iterdir()):
        if not (path.name.startswith(WORKFLOW_PREFIX) and path.suffix in WORKFLOW_SUFFIXES):
            continue
        try:
            workflow = load_workflow(path)
        except WorkflowValidationError as exc:
            logger.warning("Skipping %s: %s", path.name, exc)
            continue
        extra = workflow.model_extra or {}
        found.append(
            WorkflowMetadata(
                id=path.stem,
                name=workflow.name,
                path=path,
                modified=datetime.fromtimestamp(path.stat().st_mtime),
                description=extra.get("description"),
            )
        )
    found.sort(key=lambda item: item.modified, reverse=True)
    return found


def create_sample_workflow() -> Workflow:
    """A three-step analyse / implement / test workflow chained through sessions."""

    action = f"anthropics/{CLAUDE_ACTION_REF}"
    data: Dict[str, Any] = {
        "name": "Claude Development Workflow",
        "on": {
            "workflow_dispatch": {
                "inputs": {
                    "task_description": {
                        "description": "Description of the development task",
                        "required": True,
                        "type": "string",
                    }
                }
            }
        },
        "jobs": {
            "development": {
                "name": "Development Tasks",
                "runs-on": "ubuntu-latest",
                "steps": [
                    {
                        "id": "analyze",
                        "name": "Analyze Codebase",
                        "uses": action,
                        "with": {
                            "prompt": (
                                "Analyze the codebase structure and identify key components "
                                "related to: ${{ inputs.task_description }}"
                            ),
                            "allow_all_tools": True,
                            "output_session": True,
                        },
                    },
                    {
                        "id": "implement",
                        "name": "Implement Changes",
                        "uses": action,
                        "with": {
                            "prompt": (
                                "Based on the analysis, implement the following task: "
                                "${{ inputs.task_description }}"
                            ),
                            "allow_all_tools": True,
                            "resume_session": "${{ steps.analyze.outputs.session_id }}",
                            "output_session": True,
                        },
                    },
                    {
                        "id": "test",
                        "name": "Write Tests",
                        "uses": action,
                        "with": {
                            "prompt": "Write comprehensive tests for the implemented changes",
                            "allow_all_tools": True,
                            "resume_session": "${{ steps.implement.outputs.session_id }}",
                            "condition": "on_success",
                        },
                    },
                ],
            }
        },
    }
    return Workflow.model_validate(data)


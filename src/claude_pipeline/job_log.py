"""Durable per-workflow job log used to resume interrupted runs."""
from __future__ import annotations

import itertools
import json
import logging
import threading
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .exceptions import JobLogError

logger = logging.getLogger(__name__)

JOB_LOG_SUFFIX = ".job.json"

_counter = itertools.count()
_counter_lock = threading.Lock()


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStepStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    PAUSED = "paused"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobLogStep(_CamelModel):
    step_index: int
    step_id: str
    step_name: Optional[str] = None
    status: JobStepStatus
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    duration_ms: Optional[int] = None
    output: Optional[str] = None
    session_id: Optional[str] = None
    error: Optional[str] = None


class JobLog(_CamelModel):
    execution_id: str
    workflow_name: str
    workflow_file: str
    start_time: datetime = Field(default_factory=datetime.now)
    last_update_time: datetime = Field(default_factory=datetime.now)
    status: JobStatus = JobStatus.RUNNING
    last_completed_step: int = -1
    total_steps: int
    steps: List[JobLogStep] = Field(default_factory=list)


def job_log_path(workflow_path: Path) -> Path:
    """``flows/claude-build.yml`` -> ``flows/claude-build.job.json``."""
    workflow_path = Path(workflow_path)
    return workflow_path.with_name(workflow_path.stem + JOB_LOG_SUFFIX)


def generate_execution_id(now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%dT%H%M%S")
    with _counter_lock:
        sequence = next(_counter) % 1000
    return f"{stamp}{sequence:03d}-{uuid.uuid4().hex[:6]}"


def create_log(workflow_name: str, workflow_path: Path, total_steps: int) -> JobLog:
    return JobLog(
        execution_id=generate_execution_id(),
        workflow_name=workflow_name,
        workflow_file=str(workflow_path),
        total_steps=total_steps,
    )


def add_step(log: JobLog, record: JobLogStep) -> JobLog:
    """
    Record the latest state of one step, replacing any earlier record for
    the same index, and recompute the aggregate status.
    """

    steps = [existing for existing in log.steps if existing.step_index != record.step_index]
    steps.append(record)
    steps.sort(key=lambda item: item.step_index)
    log.steps = steps

    completed = [item.step_index for item in steps if item.status is JobStepStatus.COMPLETED]
    log.last_completed_step = max(completed) if completed else -1

    statuses = {item.status for item in steps}
    recorded = {item.step_index for item in steps}
    if JobStepStatus.FAILED in statuses:
        log.status = JobStatus.FAILED
    elif (
        recorded.issuperset(range(log.total_steps))
        and JobStepStatus.PAUSED not in statuses
        and JobStepStatus.RUNNING not in statuses
    ):
        log.status = JobStatus.COMPLETED
    else:
        log.status = JobStatus.RUNNING
    log.last_update_time = datetime.now()
    return log


def save(log: JobLog, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(log.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    logger.debug("Saved job log %s (%s, last completed %d)", path, log.status.value, log.last_completed_step)


def load(path: Path) -> Optional[JobLog]:
    """Return the stored log, ``None`` when there is none, or raise on corruption."""

    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise JobLogError(f"Failed to load job log: {exc}") from exc
    try:
        return JobLog.model_validate(payload)
    except ValidationError as exc:
        raise JobLogError(f"Invalid job log format: {exc}") from exc


def resume_step_index(log: JobLog) -> int:
    return log.last_completed_step + 1


def exists(workflow_path: Path) -> bool:
    return job_log_path(workflow_path).is_file()


def remove(workflow_path: Path) -> bool:
    """Delete the job log for ``workflow_path``; returns whether one existed."""

    path = job_log_path(workflow_path)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise JobLogError(f"Failed to remove job log {path}: {exc}") from exc
    logger.debug("Removed job log %s", path)
    return True

"""Shared data models for the pipeline engine."""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

DEFAULT_MAX_TURNS = 10
MANUAL_PAUSE_MESSAGE = "MANUALLY PAUSED"
RATE_LIMIT_PAUSE_MESSAGE = "Rate limited - waiting for reset"


class StepStatus(str, Enum):
    """Lifecycle states of a single pipeline step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    PAUSED = "paused"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.ERROR, StepStatus.SKIPPED})


class StepCondition(str, Enum):
    """When a step runs relative to the outcome of the step before it."""

    ALWAYS = "always"
    ON_SUCCESS = "on_success"
    ON_FAILURE = "on_failure"


class OutputFormat(str, Enum):
    TEXT = "text"
    JSON = "json"
    STREAM_JSON = "stream-json"


class PauseReason(str, Enum):
    MANUAL = "manual"
    RATE_LIMIT = "rate_limit"


class TaskOptions(BaseModel):
    """Flags forwarded to the Claude CLI for every step of a run."""

    allow_all_tools: bool = False
    output_format: OutputFormat = OutputFormat.TEXT
    max_turns: Optional[int] = None
    verbose: bool = False
    system_prompt: Optional[str] = None
    append_system_prompt: Optional[str] = None
    continue_conversation: bool = False
    resume_session_id: Optional[str] = None
    allowed_tools: List[str] = Field(default_factory=list)
    disallowed_tools: List[str] = Field(default_factory=list)
    mcp_config: Optional[str] = None
    permission_prompt_tool: Optional[str] = None


class Step(BaseModel):
    """
    One unit of pipeline work wrapping a single Claude CLI invocation.

    Status changes go through the mutators below so that ``session_id`` is
    only ever populated together with the ``completed`` status.
    """

    id: str
    name: Optional[str] = None
    prompt: str
    model: Optional[str] = None
    status: StepStatus = StepStatus.PENDING
    results: Optional[str] = None
    session_id: Optional[str] = None
    resume_from_step_id: Optional[str] = None
    condition: Optional[StepCondition] = None
    check: Optional[str] = None
    skip_reason: Optional[str] = None
    paused_until: Optional[int] = Field(default=None, description="Epoch milliseconds of the rate-limit reset.")
    working_directory: Optional[Path] = None
    allow_all_tools: Optional[bool] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_running(self) -> None:
        self.status = StepStatus.RUNNING
        self.skip_reason = None

    def complete(self, results: str, session_id: Optional[str] = None) -> None:
        self.status = StepStatus.COMPLETED
        self.results = results
        self.session_id = session_id

    def fail(self, error: str) -> None:
        self.status = StepStatus.ERROR
        self.results = error
        self.session_id = None

    def pause(self, message: str, until: Optional[int] = None) -> None:
        self.status = StepStatus.PAUSED
        self.results = message
        self.paused_until = until

    def skip(self, reason: Optional[str]) -> None:
        self.status = StepStatus.SKIPPED
        self.skip_reason = reason

    def reset(self) -> None:
        """Return a paused step to ``pending`` so it can be run again."""
        self.status = StepStatus.PENDING
        self.results = None
        self.paused_until = None

"""Exception hierarchy shared across the pipeline engine."""
from __future__ import annotations


class ClaudePipelineError(Exception):
    """Base class for every error raised by claude_pipeline."""


class ConfigurationError(ClaudePipelineError):
    """Settings or run parameters are unusable."""


class WorkflowValidationError(ClaudePipelineError):
    """A workflow definition could not be parsed or failed validation."""


class MissingInputError(WorkflowValidationError):
    """A required workflow input was not supplied."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Missing required input: {name}")
        self.name = name


class JobLogError(ClaudePipelineError):
    """A job log exists but cannot be read, validated, or removed."""


class PipelineBusyError(ClaudePipelineError):
    """A run was requested while another execution is active on the runner."""

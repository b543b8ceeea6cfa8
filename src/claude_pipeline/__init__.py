"""
Claude Pipeline - sequential runner for Claude CLI steps.

The package exposes the pipeline runner, the workflow engine built on top
of it, and the job log used to resume interrupted workflow runs.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("claude-pipeline")
except PackageNotFoundError:  # pragma: no cover - fallback for editable installs
    __version__ = "0.0.0"

__all__ = ["__version__"]

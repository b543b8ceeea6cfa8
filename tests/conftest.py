import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from claude_pipeline.executor import CommandResult
from claude_pipeline.pipeline import PipelineRunner


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(command=[], cwd=Path("."), exit_code=0, stdout=stdout, stderr="")


def fail(stderr: str = "boom", exit_code: int = 1, stdout: str = "") -> CommandResult:
    error = stderr.strip() or stdout.strip() or f"Command failed with exit code {exit_code}"
    return CommandResult(command=[], cwd=Path("."), exit_code=exit_code, stdout=stdout, stderr=stderr, error=error)


def claude_json(result: str, session_id: Optional[str] = None) -> CommandResult:
    payload: Dict[str, object] = {"type": "result", "result": result}
    if session_id:
        payload["session_id"] = session_id
    return ok(json.dumps(payload))


class FakeExecutor:
    """Scripted stand-in for ProcessExecutor; unscripted calls succeed with empty output."""

    def __init__(self, *responses) -> None:
        self.responses: List[object] = list(responses)
        self.calls: List[Tuple[List[str], Path]] = []
        self.on_execute: Optional[Callable[[List[str]], None]] = None
        self.terminate_calls = 0

    def queue(self, *responses) -> None:
        self.responses.extend(responses)

    def execute(self, command, cwd) -> CommandResult:
        argv = list(command)
        self.calls.append((argv, Path(cwd)))
        if self.on_execute is not None:
            self.on_execute(argv)
        if not self.responses:
            return ok("")
        response = self.responses.pop(0)
        if callable(response):
            response = response(argv)
        return response

    def terminate(self) -> bool:
        self.terminate_calls += 1
        return True

    @property
    def argvs(self) -> List[List[str]]:
        return [argv for argv, _ in self.calls]

    def prompts(self) -> List[str]:
        return [argv[argv.index("-p") + 1] for argv in self.argvs if "-p" in argv]


class FakeScheduler:
    """Records scheduled resumes; tests fire them explicitly."""

    def __init__(self) -> None:
        self.scheduled: Dict[str, Tuple[float, Callable[[], None]]] = {}
        self.cancelled: List[str] = []

    def schedule(self, key, delay_seconds, callback) -> None:
        self.scheduled[key] = (delay_seconds, callback)

    def cancel(self, key) -> bool:
        self.cancelled.append(key)
        return self.scheduled.pop(key, None) is not None

    def cancel_all(self) -> None:
        self.scheduled.clear()

    def pending(self) -> List[str]:
        return list(self.scheduled)

    def wait(self, timeout=None) -> bool:
        return True

    def fire(self, key: str) -> None:
        _, callback = self.scheduled.pop(key)
        callback()


class RecordingObserver:
    def __init__(self) -> None:
        self.progress: List[Tuple[int, str]] = []
        self.completed: List[List[object]] = []
        self.errors: List[str] = []

    def on_progress(self, steps, current_index) -> None:
        self.progress.append((current_index, steps[current_index].status.value))

    def on_complete(self, steps) -> None:
        self.completed.append(list(steps))

    def on_error(self, error, steps) -> None:
        self.errors.append(error)


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def runner(executor: FakeExecutor, scheduler: FakeScheduler) -> PipelineRunner:
    return PipelineRunner(executor, scheduler=scheduler, clock=lambda: 1_699_999_000.0)

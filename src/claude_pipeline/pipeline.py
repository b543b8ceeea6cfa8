"""Sequential step runner with conditions, session chaining and pause/resume."""
from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from .commands import build_task_command, parse_task_result
from .conditions import evaluate_condition
from .exceptions import PipelineBusyError
from .executor import CommandExecutor
from .rate_limit import detect_rate_limit
from .scheduler import ResumeScheduler
from .schemas import (
    MANUAL_PAUSE_MESSAGE,
    RATE_LIMIT_PAUSE_MESSAGE,
    PauseReason,
    Step,
    StepStatus,
    TaskOptions,
)
from .sessions import resolve_resume_session


LOGGER = logging.getLogger("claude_pipeline.pipeline")

AUTO_RESUME_RETRY_SECONDS = 30.0

PromptResolver = Callable[[Step], str]


class PipelineObserver(Protocol):
    """Receives progress from the runner, synchronously and in order."""

    def on_progress(self, steps: List[Step], current_index: int) -> None: ...

    def on_complete(self, steps: List[Step]) -> None: ...

    def on_error(self, error: str, steps: List[Step]) -> None: ...


class CallbackObserver:
    """Adapt three plain callables to :class:`PipelineObserver`."""

    def __init__(
        self,
        on_progress: Optional[Callable[[List[Step], int], None]] = None,
        on_complete: Optional[Callable[[List[Step]], None]] = None,
        on_error: Optional[Callable[[str, List[Step]], None]] = None,
    ) -> None:
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._on_error = on_error

    def on_progress(self, steps: List[Step], current_index: int) -> None:
        if self._on_progress:
            self._on_progress(steps, current_index)

    def on_complete(self, steps: List[Step]) -> None:
        if self._on_complete:
            self._on_complete(steps)

    def on_error(self, error: str, steps: List[Step]) -> None:
        if self._on_error:
            self._on_error(error, steps)


@dataclass
class PipelineExecution:
    """Everything needed to drive (or later resume) one pipeline."""

    steps: List[Step]
    model: str
    working_dir: Path
    options: TaskOptions
    observer: PipelineObserver
    resolve_prompt: Optional[PromptResolver] = None
    current_index: int = 0


@dataclass
class PausedExecution:
    pipeline_id: str
    execution: PipelineExecution
    current_index: int
    reason: PauseReason
    paused_at: int
    resume_deadline: Optional[int] = None


@dataclass(frozen=True)
class PausedExecutionInfo:
    """Read-only view of a paused pipeline for listing."""

    pipeline_id: str
    steps: List[Step]
    current_index: int
    paused_at: int
    reason: PauseReason
    resume_deadline: Optional[int] = None


def new_pipeline_id(now_ms: Optional[int] = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"pipeline-{stamp}-{uuid.uuid4().hex[:9]}"


class PipelineRunner:
    """
    Run steps one at a time, in order, against a process executor.

    At most one execution is active per runner. Paused executions (manual or
    rate-limited) are kept as snapshots keyed by pipeline id; rate-limited
    ones resume on their own when the reset deadline passes.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        scheduler: Optional[ResumeScheduler] = None,
        executable: str = "claude",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._executor = executor
        self._scheduler = scheduler or ResumeScheduler()
        self._executable = executable
        self._clock = clock
        self._lock = threading.RLock()
        self._active: Optional[PipelineExecution] = None
        self._paused: Dict[str, PausedExecution] = {}
        self._pause_request: Optional[Tuple[str, PauseReason]] = None
        self._logger = LOGGER

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._active is not None

    @property
    def is_paused(self) -> bool:
        with self._lock:
            if self._paused:
                return True
            return self._active is not None and any(s.status is StepStatus.PAUSED for s in self._active.steps)

    def run(
        self,
        steps: Sequence[Step],
        model: str,
        working_dir: Path,
        options: Optional[TaskOptions] = None,
        observer: Optional[PipelineObserver] = None,
        start_index: int = 0,
        resolve_prompt: Optional[PromptResolver] = None,
    ) -> None:
        """Execute ``steps`` from ``start_index``; returns when finished, paused or cancelled."""

        execution = PipelineExecution(
            steps=list(steps),
            model=model,
            working_dir=Path(working_dir),
            options=options or TaskOptions(),
            observer=observer or CallbackObserver(),
            resolve_prompt=resolve_prompt,
            current_index=start_index,
        )
        with self._lock:
            if self._active is not None:
                raise PipelineBusyError("Another pipeline is already running on this runner")
            self._active = execution
            self._pause_request = None

        self._logger.info("Starting pipeline with %d steps at index %d", len(execution.steps), start_index)
        self._execute(execution, start_index)

    def cancel(self) -> bool:
        """Stop the active execution and terminate its process. Not a pause."""

        with self._lock:
            was_active = self._active is not None
            self._active = None
            self._pause_request = None
        terminated = self._executor.terminate()
        if was_active or terminated:
            self._logger.info("Pipeline cancelled")
        return was_active

    def pause_execution(self, reason: PauseReason = PauseReason.MANUAL) -> Optional[str]:
        """
        Ask the active pipeline to pause before its next pending step.

        The running step, if any, finishes first. Returns the id the paused
        snapshot will be stored under, or ``None`` when nothing is running.
        """

        with self._lock:
            if self._active is None:
                return None
            pipeline_id = new_pipeline_id(self._now_ms())
            self._pause_request = (pipeline_id, PauseReason(reason))
        self._logger.info("Pause requested (%s) as %s", PauseReason(reason).value, pipeline_id)
        return pipeline_id

    def resume_execution(self, pipeline_id: str) -> bool:
        """Continue a paused pipeline from the step it paused on."""

        with self._lock:
            if self._active is not None:
                self._logger.warning("Cannot resume %s while another pipeline is running", pipeline_id)
                return False
            paused = self._paused.pop(pipeline_id, None)
            if paused is None:
                return False
            self._scheduler.cancel(pipeline_id)
            execution = paused.execution
            index = paused.current_index
            if index < len(execution.steps) and execution.steps[index].status is StepStatus.PAUSED:
                execution.steps[index].reset()
            self._active = execution
            self._pause_request = None

        self._logger.info("Resuming %s at step %d", pipeline_id, index)
        execution.observer.on_progress(list(execution.steps), index)
        self._execute(execution, index)
        return True

    def discard_paused_execution(self, pipeline_id: str) -> bool:
        with self._lock:
            paused = self._paused.pop(pipeline_id, None)
        if paused is None:
            return False
        self._scheduler.cancel(pipeline_id)
        self._logger.info("Discarded paused pipeline %s", pipeline_id)
        return True

    def list_paused_executions(self) -> List[PausedExecutionInfo]:
        with self._lock:
            return [
                PausedExecutionInfo(
                    pipeline_id=paused.pipeline_id,
                    steps=[step.model_copy(deep=True) for step in paused.execution.steps],
                    current_index=paused.current_index,
                    paused_at=paused.paused_at,
                    reason=paused.reason,
                    resume_deadline=paused.resume_deadline,
                )
                for paused in self._paused.values()
            ]

    def wait_for_resumes(self, timeout: Optional[float] = None) -> bool:
        """Block until scheduled auto-resumes (and the runs they start) finish."""
        return self._scheduler.wait(timeout)

    def _execute(self, execution: PipelineExecution, start_index: int) -> None:
        try:
            self._run_loop(execution, start_index)
        finally:
            with self._lock:
                if self._active is execution:
                    self._active = None

    def _run_loop(self, execution: PipelineExecution, start_index: int) -> None:
        steps = execution.steps
        observer = execution.observer
        previous_success = _previous_outcome(steps, start_index)

        for index in range(start_index, len(steps)):
            step = steps[index]
            with self._lock:
                if self._active is not execution:
                    return
                execution.current_index = index
                if self._pause_request is not None and step.status is StepStatus.PENDING:
                    pipeline_id, reason = self._pause_request
                    self._pause_request = None
                    step.pause(MANUAL_PAUSE_MESSAGE)
                    self._store_snapshot(pipeline_id, execution, index, reason, deadline=None)
                    self._active = None
                    paused = True
                else:
                    paused = False
            if paused:
                self._logger.info("Pipeline paused before step %d (%s)", index, step.display_name)
                observer.on_progress(list(steps), index)
                return

            working_dir = step.working_directory or execution.working_dir
            decision = evaluate_condition(step.check, step.condition, previous_success, working_dir, self._executor)
            if not decision.should_run:
                step.skip(decision.reason)
                self._logger.info("Skipping %s: %s", step.display_name, decision.reason)
                observer.on_progress(list(steps), index)
                continue

            with self._lock:
                if self._active is not execution:
                    return
            step.mark_running()
            observer.on_progress(list(steps), index)
            self._logger.info("-> %s", step.display_name)

            options = self._step_options(execution, step)
            prompt = execution.resolve_prompt(step) if execution.resolve_prompt else step.prompt
            model = step.model or execution.model
            argv = build_task_command(prompt, model, options, executable=self._executable)
            result = self._executor.execute(argv, working_dir)

            with self._lock:
                if self._active is not execution:
                    self._logger.info("Pipeline cancelled during %s", step.display_name)
                    return

            if result.success:
                output = parse_task_result(result.stdout, options.output_format)
                step.complete(output.text, output.session_id)
                previous_success = True
                self._logger.info("completed %s", step.display_name)
                observer.on_progress(list(steps), index)
                continue

            rate_limit = detect_rate_limit(result.error, result.stderr, result.stdout, now_ms=self._now_ms())
            if rate_limit.is_rate_limited and rate_limit.reset_time_ms is not None:
                step.pause(RATE_LIMIT_PAUSE_MESSAGE, until=rate_limit.reset_time_ms)
                pipeline_id = new_pipeline_id(self._now_ms())
                with self._lock:
                    self._store_snapshot(
                        pipeline_id, execution, index, PauseReason.RATE_LIMIT, deadline=rate_limit.reset_time_ms
                    )
                    self._active = None
                self._logger.warning(
                    "Rate limit hit on %s; %s resumes in %.0fs",
                    step.display_name,
                    pipeline_id,
                    rate_limit.wait_ms / 1000,
                )
                observer.on_progress(list(steps), index)
                self._scheduler.schedule(
                    pipeline_id,
                    rate_limit.wait_ms / 1000,
                    lambda: self._auto_resume(pipeline_id),
                )
                return

            step.fail(result.error or "Task execution failed")
            previous_success = False
            self._logger.warning("%s failed: %s", step.display_name, step.results)
            observer.on_progress(list(steps), index)

        with self._lock:
            if self._active is not execution:
                return
            self._active = None
            self._pause_request = None

        errors = [step for step in steps if step.status is StepStatus.ERROR]
        if errors:
            observer.on_error(errors[0].results or "Task failed", list(steps))
        else:
            observer.on_complete(list(steps))

    def _store_snapshot(
        self,
        pipeline_id: str,
        execution: PipelineExecution,
        index: int,
        reason: PauseReason,
        deadline: Optional[int],
    ) -> None:
        snapshot = PipelineExecution(
            steps=[step.model_copy(deep=True) for step in execution.steps],
            model=execution.model,
            working_dir=execution.working_dir,
            options=execution.options.model_copy(deep=True),
            observer=execution.observer,
            resolve_prompt=execution.resolve_prompt,
            current_index=index,
        )
        self._paused[pipeline_id] = PausedExecution(
            pipeline_id=pipeline_id,
            execution=snapshot,
            current_index=index,
            reason=reason,
            paused_at=self._now_ms(),
            resume_deadline=deadline,
        )

    def _auto_resume(self, pipeline_id: str) -> None:
        if self.resume_execution(pipeline_id):
            return
        with self._lock:
            still_paused = pipeline_id in self._paused
        if still_paused:
            self._logger.info("Runner busy; retrying resume of %s later", pipeline_id)
            self._scheduler.schedule(
                pipeline_id,
                AUTO_RESUME_RETRY_SECONDS,
                lambda: self._auto_resume(pipeline_id),
            )

    def _step_options(self, execution: PipelineExecution, step: Step) -> TaskOptions:
        update: Dict[str, object] = {}
        if step.resume_from_step_id:
            session_id = resolve_resume_session(step, execution.steps)
            update["resume_session_id"] = session_id
            if session_id:
                self._logger.debug("%s continues session %s", step.display_name, session_id)
            else:
                self._logger.debug("%s starts a fresh session", step.display_name)
        if step.allow_all_tools is not None:
            update["allow_all_tools"] = step.allow_all_tools
        return execution.options.model_copy(update=update) if update else execution.options

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)


def _previous_outcome(steps: Sequence[Step], start_index: int) -> bool:
    """Success flag carried into ``start_index``; skipped steps are transparent."""
    for step in reversed(steps[:start_index]):
        if step.status is StepStatus.COMPLETED:
            return True
        if step.status is StepStatus.ERROR:
            return False
    return True

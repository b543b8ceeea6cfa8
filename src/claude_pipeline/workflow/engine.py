"""Run workflow executions through :class:`PipelineRunner` with job-log checkpoints."""
from __future__ import annotations

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from .. import job_log
from ..exceptions import MissingInputError
from ..job_log import JobLog, JobLogStep, JobStepStatus
from ..pipeline import CallbackObserver, PipelineObserver, PipelineRunner
from ..schemas import OutputFormat, Step, StepCondition, StepStatus, TaskOptions
from ..sessions import session_reference
from .models import StepOutput, Workflow, WorkflowExecution, WorkflowResult, WorkflowStatus
from .resolver import ResolutionContext, merged_env, resolve_step_fields, resolve_variables

LOGGER = logging.getLogger("claude_pipeline.workflow")

_JOB_STATUS = {
    StepStatus.COMPLETED: JobStepStatus.COMPLETED,
    StepStatus.ERROR: JobStepStatus.FAILED,
    StepStatus.SKIPPED: JobStepStatus.SKIPPED,
    StepStatus.PAUSED: JobStepStatus.PAUSED,
}


class WorkflowEngine:
    """Turns workflow definitions into runner steps and keeps their job log current."""

    def __init__(self, runner: PipelineRunner) -> None:
        self.runner = runner

    def create_execution(self, workflow: Workflow, inputs: Optional[Mapping[str, str]] = None) -> WorkflowExecution:
        values: Dict[str, str] = {}
        provided = dict(inputs or {})
        for name, spec in workflow.declared_inputs().items():
            if name in provided:
                values[name] = str(provided.pop(name))
            elif spec.default is not None:
                values[name] = spec.default
            elif spec.required:
                raise MissingInputError(name)
        # Undeclared inputs are passed through for ad hoc ``${{ inputs.x }}`` use.
        values.update({key: str(value) for key, value in provided.items()})
        return WorkflowExecution(workflow=workflow, inputs=values)

    def build_steps(self, workflow: Workflow, execution: Optional[WorkflowExecution] = None) -> List[Step]:
        """
        Convert Claude steps into runner steps, in job order.

        Fields other than the prompt are resolved here against inputs and env;
        the prompt is resolved right before the step runs so it can see the
        outputs of earlier steps.
        """

        steps: List[Step] = []
        for index, (job_name, definition) in enumerate(workflow.claude_steps()):
            context = self._context(workflow, job_name, execution)
            params = resolve_step_fields(definition.with_, context)
            condition = params.get("condition")
            working_directory = params.get("working_directory")
            # Read the reference before substitution turns it into a session id.
            resume_session = definition.with_.get("resume_session")
            steps.append(
                Step(
                    id=definition.id or f"step-{index}",
                    name=definition.name,
                    prompt=str(definition.with_["prompt"]),
                    model=params.get("model") or None,
                    resume_from_step_id=session_reference(str(resume_session) if resume_session else None),
                    condition=StepCondition(condition) if condition else None,
                    check=params.get("check") or None,
                    working_directory=Path(working_directory) if working_directory else None,
                    allow_all_tools=_as_bool(params.get("allow_all_tools")),
                )
            )
        return steps

    def execute(
        self,
        execution: WorkflowExecution,
        workflow_path: Path,
        model: str,
        working_dir: Path,
        options: Optional[TaskOptions] = None,
        observer: Optional[PipelineObserver] = None,
        resume: bool = True,
        wait: bool = True,
    ) -> WorkflowResult:
        """
        Run ``execution`` to completion (or until paused) and return the result.

        When ``resume`` is set and ``workflow_path`` has an unfinished job log,
        steps recorded before the resume point are restored and the run picks
        up from there. With ``wait`` the call also blocks through scheduled
        rate-limit resumes.
        """

        started = time.monotonic()
        workflow = execution.workflow
        working_dir = Path(working_dir)
        log_path = job_log.job_log_path(workflow_path)
        steps = self.build_steps(workflow, execution)
        for step in steps:
            if step.working_directory is not None and not step.working_directory.is_absolute():
                step.working_directory = working_dir / step.working_directory

        log, start_index = self._prepare_log(workflow, workflow_path, log_path, steps, execution, resume)
        job_names = {step.id: job_name for step, (job_name, _) in zip(steps, workflow.claude_steps())}
        tracker = _JobLogObserver(execution, log, log_path, steps, observer)

        def resolve_prompt(step: Step) -> str:
            context = self._context(workflow, job_names.get(step.id), execution)
            return resolve_variables(step.prompt, context)

        run_options = (options or TaskOptions()).model_copy(update={"output_format": OutputFormat.JSON})
        execution.status = WorkflowStatus.RUNNING
        execution.current_step_index = start_index
        LOGGER.info("Running workflow '%s' (%d steps) from step %d", workflow.name, len(steps), start_index)

        self.runner.run(
            steps,
            model=model,
            working_dir=working_dir,
            options=run_options,
            observer=tracker,
            start_index=start_index,
            resolve_prompt=resolve_prompt,
        )
        if wait:
            self.runner.wait_for_resumes()

        return WorkflowResult(
            workflow_name=workflow.name,
            status=execution.status,
            outputs=dict(execution.outputs),
            steps=[step.model_copy(deep=True) for step in tracker.steps],
            error=execution.error,
            executed_steps=tracker.executed,
            duration_seconds=time.monotonic() - started,
        )

    def _prepare_log(
        self,
        workflow: Workflow,
        workflow_path: Path,
        log_path: Path,
        steps: List[Step],
        execution: WorkflowExecution,
        resume: bool,
    ) -> Tuple[JobLog, int]:
        existing = job_log.load(log_path) if resume else None
        if existing is not None:
            start_index = job_log.resume_step_index(existing)
            if existing.total_steps != len(steps):
                LOGGER.warning("Job log %s does not match the workflow; starting over", log_path)
            elif start_index >= len(steps):
                LOGGER.info("Previous run of '%s' finished; starting a fresh run", workflow.name)
            else:
                LOGGER.info("Resuming '%s' from step %d (execution %s)", workflow.name, start_index, existing.execution_id)
                self._restore(existing, steps, execution, start_index)
                return existing, start_index

        log = job_log.create_log(workflow.name, workflow_path, len(steps))
        job_log.save(log, log_path)
        return log, 0

    @staticmethod
    def _restore(log: JobLog, steps: List[Step], execution: WorkflowExecution, start_index: int) -> None:
        for record in log.steps:
            if record.step_index >= start_index or record.step_index >= len(steps):
                continue
            step = steps[record.step_index]
            if record.status is JobStepStatus.COMPLETED:
                step.complete(record.output or "", record.session_id)
                execution.record_output(step.id, StepOutput(result=record.output, session_id=record.session_id))
            elif record.status is JobStepStatus.FAILED:
                step.fail(record.error or "Task execution failed")
            elif record.status is JobStepStatus.SKIPPED:
                step.skip(record.error)

    @staticmethod
    def _context(workflow: Workflow, job_name: Optional[str], execution: Optional[WorkflowExecution]) -> ResolutionContext:
        job = workflow.jobs.get(job_name) if job_name else None
        if execution is None:
            return ResolutionContext(env=merged_env(workflow, job))
        return ResolutionContext(inputs=execution.inputs, env=merged_env(workflow, job), steps=execution.outputs)


class _JobLogObserver:
    """Mirror runner progress into the execution outputs and the job log."""

    def __init__(
        self,
        execution: WorkflowExecution,
        log: JobLog,
        log_path: Path,
        steps: List[Step],
        delegate: Optional[PipelineObserver],
    ) -> None:
        self.execution = execution
        self.log = log
        self.log_path = log_path
        self.steps = list(steps)
        self.executed = 0
        self._started: Dict[int, datetime] = {}
        self._delegate = delegate or CallbackObserver()

    def on_progress(self, steps: List[Step], current_index: int) -> None:
        self.steps = steps
        self.execution.current_step_index = current_index
        step = steps[current_index]
        if step.status is StepStatus.RUNNING:
            self._started[current_index] = datetime.now()
        elif step.status in _JOB_STATUS:
            self._record(current_index, step)
        self._delegate.on_progress(steps, current_index)

    def on_complete(self, steps: List[Step]) -> None:
        self.steps = steps
        self.execution.status = WorkflowStatus.COMPLETED
        LOGGER.info("Workflow '%s' completed", self.execution.workflow.name)
        self._delegate.on_complete(steps)

    def on_error(self, error: str, steps: List[Step]) -> None:
        self.steps = steps
        self.execution.status = WorkflowStatus.FAILED
        self.execution.error = error
        LOGGER.error("Workflow '%s' failed: %s", self.execution.workflow.name, error)
        self._delegate.on_error(error, steps)

    def _record(self, index: int, step: Step) -> None:
        now = datetime.now()
        started = self._started.pop(index, now)
        status = _JOB_STATUS[step.status]
        if status is JobStepStatus.COMPLETED:
            self.executed += 1
            self.execution.record_output(step.id, StepOutput(result=step.results, session_id=step.session_id))
        elif status is JobStepStatus.FAILED:
            self.executed += 1

        record = JobLogStep(
            step_index=index,
            step_id=step.id,
            step_name=step.name,
            status=status,
            start_time=started,
            end_time=now,
            duration_ms=int((now - started).total_seconds() * 1000),
            output=step.results if status is JobStepStatus.COMPLETED else None,
            session_id=step.session_id,
            error=_record_error(step, status),
        )
        job_log.add_step(self.log, record)
        job_log.save(self.log, self.log_path)


def _record_error(step: Step, status: JobStepStatus) -> Optional[str]:
    if status is JobStepStatus.FAILED or status is JobStepStatus.PAUSED:
        return step.results
    if status is JobStepStatus.SKIPPED:
        return step.skip_reason
    return None


def _as_bool(value: object) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}

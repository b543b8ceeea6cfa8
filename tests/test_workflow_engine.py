from pathlib import Path

import pytest

from conftest import claude_json, fail
from claude_pipeline import job_log
from claude_pipeline.exceptions import MissingInputError
from claude_pipeline.job_log import JobLogStep, JobStatus, JobStepStatus
from claude_pipeline.schemas import StepCondition, StepStatus
from claude_pipeline.workflow import StepOutput, WorkflowEngine, WorkflowStatus, parse_workflow

WORKFLOW = """
name: Feature
on:
  workflow_dispatch:
    inputs:
      feature:
        required: true
      language:
        default: python
env:
  TONE: terse
jobs:
  build:
    env:
      TONE: friendly
    steps:
      - id: plan
        uses: anthropics/claude-pipeline-action@v1
        with:
          prompt: Plan ${{ inputs.feature }} in ${{ inputs.language }}, ${{ env.TONE }}
          model: claude-sonnet
      - id: code
        uses: anthropics/claude-pipeline-action@v1
        with:
          prompt: "Implement using: ${{ steps.plan.outputs.result }}"
          resume_session: ${{ steps.plan.outputs.session_id }}
          allow_all_tools: true
      - uses: anthropics/claude-pipeline-action@v1
        with:
          prompt: Review
          condition: on_success
          working_directory: sub
"""


@pytest.fixture
def workflow_file(tmp_path: Path) -> Path:
    path = tmp_path / "claude-feature.yml"
    path.write_text(WORKFLOW, encoding="utf-8")
    return path


@pytest.fixture
def engine(runner) -> WorkflowEngine:
    return WorkflowEngine(runner)


def test_create_execution_applies_defaults(engine):
    workflow = parse_workflow(WORKFLOW)

    execution = engine.create_execution(workflow, {"feature": "login", "extra": "x"})

    assert execution.inputs == {"feature": "login", "language": "python", "extra": "x"}
    assert execution.status is WorkflowStatus.PENDING


def test_missing_required_input_is_rejected(engine):
    with pytest.raises(MissingInputError, match="feature"):
        engine.create_execution(parse_workflow(WORKFLOW), {})


def test_build_steps_maps_claude_step_parameters(engine):
    workflow = parse_workflow(WORKFLOW)

    steps = engine.build_steps(workflow)

    assert [step.id for step in steps] == ["plan", "code", "step-2"]
    assert steps[0].model == "claude-sonnet"
    assert steps[1].resume_from_step_id == "plan"
    assert steps[1].allow_all_tools is True
    assert steps[2].condition is StepCondition.ON_SUCCESS
    assert steps[2].working_directory == Path("sub")


def test_session_reference_survives_known_outputs(engine):
    workflow = parse_workflow(WORKFLOW)
    execution = engine.create_execution(workflow, {"feature": "login"})
    execution.record_output("plan", StepOutput(result="the plan", session_id="sess-123"))

    steps = engine.build_steps(workflow, execution)

    assert steps[1].resume_from_step_id == "plan"


def test_execute_runs_all_steps_and_records_outputs(engine, executor, workflow_file: Path, tmp_path: Path):
    executor.queue(claude_json("the plan", session_id="abc"), claude_json("code", session_id="def"), claude_json("lgtm"))
    execution = engine.create_execution(parse_workflow(WORKFLOW), {"feature": "login"})

    result = engine.execute(execution, workflow_file, model="auto", working_dir=tmp_path)

    assert result.status is WorkflowStatus.COMPLETED
    assert result.succeeded
    assert result.executed_steps == 3
    assert executor.prompts() == [
        "Plan login in python, friendly",
        "Implement using: the plan",
        "Review",
    ]
    assert executor.argvs[1][:3] == ["claude", "-r", "abc"]
    assert "--dangerously-skip-permissions" in executor.argvs[1]
    assert "--output-format" in executor.argvs[0]
    assert executor.calls[2][1] == tmp_path / "sub"
    assert result.outputs["plan"].session_id == "abc"
    assert result.outputs["code"].result == "code"

    log = job_log.load(job_log.job_log_path(workflow_file))
    assert log.status is JobStatus.COMPLETED
    assert log.last_completed_step == 2
    assert [record.session_id for record in log.steps] == ["abc", "def", None]


def test_failed_step_fails_the_workflow(engine, executor, workflow_file: Path, tmp_path: Path):
    executor.queue(claude_json("plan"), fail("model exploded"))
    execution = engine.create_execution(parse_workflow(WORKFLOW), {"feature": "login"})

    result = engine.execute(execution, workflow_file, model="auto", working_dir=tmp_path)

    assert result.status is WorkflowStatus.FAILED
    assert result.error == "model exploded"
    assert [step.status for step in result.steps] == [StepStatus.COMPLETED, StepStatus.ERROR, StepStatus.SKIPPED]
    log = job_log.load(job_log.job_log_path(workflow_file))
    assert log.status is JobStatus.FAILED
    assert log.steps[1].error == "model exploded"
    assert log.steps[2].status is JobStepStatus.SKIPPED


def test_execute_resumes_after_last_completed_step(engine, executor, workflow_file: Path, tmp_path: Path):
    log = job_log.create_log("Feature", workflow_file, total_steps=3)
    job_log.add_step(
        log,
        JobLogStep(step_index=0, step_id="plan", status=JobStepStatus.COMPLETED, output="saved plan", session_id="s1"),
    )
    job_log.save(log, job_log.job_log_path(workflow_file))
    execution = engine.create_execution(parse_workflow(WORKFLOW), {"feature": "login"})

    result = engine.execute(execution, workflow_file, model="auto", working_dir=tmp_path)

    assert executor.prompts() == ["Implement using: saved plan", "Review"]
    assert executor.argvs[0][:3] == ["claude", "-r", "s1"]
    assert result.status is WorkflowStatus.COMPLETED
    assert result.steps[0].results == "saved plan"
    resumed = job_log.load(job_log.job_log_path(workflow_file))
    assert resumed.execution_id == log.execution_id
    assert resumed.status is JobStatus.COMPLETED


def test_fresh_run_ignores_job_log(engine, executor, workflow_file: Path, tmp_path: Path):
    log = job_log.create_log("Feature", workflow_file, total_steps=3)
    job_log.add_step(log, JobLogStep(step_index=0, step_id="plan", status=JobStepStatus.COMPLETED))
    job_log.save(log, job_log.job_log_path(workflow_file))
    execution = engine.create_execution(parse_workflow(WORKFLOW), {"feature": "login"})

    engine.execute(execution, workflow_file, model="auto", working_dir=tmp_path, resume=False)

    assert len(executor.prompts()) == 3
    assert job_log.load(job_log.job_log_path(workflow_file)).execution_id != log.execution_id


def test_finished_log_starts_a_new_run(engine, executor, workflow_file: Path, tmp_path: Path):
    first = engine.create_execution(parse_workflow(WORKFLOW), {"feature": "login"})
    engine.execute(first, workflow_file, model="auto", working_dir=tmp_path)
    executor.calls.clear()

    second = engine.create_execution(parse_workflow(WORKFLOW), {"feature": "login"})
    result = engine.execute(second, workflow_file, model="auto", working_dir=tmp_path)

    assert len(executor.prompts()) == 3
    assert result.status is WorkflowStatus.COMPLETED


def test_rate_limit_pause_is_logged_and_resumed(engine, executor, scheduler, workflow_file: Path, tmp_path: Path):
    executor.queue(claude_json("plan", session_id="abc"), fail("Claude AI usage limit reached|1700000000"))
    execution = engine.create_execution(parse_workflow(WORKFLOW), {"feature": "login"})

    result = engine.execute(execution, workflow_file, model="auto", working_dir=tmp_path)

    assert result.status is WorkflowStatus.RUNNING
    log_path = job_log.job_log_path(workflow_file)
    paused_log = job_log.load(log_path)
    assert paused_log.steps[1].status is JobStepStatus.PAUSED
    assert job_log.resume_step_index(paused_log) == 1

    (pipeline_id,) = scheduler.pending()
    scheduler.fire(pipeline_id)

    assert execution.status is WorkflowStatus.COMPLETED
    assert job_log.load(log_path).status is JobStatus.COMPLETED
    assert executor.argvs[2][:3] == ["claude", "-r", "abc"]

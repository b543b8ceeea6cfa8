import itertools
import json
import re
from datetime import datetime
from pathlib import Path

import pytest

from claude_pipeline import job_log
from claude_pipeline.exceptions import JobLogError
from claude_pipeline.job_log import JobLogStep, JobStatus, JobStepStatus


def record(index: int, status: JobStepStatus, **extra) -> JobLogStep:
    return JobLogStep(step_index=index, step_id=f"step-{index}", status=status, **extra)


def test_log_path_sits_next_to_workflow(tmp_path: Path):
    assert job_log.job_log_path(tmp_path / "claude-build.yml") == tmp_path / "claude-build.job.json"
    assert job_log.job_log_path(tmp_path / "claude-build.yaml") == tmp_path / "claude-build.job.json"


def test_execution_ids_are_timestamped_and_distinct():
    first = job_log.generate_execution_id()
    second = job_log.generate_execution_id()

    assert re.fullmatch(r"\d{8}T\d{9}-[0-9a-f]{6}", first)
    assert first != second


def test_execution_ids_differ_across_processes_started_together(monkeypatch):
    now = datetime(2024, 5, 1, 12, 0, 0)
    monkeypatch.setattr(job_log, "_counter", itertools.count())
    first = job_log.generate_execution_id(now)
    monkeypatch.setattr(job_log, "_counter", itertools.count())
    second = job_log.generate_execution_id(now)

    assert first.startswith("20240501T120000000-")
    assert second.startswith("20240501T120000000-")
    assert first != second


def test_new_log_starts_with_nothing_completed(tmp_path: Path):
    log = job_log.create_log("Build", tmp_path / "claude-build.yml", total_steps=3)

    assert log.status is JobStatus.RUNNING
    assert log.last_completed_step == -1
    assert job_log.resume_step_index(log) == 0


def test_resume_index_follows_last_completed_step(tmp_path: Path):
    log = job_log.create_log("Build", tmp_path / "w.yml", total_steps=3)

    job_log.add_step(log, record(0, JobStepStatus.COMPLETED, output="ok"))

    assert log.last_completed_step == 0
    assert job_log.resume_step_index(log) == 1
    assert log.status is JobStatus.RUNNING


def test_recording_an_index_again_replaces_it(tmp_path: Path):
    log = job_log.create_log("Build", tmp_path / "w.yml", total_steps=2)

    job_log.add_step(log, record(1, JobStepStatus.PAUSED))
    job_log.add_step(log, record(0, JobStepStatus.COMPLETED))
    job_log.add_step(log, record(1, JobStepStatus.COMPLETED))

    assert [(item.step_index, item.status) for item in log.steps] == [
        (0, JobStepStatus.COMPLETED),
        (1, JobStepStatus.COMPLETED),
    ]
    assert log.status is JobStatus.COMPLETED
    assert log.last_completed_step == 1


def test_skipped_steps_count_towards_completion(tmp_path: Path):
    log = job_log.create_log("Build", tmp_path / "w.yml", total_steps=2)

    job_log.add_step(log, record(0, JobStepStatus.COMPLETED))
    job_log.add_step(log, record(1, JobStepStatus.SKIPPED))

    assert log.status is JobStatus.COMPLETED


def test_paused_record_keeps_log_running(tmp_path: Path):
    log = job_log.create_log("Build", tmp_path / "w.yml", total_steps=2)

    job_log.add_step(log, record(0, JobStepStatus.COMPLETED))
    job_log.add_step(log, record(1, JobStepStatus.PAUSED))

    assert log.status is JobStatus.RUNNING


def test_any_failure_marks_log_failed(tmp_path: Path):
    log = job_log.create_log("Build", tmp_path / "w.yml", total_steps=3)

    job_log.add_step(log, record(0, JobStepStatus.FAILED, error="bad"))
    job_log.add_step(log, record(1, JobStepStatus.COMPLETED))

    assert log.status is JobStatus.FAILED
    assert log.last_completed_step == 1


def test_saved_log_uses_camel_case_keys(tmp_path: Path):
    workflow = tmp_path / "claude-build.yml"
    path = job_log.job_log_path(workflow)
    log = job_log.create_log("Build", workflow, total_steps=1)
    job_log.add_step(log, record(0, JobStepStatus.COMPLETED, session_id="abc", duration_ms=12))

    job_log.save(log, path)

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["workflowName"] == "Build"
    assert payload["lastCompletedStep"] == 0
    assert payload["steps"][0]["sessionId"] == "abc"
    assert payload["steps"][0]["durationMs"] == 12

    loaded = job_log.load(path)
    assert loaded.execution_id == log.execution_id
    assert loaded.steps[0].session_id == "abc"
    assert job_log.exists(workflow)


def test_missing_log_loads_as_none(tmp_path: Path):
    assert job_log.load(tmp_path / "absent.job.json") is None


def test_corrupt_log_raises(tmp_path: Path):
    path = tmp_path / "w.job.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(JobLogError, match="Failed to load job log"):
        job_log.load(path)


def test_wrong_shape_raises(tmp_path: Path):
    path = tmp_path / "w.job.json"
    path.write_text(json.dumps({"executionId": "x"}), encoding="utf-8")

    with pytest.raises(JobLogError, match="Invalid job log format"):
        job_log.load(path)


def test_remove_tolerates_missing_file(tmp_path: Path):
    workflow = tmp_path / "claude-build.yml"
    assert job_log.remove(workflow) is False

    job_log.save(job_log.create_log("Build", workflow, total_steps=1), job_log.job_log_path(workflow))
    assert job_log.remove(workflow) is True
    assert not job_log.exists(workflow)


def test_remove_reports_other_errors(tmp_path: Path):
    workflow = tmp_path / "claude-build.yml"
    job_log.job_log_path(workflow).mkdir()

    with pytest.raises(JobLogError):
        job_log.remove(workflow)

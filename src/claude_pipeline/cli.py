"""Command line entry point: ``claude-pipeline``."""
from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

import click
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from . import __version__, job_log
from .commands import format_command_preview
from .config import Settings, load_settings
from .exceptions import ClaudePipelineError
from .executor import ProcessExecutor
from .logging_config import configure_logging
from .pipeline import CallbackObserver, PipelineRunner
from .schemas import Step, StepStatus
from .workflow import WorkflowEngine, create_sample_workflow, list_workflows, load_workflow, save_workflow

console = Console()

DEFAULT_WORKFLOW_DIR = Path(".github/workflows")
DETAIL_WIDTH = 80

_STATUS_STYLE = {
    StepStatus.COMPLETED: "green",
    StepStatus.ERROR: "red",
    StepStatus.SKIPPED: "yellow",
    StepStatus.PAUSED: "magenta",
    StepStatus.RUNNING: "cyan",
    StepStatus.PENDING: "dim",
}


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, message="claude-pipeline %(version)s")
def main() -> None:
    """Run Claude CLI pipelines and GitHub-Actions-style workflows."""


def _parse_inputs(ctx: click.Context, param: click.Parameter, values: Sequence[str]) -> Dict[str, str]:
    inputs: Dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", ctx=ctx, param=param)
        inputs[key.strip()] = value
    return inputs


@main.command()
@click.argument("workflow_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-i", "--input", "inputs", multiple=True, callback=_parse_inputs, help="Workflow input as KEY=VALUE.")
@click.option("--model", type=str, default=None, help="Model for steps that do not set one.")
@click.option("--working-dir", type=click.Path(file_okay=False, path_type=Path), default=None)
@click.option("--fresh", is_flag=True, default=False, help="Ignore any job log and start from the first step.")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None)
@click.option("--verbose", is_flag=True, default=False, help="Increase logging verbosity.")
def run(
    workflow_path: Path,
    inputs: Dict[str, str],
    model: Optional[str],
    working_dir: Optional[Path],
    fresh: bool,
    config_path: Optional[Path],
    verbose: bool,
) -> None:
    """Execute a workflow file, resuming from its job log when possible."""

    configure_logging(verbose=verbose)
    with _errors_as_click():
        settings = load_settings(config_path, default_model=model)
        directory = settings.resolve_working_directory(working_dir)
        workflow = load_workflow(workflow_path)
        runner = _build_runner(settings)
        engine = WorkflowEngine(runner)
        execution = engine.create_execution(workflow, inputs)

        console.print(f"[bold]{workflow.name}[/bold] ({workflow_path})")
        with _cancel_on_interrupt(runner):
            result = engine.execute(
                execution,
                workflow_path=workflow_path,
                model=settings.default_model,
                working_dir=directory,
                options=settings.options,
                observer=_progress_observer(),
                resume=not fresh,
            )

    _print_steps(result.steps, title=f"Workflow: {result.workflow_name}")
    console.print(f"Status: {result.status.value} ({result.executed_steps} executed, {result.duration_seconds:.1f}s)")
    if result.error:
        console.print(f"[red]Error:[/red] {result.error}")
    if not result.succeeded:
        sys.exit(1)


@main.command()
@click.argument("steps_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--model", type=str, default=None)
@click.option("--working-dir", type=click.Path(file_okay=False, path_type=Path), default=None)
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None)
@click.option("--verbose", is_flag=True, default=False)
def pipeline(
    steps_file: Path,
    model: Optional[str],
    working_dir: Optional[Path],
    config_path: Optional[Path],
    verbose: bool,
) -> None:
    """Run a plain YAML or JSON list of steps."""

    configure_logging(verbose=verbose)
    with _errors_as_click():
        settings = load_settings(config_path, default_model=model)
        directory = settings.resolve_working_directory(working_dir)
        steps = _load_steps(steps_file)
        runner = _build_runner(settings)
        # A resumed run works on a snapshot, so keep whatever list the observer saw last.
        live: Dict[str, List[Step]] = {"steps": steps}
        errors: List[str] = []

        def record_steps(current: List[Step]) -> None:
            live["steps"] = current

        def record_error(error: str, current: List[Step]) -> None:
            errors.append(error)
            live["steps"] = current

        observer = _progress_observer(on_complete=record_steps, on_error=record_error, on_steps=record_steps)
        with _cancel_on_interrupt(runner):
            runner.run(steps, settings.default_model, directory, settings.options, observer)
            runner.wait_for_resumes()

    _print_steps(live["steps"], title=f"Pipeline: {steps_file.name}")
    if errors:
        console.print(f"[red]Error:[/red] {errors[-1]}")
        sys.exit(1)


@main.command()
@click.argument("workflow_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(workflow_path: Path) -> None:
    """Check that a workflow file parses and is well formed."""

    with _errors_as_click():
        workflow = load_workflow(workflow_path)
    count = len(workflow.claude_steps())
    console.print(f"[green]valid[/green] {workflow.name} ({count} Claude step{'s' if count != 1 else ''})")


@main.command("list")
@click.argument("directory", type=click.Path(file_okay=False, path_type=Path), default=DEFAULT_WORKFLOW_DIR)
def list_command(directory: Path) -> None:
    """List claude-*.yml workflows, newest first."""

    workflows = list_workflows(directory)
    if not workflows:
        console.print(f"No workflows found in {directory}")
        return
    table = Table(title=f"Workflows in {directory}")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Modified")
    table.add_column("Job log")
    for meta in workflows:
        table.add_row(
            meta.id,
            meta.name,
            meta.modified.strftime("%Y-%m-%d %H:%M"),
            "yes" if job_log.exists(meta.path) else "",
        )
    console.print(table)


@main.command()
@click.argument("workflow_path", type=click.Path(dir_okay=False, path_type=Path))
def status(workflow_path: Path) -> None:
    """Show the job log recorded for a workflow."""

    with _errors_as_click():
        log = job_log.load(job_log.job_log_path(workflow_path))
    if log is None:
        console.print(f"No job log for {workflow_path}")
        return

    table = Table(title=f"{log.workflow_name} ({log.execution_id})", show_lines=True)
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Duration")
    table.add_column("Details")
    for record in log.steps:
        duration = f"{record.duration_ms / 1000:.1f}s" if record.duration_ms is not None else ""
        table.add_row(
            str(record.step_index),
            record.step_name or record.step_id,
            record.status.value,
            duration,
            _shorten(record.error or record.output or ""),
        )
    console.print(table)
    console.print(f"Status: {log.status.value}")
    console.print(f"Completed through step {log.last_completed_step} of {log.total_steps}")
    if log.status is not job_log.JobStatus.COMPLETED:
        console.print(f"Next run resumes at step {job_log.resume_step_index(log)}")


@main.command()
@click.argument("workflow_path", type=click.Path(dir_okay=False, path_type=Path))
def clean(workflow_path: Path) -> None:
    """Delete a workflow's job log so the next run starts fresh."""

    with _errors_as_click():
        removed = job_log.remove(workflow_path)
    if removed:
        console.print(f"Removed {job_log.job_log_path(workflow_path)}")
    else:
        console.print(f"No job log for {workflow_path}")


@main.command()
@click.argument(
    "path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_WORKFLOW_DIR / "claude-development.yml",
)
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing file.")
def init(path: Path, force: bool) -> None:
    """Write a sample workflow to PATH."""

    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")
    save_workflow(path, create_sample_workflow())
    console.print(f"Created {path}")


@main.command()
@click.argument("prompt")
@click.option("--model", type=str, default=None)
@click.option("--working-dir", type=click.Path(file_okay=False, path_type=Path), default=None)
@click.option("--resume", "resume_session_id", type=str, default=None, help="Session id to continue.")
@click.option("--allow-all-tools", is_flag=True, default=False)
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None)
def preview(
    prompt: str,
    model: Optional[str],
    working_dir: Optional[Path],
    resume_session_id: Optional[str],
    allow_all_tools: bool,
    config_path: Optional[Path],
) -> None:
    """Print the shell command a step with PROMPT would run."""

    with _errors_as_click():
        settings = load_settings(config_path, default_model=model)
        directory = settings.resolve_working_directory(working_dir)
    update: Dict[str, object] = {"resume_session_id": resume_session_id}
    if allow_all_tools:
        update["allow_all_tools"] = True
    options = settings.options.model_copy(update=update)
    click.echo(
        format_command_preview(prompt, settings.default_model, directory, options, executable=settings.claude_executable)
    )


def _build_runner(settings: Settings) -> PipelineRunner:
    executor = ProcessExecutor(logs_dir=settings.logs_dir)
    return PipelineRunner(executor, executable=settings.claude_executable)


def _load_steps(path: Path) -> List[Step]:
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise click.ClickException(f"Could not parse {path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("steps")
    if not isinstance(data, list) or not data:
        raise click.ClickException(f"{path} must contain a non-empty list of steps")

    steps: List[Step] = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise click.ClickException(f"Step {index} in {path} must be a mapping")
        payload = {"id": f"step-{index}", **item}
        try:
            steps.append(Step.model_validate(payload))
        except ValidationError as exc:
            raise click.ClickException(f"Invalid step {index} in {path}: {exc}") from exc
    return steps


def _progress_observer(on_complete=None, on_error=None, on_steps=None) -> CallbackObserver:
    def on_progress(steps: List[Step], index: int) -> None:
        if on_steps is not None:
            on_steps(steps)
        step = steps[index]
        style = _STATUS_STYLE.get(step.status, "")
        detail = step.skip_reason if step.status is StepStatus.SKIPPED else ""
        if step.status is StepStatus.PAUSED:
            detail = step.results or ""
        suffix = f" - {detail}" if detail else ""
        console.print(f"[{style}]{step.status.value:>9}[/{style}] {step.display_name}{suffix}")

    return CallbackObserver(on_progress=on_progress, on_complete=on_complete, on_error=on_error)


def _print_steps(steps: Sequence[Step], title: str) -> None:
    table = Table(title=title, show_lines=True)
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Details")
    for step in steps:
        style = _STATUS_STYLE.get(step.status, "")
        details = step.skip_reason if step.status is StepStatus.SKIPPED else step.results
        table.add_row(step.display_name, f"[{style}]{step.status.value}[/{style}]", _shorten(details or ""))
    console.print(table)


def _shorten(text: str, width: int = DETAIL_WIDTH) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


@contextmanager
def _errors_as_click() -> Iterator[None]:
    try:
        yield
    except ClaudePipelineError as exc:
        raise click.ClickException(str(exc)) from exc


@contextmanager
def _cancel_on_interrupt(runner: PipelineRunner) -> Iterator[None]:
    try:
        yield
    except KeyboardInterrupt:
        runner.cancel()
        for paused in runner.list_paused_executions():
            runner.discard_paused_execution(paused.pipeline_id)
        console.print("[yellow]Cancelled[/yellow]")
        sys.exit(130)


if __name__ == "__main__":  # pragma: no cover
    main()

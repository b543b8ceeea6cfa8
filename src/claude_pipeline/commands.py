"""Translate a step into a Claude CLI invocation and read its output back."""
from __future__ import annotations

import json
import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .schemas import DEFAULT_MAX_TURNS, OutputFormat, TaskOptions

logger = logging.getLogger(__name__)

AUTO_MODEL = "auto"


@dataclass
class TaskOutput:
    text: str
    session_id: Optional[str] = None


def build_task_command(
    prompt: str,
    model: str,
    options: TaskOptions,
    executable: str = "claude",
) -> List[str]:
    """
    Return the argv list for one Claude CLI call.

    Arguments are passed to the process without a shell, so no quoting is
    applied here; see :func:`format_command_preview` for a copy-pasteable form.
    """

    args: List[str] = [executable]
    fresh_session = not options.continue_conversation and not options.resume_session_id

    if options.continue_conversation:
        args.append("--continue")
    elif options.resume_session_id:
        args.extend(["-r", options.resume_session_id, "-p", prompt])
    else:
        args.extend(["-p", prompt])

    if model and model != AUTO_MODEL:
        args.extend(["--model", model])

    if options.output_format is not OutputFormat.TEXT:
        args.extend(["--output-format", options.output_format.value])

    if options.max_turns and options.max_turns != DEFAULT_MAX_TURNS:
        args.extend(["--max-turns", str(options.max_turns)])

    if options.verbose:
        args.append("--verbose")

    if fresh_session:
        if options.system_prompt:
            args.extend(["--system-prompt", options.system_prompt])
        if options.append_system_prompt:
            args.extend(["--append-system-prompt", options.append_system_prompt])

    if options.allow_all_tools:
        args.append("--dangerously-skip-permissions")
    else:
        if options.allowed_tools:
            args.extend(["--allowedTools", ",".join(options.allowed_tools)])
        if options.disallowed_tools:
            args.extend(["--disallowedTools", ",".join(options.disallowed_tools)])

    if options.mcp_config:
        args.extend(["--mcp-config", options.mcp_config])

    if options.permission_prompt_tool and fresh_session:
        args.extend(["--permission-prompt-tool", options.permission_prompt_tool])

    return args


def format_command_preview(
    prompt: str,
    model: str,
    working_dir: Path,
    options: TaskOptions,
    executable: str = "claude",
) -> str:
    args = build_task_command(prompt, model, options, executable=executable)
    return f"cd {shlex.quote(str(working_dir))} && {shlex.join(args)}"


def parse_task_result(output: str, output_format: OutputFormat) -> TaskOutput:
    """Pull the result text and session id out of CLI output."""

    if output_format is not OutputFormat.JSON:
        return TaskOutput(text=output)
    try:
        payload = json.loads(output.strip())
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse JSON output: %s", exc)
        return TaskOutput(text=output)
    if not isinstance(payload, dict):
        return TaskOutput(text=output)

    session_id = payload.get("session_id")
    result = payload.get("result")
    text = result if isinstance(result, str) and result else json.dumps(payload, indent=2)
    return TaskOutput(text=text, session_id=session_id if isinstance(session_id, str) and session_id else None)

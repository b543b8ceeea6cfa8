from __future__ import annotations

import logging
import shlex
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Protocol


LOGGER = logging.getLogger("claude_pipeline.executor")

COMMAND_NOT_FOUND = 127


@dataclass
class CommandResult:
    command: List[str]
    cwd: Path
    exit_code: int
    stdout: str
    stderr: str
    error: Optional[str] = None
    log_path: Optional[Path] = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and self.error is None

    @property
    def failure_text(self) -> str:
        """Everything the process said, for sentinel scanning on failure."""
        return "\n".join(part for part in (self.error, self.stderr, self.stdout) if part)


class CommandExecutor(Protocol):
    """What the runner needs from a process executor."""

    def execute(self, command: Iterable[str], cwd: Path) -> CommandResult: ...

    def terminate(self) -> bool: ...


class ProcessExecutor:
    """
    Run one external command at a time and capture its output.

    Non-zero exits are reported through :class:`CommandResult`, never raised.
    Spawn failures (missing executable, permission denied) come back with
    exit code -1 and an error starting with ``Spawn error:``. When
    ``logs_dir`` is set a transcript of every command is written there.
    """

    def __init__(self, logs_dir: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> None:
        self._logs_dir = Path(logs_dir) if logs_dir else None
        if self._logs_dir:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        self._env = dict(env) if env is not None else None
        self._process: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()

    @property
    def logs_dir(self) -> Optional[Path]:
        return self._logs_dir

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._process is not None

    def execute(self, command: Iterable[str], cwd: Path) -> CommandResult:
        command_list = list(command)
        cwd = Path(cwd)
        if not command_list:
            return self._finish(CommandResult(command_list, cwd, -1, "", "", error="Spawn error: empty command"))

        LOGGER.debug("Running %s in %s", shlex.join(command_list), cwd)
        try:
            process = subprocess.Popen(
                command_list,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=self._env,
            )
        except OSError as exc:
            LOGGER.warning("Could not start %s: %s", command_list[0], exc)
            return self._finish(CommandResult(command_list, cwd, -1, "", "", error=f"Spawn error: {exc}"))

        with self._lock:
            self._process = process
        try:
            stdout, stderr = process.communicate()
        finally:
            with self._lock:
                self._process = None

        exit_code = process.returncode
        result = CommandResult(
            command=command_list,
            cwd=cwd,
            exit_code=exit_code,
            stdout=stdout or "",
            stderr=stderr or "",
            error=_failure_message(command_list[0], exit_code, stdout or "", stderr or ""),
        )
        return self._finish(result)

    def terminate(self) -> bool:
        """Send SIGTERM to the in-flight process, if any."""
        with self._lock:
            process = self._process
        if process is None:
            return False
        LOGGER.info("Terminating running process %s", process.pid)
        process.terminate()
        return True

    def _finish(self, result: CommandResult) -> CommandResult:
        logs_dir = self._logs_dir
        if logs_dir is None:
            return result
        log_path = _create_log_path(logs_dir, result.command)
        header = f"$ {shlex.join(result.command)}\n(exit code {result.exit_code})\n"
        if result.error:
            header += f"[error] {result.error}\n"
        log_path.write_text(
            f"{header}\nSTDOUT:\n{result.stdout}\n\nSTDERR:\n{result.stderr}",
            encoding="utf-8",
        )
        result.log_path = log_path
        return result


def _create_log_path(logs_dir: Path, command: List[str]) -> Path:
    name = Path(command[0]).name if command else "empty"
    safe = name.replace(" ", "_") or "command"
    index = len(list(logs_dir.glob("*.log"))) + 1
    return logs_dir / f"{index:03d}-{safe}.log"


def _failure_message(executable: str, exit_code: int, stdout: str, stderr: str) -> Optional[str]:
    if exit_code == 0:
        return None
    if exit_code == COMMAND_NOT_FOUND:
        return f"{executable} not found in PATH. Please install it or fix your PATH."
    detail = stderr.strip() or stdout.strip()
    if detail:
        return detail
    if exit_code < 0:
        return f"Command terminated by signal {-exit_code}"
    return f"Command failed with exit code {exit_code}"

"""Decide whether a step runs, from its condition and optional check command."""
from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .executor import CommandExecutor
from .schemas import StepCondition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConditionResult:
    should_run: bool
    reason: Optional[str] = None


def evaluate_condition(
    check: Optional[str],
    condition: Optional[StepCondition],
    previous_success: bool,
    working_dir: Path,
    executor: CommandExecutor,
) -> ConditionResult:
    """
    Gate a step on the previous step's outcome and, if set, a check command.

    A step without a condition always runs and its check is not consulted.
    The check only runs once the condition itself is satisfied; a non-zero
    exit skips the step.
    """

    if condition is None:
        return ConditionResult(should_run=True)

    condition = StepCondition(condition)
    if condition is StepCondition.ON_SUCCESS:
        condition_met = previous_success
    elif condition is StepCondition.ON_FAILURE:
        condition_met = not previous_success
    else:
        condition_met = True

    if not condition_met:
        outcome = "succeeded" if previous_success else "failed"
        return ConditionResult(
            should_run=False,
            reason=f"Condition '{condition.value}' not met (previous step {outcome})",
        )

    if not check:
        return ConditionResult(should_run=True)

    try:
        argv = shlex.split(check)
    except ValueError as exc:
        return ConditionResult(should_run=False, reason=f"Check command execution failed: {exc}")

    result = executor.execute(argv, working_dir)
    if result.success:
        return ConditionResult(should_run=True)
    detail = result.error or "Command returned non-zero exit code"
    logger.debug("Check %r failed in %s: %s", check, working_dir, detail)
    return ConditionResult(should_run=False, reason=f"Check command failed: {detail}")

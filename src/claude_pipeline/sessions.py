"""Session chaining between steps."""
from __future__ import annotations

import re
from typing import Optional, Sequence

from .schemas import Step, StepStatus

SESSION_REFERENCE = re.compile(r"^\s*\$\{\{\s*steps\.([\w-]+)\.outputs\.session_id\s*\}\}\s*$")
BARE_STEP_ID = re.compile(r"^[\w-]+$")


def session_reference(value: Optional[str]) -> Optional[str]:
    """
    Return the step id a ``resume_session`` value points at.

    Accepts either ``${{ steps.<id>.outputs.session_id }}`` or a bare step id.
    """
    if not value:
        return None
    match = SESSION_REFERENCE.match(value)
    if match:
        return match.group(1)
    if BARE_STEP_ID.match(value.strip()):
        return value.strip()
    return None


def resolve_resume_session(step: Step, steps: Sequence[Step]) -> Optional[str]:
    """
    Return the session id ``step`` should continue, or ``None`` for a fresh session.

    Only a completed source step that produced a session id qualifies.
    """
    if not step.resume_from_step_id:
        return None
    for candidate in steps:
        if candidate.id != step.resume_from_step_id:
            continue
        if candidate.status is StepStatus.COMPLETED and candidate.session_id:
            return candidate.session_id
        return None
    return None

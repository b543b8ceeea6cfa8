"""``${{ ... }}`` substitution for workflow step parameters."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .models import Job, StepOutput, Workflow

TOKEN = re.compile(r"\$\{\{\s*([\w.-]+)\s*\}\}")


@dataclass
class ResolutionContext:
    inputs: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    steps: Mapping[str, StepOutput] = field(default_factory=dict)

    def lookup(self, path: str) -> Optional[str]:
        parts = path.split(".")
        if len(parts) == 2 and parts[0] == "inputs":
            value: Any = self.inputs.get(parts[1])
        elif len(parts) == 2 and parts[0] == "env":
            value = self.env.get(parts[1])
        elif len(parts) == 4 and parts[0] == "steps" and parts[2] == "outputs":
            output = self.steps.get(parts[1])
            value = getattr(output, parts[3], None) if output is not None else None
        else:
            value = None
        return None if value is None else str(value)


def resolve_variables(template: str, context: ResolutionContext) -> str:
    """Substitute every token that has a value; leave the rest untouched."""

    def replace(match: "re.Match[str]") -> str:
        value = context.lookup(match.group(1))
        return match.group(0) if value is None else value

    return TOKEN.sub(replace, template)


def resolve_step_fields(values: Mapping[str, Any], context: ResolutionContext) -> Dict[str, Any]:
    return {
        key: resolve_variables(value, context) if isinstance(value, str) else value
        for key, value in values.items()
    }


def merged_env(workflow: Workflow, job: Optional[Job]) -> Dict[str, str]:
    env = dict(workflow.env)
    if job is not None:
        env.update(job.env)
    return env

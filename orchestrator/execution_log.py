"""
Execution Log - Append-only record of a session

Written by the orchestrator only. Holds every model thought, tool call,
input, outcome and the final answer (or truncation) of one session.
"""

import json
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from agents.shared.schemas import ExecutionStep

logger = logging.getLogger(__name__)

StepListener = Callable[[ExecutionStep], None]


def _to_json(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


class ExecutionLog:
    """Append-only list of ExecutionStep records"""

    def __init__(self, session_id: str, listener: Optional[StepListener] = None):
        self.session_id = session_id
        self._steps: List[ExecutionStep] = []
        self._listener = listener

    def append(self, step: ExecutionStep) -> None:
        """Append a step. Steps are immutable once recorded."""
        self._steps.append(step)
        if self._listener is not None:
            try:
                self._listener(step)
            except Exception as e:
                logger.warning(f"Execution log listener failed: {e}")

    @property
    def steps(self) -> Tuple[ExecutionStep, ...]:
        return tuple(self._steps)

    def tool_calls(self) -> List[ExecutionStep]:
        return [step for step in self._steps if step.action == "tool_call"]

    def failures(self) -> List[ExecutionStep]:
        return [
            step for step in self._steps
            if step.outcome is not None and not step.outcome.success
        ]

    def __iter__(self) -> Iterator[ExecutionStep]:
        return iter(tuple(self._steps))

    def __len__(self) -> int:
        return len(self._steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "steps": [step.model_dump(mode="json") for step in self._steps]
        }

    def to_markdown(self) -> str:
        """Render the log for display"""
        lines = ["# Execution Log", ""]
        last_thought = None

        for step in self._steps:
            if step.action == "tool_call":
                if step.rationale and step.rationale != last_thought:
                    lines += ["## Thinking", step.rationale, ""]
                    last_thought = step.rationale
                lines.append(f"## Executing Tool: {step.tool_name}")
                lines += ["Input: ```json", _to_json(step.tool_input), "```", ""]
                if step.outcome and step.outcome.success:
                    lines += ["Result: ```json", _to_json(step.outcome.data), "```", ""]
                elif step.outcome:
                    lines += [f"Error: {step.outcome.error}", ""]
            elif step.action == "final_answer":
                lines += ["## Summary", step.rationale, ""]
            elif step.action in ("truncated", "model_error"):
                error = step.outcome.error if step.outcome else ""
                lines += ["## Error", error or "", ""]

        return "\n".join(lines).rstrip() + "\n"

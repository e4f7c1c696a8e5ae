"""
Orchestrator Errors - Error taxonomy for the agent orchestration core

Every error raised while dispatching a tool call is converted into a
structured failure payload and fed back to the model. Only
ModelServiceError escapes the loop.
"""

from typing import Any, Dict, List, Optional


class AgentError(Exception):
    """Base class for all orchestration errors"""

    error_type = "AgentError"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        """Machine-readable error payload for tool-result messages"""
        payload = {"error": self.message, "error_type": self.error_type}
        payload.update(self.details)
        return payload


class DuplicateToolName(AgentError):
    error_type = "DuplicateToolName"

    def __init__(self, tool_name: str):
        super().__init__(f"Tool '{tool_name}' is already registered", tool_name=tool_name)
        self.tool_name = tool_name


class ToolNotFound(AgentError):
    error_type = "ToolNotFound"

    def __init__(self, tool_name: str):
        super().__init__(f"Tool '{tool_name}' not found", tool_name=tool_name)
        self.tool_name = tool_name


class InvalidToolInput(AgentError):
    """Raised when a tool call payload cannot be parsed or fails schema validation"""

    error_type = "InvalidToolInput"

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        validation_errors: Optional[List[Dict[str, Any]]] = None
    ):
        details: Dict[str, Any] = {}
        if tool_name:
            details["tool_name"] = tool_name
        if validation_errors:
            details["validation_errors"] = validation_errors
        super().__init__(message, **details)
        self.tool_name = tool_name
        self.validation_errors = validation_errors or []


class ToolExecutionError(AgentError):
    """A tool's own failure. The message is opaque to the orchestrator."""

    error_type = "ToolExecutionError"


class AsyncBridgeError(ToolExecutionError):
    error_type = "AsyncBridgeError"


class AsyncTimeout(AsyncBridgeError):
    error_type = "AsyncTimeout"

    def __init__(self, correlation_key: str, attempts: int, poll_interval: float):
        super().__init__(
            f"Timed out waiting for sandbox reply '{correlation_key}' "
            f"after {attempts} attempts ({attempts * poll_interval:.1f}s)",
            correlation_key=correlation_key,
            attempts=attempts
        )
        self.correlation_key = correlation_key


class SandboxUnavailable(AsyncBridgeError):
    error_type = "SandboxUnavailable"

    def __init__(self, target: str, reason: str = "is not open"):
        super().__init__(f"Sandbox '{target}' {reason}", target=target)
        self.target = target


class RequestAbandoned(AsyncBridgeError):
    error_type = "RequestAbandoned"

    def __init__(self, correlation_key: str):
        super().__init__(
            f"Sandbox request '{correlation_key}' was abandoned",
            correlation_key=correlation_key
        )
        self.correlation_key = correlation_key


class ModelServiceError(AgentError):
    """
    The language-model call itself failed.

    Session-fatal. The execution log of the aborted session is attached
    so callers can still inspect what happened.
    """

    error_type = "ModelServiceError"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        self.execution_log = None


class IterationBudgetExhausted(AgentError):
    """Terminal state marker recorded when the turn budget runs out. Never raised out of the loop."""

    error_type = "IterationBudgetExhausted"

    def __init__(self, max_iterations: int, reason: str = "budget"):
        super().__init__(
            "Execution exceeded maximum number of steps.",
            max_iterations=max_iterations,
            reason=reason
        )
        self.max_iterations = max_iterations

"""
Code Agent - Shared Schemas

Pydantic models for the transcript, tool calls, execution steps,
sandbox messages and progress updates exchanged inside a session.
"""

from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime, UTC
from typing import Optional, Dict, Any, List, Literal
import uuid


class AgentBaseMessage(BaseModel):
    """Base class for timestamped messages"""
    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True
    )

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_json(self) -> str:
        """Serialize to JSON string"""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, json_str: str):
        """Deserialize from JSON string"""
        return cls.model_validate_json(json_str)


# ============================================
# Tool Catalog
# ============================================

class ToolSchema(BaseModel):
    """Catalog entry describing a registered tool to the model"""
    name: str
    description: str
    input_schema: Dict[str, Any]

    def to_openai_tool(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema
            }
        }


# ============================================
# Model Turns
# ============================================

class ToolCall(BaseModel):
    """A single tool invocation requested by the model"""
    id: str = Field(default_factory=lambda: f"call-{uuid.uuid4()}")
    name: str
    arguments: str = "{}"  # serialized input payload, parsed at dispatch time

    def to_message(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments}
        }


class ModelTurn(BaseModel):
    """Structured output of one model response"""
    rationale: str = ""
    tool_calls: List[ToolCall] = []

    @property
    def is_final(self) -> bool:
        return not self.tool_calls

    def to_message(self) -> Dict[str, Any]:
        """Render as an assistant transcript message"""
        message: Dict[str, Any] = {"role": "assistant", "content": self.rationale or None}
        if self.tool_calls:
            message["tool_calls"] = [call.to_message() for call in self.tool_calls]
        return message


# ============================================
# Execution Log
# ============================================

class StepOutcome(BaseModel):
    """Result of a tool call: success with data, or failure with an error"""
    model_config = ConfigDict(frozen=True)

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def ok(cls, data: Any) -> "StepOutcome":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, payload: Dict[str, Any]) -> "StepOutcome":
        return cls(
            success=False,
            data=payload,
            error=payload.get("error"),
            error_type=payload.get("error_type")
        )


class ExecutionStep(BaseModel):
    """One immutable record in the execution log"""
    model_config = ConfigDict(frozen=True)

    turn: int
    action: Literal["tool_call", "final_answer", "truncated", "model_error"]
    rationale: str = ""
    tool_name: Optional[str] = None
    call_id: Optional[str] = None
    tool_input: Optional[Any] = None
    outcome: Optional[StepOutcome] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


# ============================================
# Sandbox Messages
# ============================================

class SandboxCommand(AgentBaseMessage):
    """Outbound command to a sandboxed surface"""
    kind: str
    correlation_key: Optional[str] = None
    params: Dict[str, Any] = {}


class SandboxMessage(AgentBaseMessage):
    """Inbound message from a sandboxed surface"""
    correlation_key: str
    result: Any = None
    error: Optional[str] = None


# ============================================
# Progress Updates (for WebSocket)
# ============================================

class ProgressUpdate(AgentBaseMessage):
    """Real-time progress update"""
    message_type: Literal["progress_update"] = "progress_update"
    session_id: str
    event_type: Literal[
        "started",
        "reasoning",
        "tool_called",
        "tool_completed",
        "error",
        "completed"
    ]
    data: Dict[str, Any]
    message: str


# ============================================
# Run Results
# ============================================

class AgentRunResult(AgentBaseMessage):
    """Final result of one agent session"""
    session_id: str
    status: Literal["completed", "max_iterations_exceeded"]
    final_text: str
    iterations: int
    steps: List[ExecutionStep]
    transcript: List[Dict[str, Any]] = []
    execution_log_markdown: str = ""  # ExecutionLog.to_markdown() of the steps

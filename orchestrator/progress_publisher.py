"""
Progress Update Publisher

Publishes real-time progress updates during a session.
Updates are handed to an async sink (the API streams them over WebSocket).
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from agents.shared.schemas import ProgressUpdate

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressUpdate], Awaitable[None]]


class ProgressPublisher:
    """
    Publishes progress updates during orchestration.

    Event types: started, reasoning, tool_called, tool_completed, error, completed
    """

    def __init__(self, sink: ProgressSink):
        """
        Initialize progress publisher.

        Args:
            sink: Async callable receiving each ProgressUpdate
        """
        self.sink = sink

    async def _publish_update(
        self,
        session_id: str,
        event_type: str,
        message: str,
        data: Dict[str, Any]
    ) -> None:
        progress_update = ProgressUpdate(
            session_id=session_id,
            event_type=event_type,
            message=message,
            data=data
        )

        # a broken progress consumer must not break the session
        try:
            await self.sink(progress_update)
        except Exception as e:
            logger.warning(f"[PROGRESS] Failed to publish {event_type}: {e}")
            return

        logger.debug(f"[PROGRESS] {event_type}: {message}")

    async def publish_started(self, session_id: str, prompt: str) -> None:
        await self._publish_update(
            session_id=session_id,
            event_type="started",
            message=f"Session started: {prompt[:50]}",
            data={"prompt": prompt}
        )

    async def publish_reasoning(self, session_id: str, iteration: int, reasoning: str) -> None:
        await self._publish_update(
            session_id=session_id,
            event_type="reasoning",
            message=f"Iteration {iteration}: {reasoning[:100]}",
            data={"iteration": iteration, "reasoning": reasoning}
        )

    async def publish_tool_called(
        self,
        session_id: str,
        tool_name: str,
        call_id: str,
        tool_input: Optional[Any] = None
    ) -> None:
        await self._publish_update(
            session_id=session_id,
            event_type="tool_called",
            message=f"Calling {tool_name}",
            data={"tool": tool_name, "call_id": call_id, "input": tool_input}
        )

    async def publish_tool_completed(
        self,
        session_id: str,
        tool_name: str,
        call_id: str,
        success: bool,
        result: Optional[Any] = None
    ) -> None:
        """
        Publish tool completed event.

        Args:
            session_id: Session ID
            tool_name: Tool that ran
            call_id: Call identifier from the model
            success: Whether the call succeeded
            result: Result data or error payload
        """
        status = "success" if success else "error"
        await self._publish_update(
            session_id=session_id,
            event_type="tool_completed",
            message=f"{tool_name} completed with {status}",
            data={"tool": tool_name, "call_id": call_id, "status": status, "result": result}
        )

    async def publish_completed(
        self,
        session_id: str,
        status: str,
        summary: str,
        iterations: Optional[int] = None
    ) -> None:
        await self._publish_update(
            session_id=session_id,
            event_type="completed",
            message=f"Session {status}: {summary[:100]}",
            data={"status": status, "summary": summary, "iterations": iterations}
        )

    async def publish_error(
        self,
        session_id: str,
        error: str,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        await self._publish_update(
            session_id=session_id,
            event_type="error",
            message=f"Error: {error}",
            data={"error": error, "details": details or {}}
        )

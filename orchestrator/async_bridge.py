"""
Async Bridge - Request/response correlation for sandboxed tools

Tools whose real work runs inside a sandbox surface send a command and
then wait for the surface to post a reply carrying the same correlation
key. The wait is a bounded poll: a fixed number of attempts at a fixed
interval. The inbound handler also sets an event so a waiter wakes as
soon as its reply lands instead of at the next tick.
"""

import asyncio
import logging
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Dict, Optional

from agents.shared.schemas import SandboxCommand, SandboxMessage
from agents.tools.sandbox import SandboxSurface
from orchestrator.errors import (
    AsyncTimeout,
    SandboxUnavailable,
    RequestAbandoned,
    ToolExecutionError
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.1  # seconds
DEFAULT_MAX_ATTEMPTS = 30

# Session on whose behalf the current task sends requests
current_session: ContextVar[Optional[str]] = ContextVar("current_session", default=None)


@dataclass
class PendingAsyncRequest:
    """A request waiting for exactly one reply from a sandbox"""

    correlation_key: str
    target: str
    tool_name: Optional[str] = None
    session_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    has_value: bool = False
    value: Any = None
    error: Optional[str] = None
    abandoned: bool = False
    event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def fill(self, message: SandboxMessage) -> None:
        # last write wins
        self.value = message.result
        self.error = message.error
        self.has_value = True
        self.event.set()


class AsyncBridge:
    """
    Correlates outbound sandbox commands with inbound sandbox messages.

    Owns the table of open sandbox surfaces and the table of pending
    requests. Entries are removed by whichever of resolution, timeout or
    abandonment happens first; the others find the entry gone and no-op.
    """

    def __init__(
        self,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS
    ):
        """
        Initialize the bridge.

        Args:
            poll_interval: Seconds between slot checks
            max_attempts: Number of checks before AsyncTimeout
        """
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._sandboxes: Dict[str, SandboxSurface] = {}
        self._pending: Dict[str, PendingAsyncRequest] = {}

    # ------------------------------------------------------------------
    # Sandbox table
    # ------------------------------------------------------------------

    def attach(self, surface: SandboxSurface) -> None:
        """Make a sandbox surface reachable by its id"""
        self._sandboxes[surface.sandbox_id] = surface
        logger.info(f"[BRIDGE] Sandbox attached: {surface.sandbox_id}")

    def detach(self, sandbox_id: str) -> Optional[SandboxSurface]:
        """
        Forget a sandbox surface.

        Waiters targeting it fail with SandboxUnavailable on their next check.
        """
        surface = self._sandboxes.pop(sandbox_id, None)
        if surface is not None:
            logger.info(f"[BRIDGE] Sandbox detached: {sandbox_id}")
            for request in self._pending.values():
                if request.target == sandbox_id:
                    request.event.set()
        return surface

    def get_sandbox(self, sandbox_id: str) -> Optional[SandboxSurface]:
        return self._sandboxes.get(sandbox_id)

    def is_open(self, target: str) -> bool:
        surface = self._sandboxes.get(target)
        return surface is not None and surface.is_open

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    @staticmethod
    def new_correlation_key(prefix: str = "req") -> str:
        return f"{prefix}-{uuid.uuid4()}"

    def register_request(
        self,
        correlation_key: str,
        target: str,
        tool_name: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> PendingAsyncRequest:
        """
        Create the pending entry for a request before its command is sent.

        A reply that arrives before the waiter starts polling is kept.
        """
        request = PendingAsyncRequest(
            correlation_key=correlation_key,
            target=target,
            tool_name=tool_name,
            session_id=session_id
        )
        self._pending[correlation_key] = request
        logger.debug(f"[BRIDGE] Registered request {correlation_key} -> {target}")
        return request

    async def send(self, target: str, command: SandboxCommand) -> None:
        """
        Transmit a command to a sandbox. Returns immediately.

        Raises:
            SandboxUnavailable: If the target is not open
        """
        surface = self._sandboxes.get(target)
        if surface is None or not surface.is_open:
            raise SandboxUnavailable(target)

        try:
            await surface.post_message(command)
        except Exception as e:
            raise SandboxUnavailable(target, reason=f"rejected command: {e}") from e

        logger.debug(f"[BRIDGE] Sent {command.kind} to {target} (key: {command.correlation_key})")

    async def await_result(
        self,
        correlation_key: str,
        max_attempts: Optional[int] = None,
        poll_interval: Optional[float] = None
    ) -> Any:
        """
        Wait for the reply to a registered request.

        Args:
            correlation_key: Key of a request created by register_request()
            max_attempts: Number of checks (defaults to the bridge's)
            poll_interval: Seconds between checks (defaults to the bridge's)

        Returns:
            The reply's result payload

        Raises:
            AsyncTimeout: If no reply arrived within the attempt budget
            SandboxUnavailable: If the target is not open
            RequestAbandoned: If the request was abandoned while waiting
            ToolExecutionError: If the sandbox replied with an error
        """
        attempts = self.max_attempts if max_attempts is None else max_attempts
        interval = self.poll_interval if poll_interval is None else poll_interval

        request = self._pending.get(correlation_key)
        if request is None:
            raise RequestAbandoned(correlation_key)

        try:
            for _ in range(attempts):
                if self._check(request):
                    return self._resolve(request)
                request.event.clear()
                try:
                    await asyncio.wait_for(request.event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass

            # a reply landing during the last interval still counts
            if self._check(request):
                return self._resolve(request)

            logger.warning(f"[BRIDGE] Timed out waiting for {correlation_key}")
            raise AsyncTimeout(correlation_key, attempts, interval)
        finally:
            if self._pending.get(correlation_key) is request:
                del self._pending[correlation_key]

    def _check(self, request: PendingAsyncRequest) -> bool:
        """True when the slot holds a value. Raises if the request can no longer resolve."""
        if request.abandoned:
            raise RequestAbandoned(request.correlation_key)
        if request.has_value:
            return True
        if not self.is_open(request.target):
            raise SandboxUnavailable(request.target)
        return False

    def _resolve(self, request: PendingAsyncRequest) -> Any:
        self._pending.pop(request.correlation_key, None)
        logger.debug(f"[BRIDGE] Resolved {request.correlation_key}")
        if request.error is not None:
            raise ToolExecutionError(request.error, correlation_key=request.correlation_key)
        return request.value

    async def request(
        self,
        target: str,
        kind: str,
        params: Optional[Dict[str, Any]] = None,
        tool_name: Optional[str] = None,
        session_id: Optional[str] = None,
        max_attempts: Optional[int] = None,
        poll_interval: Optional[float] = None
    ) -> Any:
        """
        Send a command and wait for its reply.

        Presents the sandbox round trip as one blocking call with a
        bounded wait. Without an explicit session_id the request belongs
        to the session bound in current_session.
        """
        correlation_key = self.new_correlation_key(kind)
        self.register_request(
            correlation_key,
            target,
            tool_name=tool_name,
            session_id=session_id or current_session.get()
        )

        try:
            await self.send(
                target,
                SandboxCommand(kind=kind, correlation_key=correlation_key, params=params or {})
            )
        except Exception:
            self._pending.pop(correlation_key, None)
            raise

        return await self.await_result(correlation_key, max_attempts, poll_interval)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def handle_message(self, message: SandboxMessage) -> bool:
        """
        Deliver a sandbox reply to its waiter.

        Returns:
            True if a waiter received it, False if it was ignored
        """
        request = self._pending.get(message.correlation_key)
        if request is None or request.abandoned:
            logger.debug(f"[BRIDGE] Ignoring message for unknown key {message.correlation_key}")
            return False

        if request.has_value:
            logger.warning(f"[BRIDGE] Duplicate reply for {message.correlation_key}, overwriting")
        request.fill(message)
        return True

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def abandon(self, session_id: Optional[str] = None, target: Optional[str] = None) -> int:
        """
        Release pending requests and wake their waiters with RequestAbandoned.

        Args:
            session_id: Only abandon this session's requests
            target: Only abandon requests sent to this sandbox

        Returns:
            Number of requests abandoned
        """
        abandoned = 0
        for key, request in list(self._pending.items()):
            if session_id is not None and request.session_id != session_id:
                continue
            if target is not None and request.target != target:
                continue
            del self._pending[key]
            request.abandoned = True
            request.event.set()
            abandoned += 1

        if abandoned:
            logger.info(f"[BRIDGE] Abandoned {abandoned} pending request(s)")
        return abandoned

    def pending_count(self) -> int:
        return len(self._pending)

    async def close(self) -> None:
        """Abandon everything and close all sandbox surfaces"""
        self.abandon()
        for sandbox_id, surface in list(self._sandboxes.items()):
            try:
                await surface.close()
            except Exception as e:
                logger.error(f"[BRIDGE] Failed to close sandbox {sandbox_id}: {e}")
        self._sandboxes.clear()

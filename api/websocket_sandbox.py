"""
WebSocket Sandbox - A preview page reached through its WebSocket connection
"""

import logging

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

from agents.shared.schemas import SandboxCommand
from agents.tools.sandbox import SandboxSurface

logger = logging.getLogger(__name__)


class WebSocketSandbox(SandboxSurface):
    """Sends bridge commands to a connected preview page"""

    def __init__(self, sandbox_id: str, websocket: WebSocket):
        super().__init__(sandbox_id)
        self.websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def post_message(self, command: SandboxCommand) -> None:
        await self.websocket.send_json(command.model_dump(mode="json"))

    def mark_closed(self) -> None:
        self._closed = True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close()
        except RuntimeError as e:
            # already closed by the peer
            logger.debug(f"[SANDBOX] Close of {self.sandbox_id} ignored: {e}")

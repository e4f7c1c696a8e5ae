"""
Sandbox Surfaces - Out-of-process execution contexts for async tools

A sandbox surface (for example a preview page running in a browser) only
talks through messages: commands go out with post_message(), replies come
back later through AsyncBridge.handle_message().
"""

from abc import ABC, abstractmethod

from agents.shared.schemas import SandboxCommand


class SandboxSurface(ABC):
    """Outbound side of a sandboxed execution context"""

    def __init__(self, sandbox_id: str):
        self.sandbox_id = sandbox_id

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the surface can currently receive commands"""

    @abstractmethod
    async def post_message(self, command: SandboxCommand) -> None:
        """Transmit a command. Returns without waiting for a reply."""

    @abstractmethod
    async def close(self) -> None:
        """Dispose of the surface"""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.sandbox_id!r} open={self.is_open}>"

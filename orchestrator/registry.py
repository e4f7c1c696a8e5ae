"""
Tool Registry - In-memory tool registration and lookup

Maps tool names to tool instances for one session.
Mutations are serialized; lookups read an immutable snapshot.
"""

import logging
from typing import Dict, List, Optional, Any, Iterable
from threading import Lock

from agents.shared.schemas import ToolSchema
from agents.tools.base_tool import BaseTool, TOOL_NAME_PATTERN
from orchestrator.errors import DuplicateToolName, ToolNotFound

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Registry of tools available to the orchestrator.

    Keys are unique tool names. Re-registering a name is an error;
    use replace() to swap a tool deliberately.
    """

    def __init__(self, tools: Optional[Iterable[BaseTool]] = None):
        """Initialize registry, optionally registering an initial set of tools"""
        self._tools: Dict[str, BaseTool] = {}
        self._lock = Lock()

        for tool in tools or []:
            self.register(tool)

    @staticmethod
    def _check_name(tool: BaseTool) -> str:
        name = tool.name
        if not TOOL_NAME_PATTERN.match(name or ""):
            raise ValueError(
                f"Invalid tool name {name!r}: use 1-64 letters, digits, '_' or '-'"
            )
        return name

    def register(self, tool: BaseTool) -> None:
        """
        Register a tool.

        Args:
            tool: Tool instance

        Raises:
            DuplicateToolName: If a tool with the same name is registered
        """
        name = self._check_name(tool)
        with self._lock:
            if name in self._tools:
                raise DuplicateToolName(name)
            self._tools = {**self._tools, name: tool}

        logger.info(f"[REGISTRY] Tool registered: {name}")

    def replace(self, tool: BaseTool) -> Optional[BaseTool]:
        """
        Register a tool, replacing any tool with the same name.

        Returns:
            The replaced tool, or None. The caller owns its release.
        """
        name = self._check_name(tool)
        with self._lock:
            previous = self._tools.get(name)
            self._tools = {**self._tools, name: tool}

        logger.info(f"[REGISTRY] Tool {'replaced' if previous else 'registered'}: {name}")
        return previous

    def unregister(self, name: str) -> bool:
        """
        Remove a tool from the registry.

        Returns:
            True if the tool was removed, False if not found
        """
        with self._lock:
            if name not in self._tools:
                return False
            self._tools = {k: v for k, v in self._tools.items() if k != name}

        logger.info(f"[REGISTRY] Tool unregistered: {name}")
        return True

    def lookup(self, name: str) -> BaseTool:
        """
        Get a tool by name.

        Raises:
            ToolNotFound: If no tool has that name
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        return tool

    def names(self) -> List[str]:
        return sorted(self._tools)

    def list_all(self) -> List[ToolSchema]:
        """
        Describe every registered tool (name, description, schema).

        This is what the model is told it may invoke.
        """
        return [self._tools[name].describe() for name in sorted(self._tools)]

    def catalog(self) -> List[Dict[str, Any]]:
        """Registered tools rendered as model tool definitions"""
        return [schema.to_openai_tool() for schema in self.list_all()]

    async def release_all(self) -> None:
        """Release every tool. Failures are logged, never raised."""
        for name, tool in list(self._tools.items()):
            try:
                await tool.release()
                logger.debug(f"[REGISTRY] Released tool: {name}")
            except Exception as e:
                logger.error(f"[REGISTRY] Failed to release tool '{name}': {e}", exc_info=True)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

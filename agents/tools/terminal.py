"""
Terminal Tool - Run shell commands and capture their output
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Set, Union

from pydantic import BaseModel, Field

from agents.tools.base_tool import BaseTool
from orchestrator.errors import ToolExecutionError

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 5 * 1024 * 1024


class TerminalInput(BaseModel):
    command: str = Field(min_length=1, description="The command to execute")
    cwd: Optional[str] = Field(default=None, description="The working directory for the command")
    timeout: float = Field(default=60.0, gt=0, le=600, description="Seconds before the command is killed")


class TerminalTool(BaseTool):
    """Tool for executing terminal commands"""

    def __init__(self, workspace_root: Union[str, Path, None] = None):
        self.workspace_root = Path(workspace_root or Path.cwd()).resolve()
        self._running: Set[asyncio.subprocess.Process] = set()

    @property
    def name(self) -> str:
        return "terminal"

    @property
    def description(self) -> str:
        return "Execute commands in a terminal and capture their output"

    @property
    def input_model(self):
        return TerminalInput

    async def execute(self, tool_input: TerminalInput) -> Dict[str, Any]:
        cwd = self.resolve_cwd(tool_input.cwd)
        logger.info(f"[TOOL:{self.name}] Executing: {tool_input.command} in {cwd}")

        try:
            process = await asyncio.create_subprocess_shell(
                tool_input.command,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise ToolExecutionError(f"Failed to start command: {e}")

        self._running.add(process)
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=tool_input.timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            raise ToolExecutionError(f"Command timed out after {tool_input.timeout}s: {tool_input.command}")
        except asyncio.CancelledError:
            await self._kill(process)
            raise
        finally:
            # still tracked for release() until it has exited
            if process.returncode is not None:
                self._running.discard(process)

        exit_code = process.returncode
        if exit_code != 0:
            logger.warning(f"[TOOL:{self.name}] Command exited with {exit_code}")

        return {
            "success": exit_code == 0,
            "stdout": stdout.decode("utf-8", errors="replace")[:MAX_OUTPUT_CHARS],
            "stderr": stderr.decode("utf-8", errors="replace")[:MAX_OUTPUT_CHARS],
            "exitCode": exit_code
        }

    def resolve_cwd(self, cwd: Optional[str]) -> Path:
        if not cwd:
            return self.workspace_root
        path = Path(cwd).expanduser()
        return path if path.is_absolute() else self.workspace_root / path

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
        self._running.discard(process)
        logger.info(f"[TOOL:{self.name}] Killed process {process.pid}")

    async def release(self) -> None:
        """Kill any running processes and wait for them to exit"""
        for process in list(self._running):
            if process.returncode is None:
                await self._kill(process)
        self._running.clear()

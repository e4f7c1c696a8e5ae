"""
File System Tool - Read, write and inspect workspace files
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from agents.tools.base_tool import BaseTool
from orchestrator.errors import InvalidToolInput, ToolExecutionError

logger = logging.getLogger(__name__)


class FileSystemInput(BaseModel):
    action: Literal["read", "write", "list", "exists", "delete", "mkdir"] = Field(
        description="The file system action to perform"
    )
    path: str = Field(description="The path to the file or directory")
    content: Optional[str] = Field(
        default=None,
        description="The content to write to the file (required for write action)"
    )
    recursive: bool = Field(
        default=True,
        description="Whether to create missing parent directories (for mkdir action)"
    )


class FileSystemTool(BaseTool):
    """Tool for interacting with the file system"""

    def __init__(self, workspace_root: Union[str, Path, None] = None):
        self.workspace_root = Path(workspace_root or Path.cwd()).resolve()

    @property
    def name(self) -> str:
        return "file-system"

    @property
    def description(self) -> str:
        return "Read and write files, list directories, and perform other file system operations"

    @property
    def input_model(self):
        return FileSystemInput

    async def execute(self, tool_input: FileSystemInput) -> Any:
        path = self.resolve_path(tool_input.path)
        logger.info(f"[TOOL:{self.name}] {tool_input.action} {path}")

        if tool_input.action == "write" and tool_input.content is None:
            raise InvalidToolInput("'content' is required for the write action", tool_name=self.name)

        # disk work runs in a worker thread so sandbox traffic keeps flowing
        return await asyncio.to_thread(self.perform, tool_input, path)

    def perform(self, tool_input: FileSystemInput, path: Path) -> Any:
        if tool_input.action == "read":
            return self.read_file(path)
        if tool_input.action == "write":
            return self.write_file(path, tool_input.content)
        if tool_input.action == "list":
            return self.list_directory(path)
        if tool_input.action == "exists":
            return self.file_exists(path)
        if tool_input.action == "delete":
            return self.delete(path)
        return self.make_directory(path, tool_input.recursive)

    def resolve_path(self, raw_path: str) -> Path:
        """Relative paths resolve against the workspace root"""
        path = Path(raw_path).expanduser()
        if not path.is_absolute():
            path = self.workspace_root / path
        return path

    def read_file(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ToolExecutionError(f"Failed to read file: {e}")

    def write_file(self, path: Path, content: str) -> Dict[str, Any]:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ToolExecutionError(f"Failed to write file: {e}")
        return {"success": True, "path": str(path)}

    def list_directory(self, path: Path) -> List[Dict[str, str]]:
        try:
            entries = sorted(path.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise ToolExecutionError(f"Failed to list directory: {e}")

        return [
            {
                "name": entry.name,
                "type": "directory" if entry.is_dir() else "file",
                "path": str(entry)
            }
            for entry in entries
        ]

    @staticmethod
    def file_exists(path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {"exists": False}
        return {"exists": True, "type": "directory" if path.is_dir() else "file"}

    def delete(self, path: Path) -> Dict[str, Any]:
        try:
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
        except OSError as e:
            raise ToolExecutionError(f"Failed to delete: {e}")
        return {"success": True}

    def make_directory(self, path: Path, recursive: bool) -> Dict[str, Any]:
        try:
            path.mkdir(parents=recursive, exist_ok=True)
        except OSError as e:
            raise ToolExecutionError(f"Failed to create directory: {e}")
        return {"success": True, "path": str(path)}

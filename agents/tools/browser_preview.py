"""
Browser Preview Tool - Open, inspect and screenshot preview pages

The preview page runs in a browser and talks to the bridge over a
WebSocket, so every action other than open goes through the sandbox
round trip.
"""

import asyncio
import base64
import binascii
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union
from urllib.parse import quote

from pydantic import BaseModel, Field

from agents.shared.schemas import SandboxCommand
from agents.tools.base_tool import BaseTool
from orchestrator.async_bridge import AsyncBridge
from orchestrator.errors import InvalidToolInput, ToolExecutionError

logger = logging.getLogger(__name__)

TEMP_DIR_NAME = ".code-agent-temp"


class BrowserPreviewInput(BaseModel):
    action: Literal["open", "refresh", "takeScreenshot", "close", "inspectElement", "executeScript"] = Field(
        description="The browser action to perform"
    )
    url: Optional[str] = Field(default=None, description="The URL to open (open action)")
    preview_id: Optional[str] = Field(default=None, description="The preview to act on (all actions except open)")
    selector: Optional[str] = Field(default=None, description="CSS selector (inspectElement action)")
    script: Optional[str] = Field(default=None, description="JavaScript to evaluate (executeScript action)")


class BrowserPreviewTool(BaseTool):
    """Tool for previewing web applications in a browser"""

    def __init__(
        self,
        bridge: AsyncBridge,
        workspace_root: Union[str, Path, None] = None,
        preview_base_url: str = "http://localhost:8000"
    ):
        self.bridge = bridge
        self.workspace_root = Path(workspace_root or Path.cwd()).resolve()
        self.preview_base_url = preview_base_url.rstrip("/")
        self.previews: Dict[str, str] = {}

    @property
    def name(self) -> str:
        return "browser-preview"

    @property
    def description(self) -> str:
        return "Preview web applications in a browser, take screenshots, inspect elements and run scripts"

    @property
    def input_model(self):
        return BrowserPreviewInput

    async def execute(self, tool_input: BrowserPreviewInput) -> Any:
        if tool_input.action == "open":
            if not tool_input.url:
                raise InvalidToolInput("'url' is required for the open action", tool_name=self.name)
            return self.open_preview(tool_input.url)

        preview_id = self._require_preview(tool_input.preview_id)

        if tool_input.action == "refresh":
            await self.bridge.send(preview_id, SandboxCommand(kind="refresh"))
            return {"success": True, "previewId": preview_id}

        if tool_input.action == "close":
            await self.close_preview(preview_id)
            return {"success": True, "previewId": preview_id}

        if tool_input.action == "takeScreenshot":
            return await self.take_screenshot(preview_id)

        if tool_input.action == "inspectElement":
            if not tool_input.selector:
                raise InvalidToolInput("'selector' is required for the inspectElement action", tool_name=self.name)
            return await self.bridge.request(
                preview_id, "inspectElement", {"selector": tool_input.selector}, tool_name=self.name
            )

        if not tool_input.script:
            raise InvalidToolInput("'script' is required for the executeScript action", tool_name=self.name)
        return await self.bridge.request(
            preview_id, "executeScript", {"script": tool_input.script}, tool_name=self.name
        )

    def _require_preview(self, preview_id: Optional[str]) -> str:
        if not preview_id:
            raise InvalidToolInput("'preview_id' is required for this action", tool_name=self.name)
        if preview_id not in self.previews:
            raise ToolExecutionError(f"Preview '{preview_id}' is not open", preview_id=preview_id)
        return preview_id

    def open_preview(self, url: str) -> Dict[str, str]:
        preview_id = f"preview-{uuid.uuid4().hex[:12]}"
        self.previews[preview_id] = url
        preview_url = f"{self.preview_base_url}/preview/{preview_id}?url={quote(url, safe='')}"
        logger.info(f"[TOOL:{self.name}] Opened {preview_id} for {url}")
        return {"previewId": preview_id, "previewUrl": preview_url, "url": url}

    async def take_screenshot(self, preview_id: str) -> Dict[str, str]:
        """Ask the page for a PNG data URL and store it in the temp directory"""
        data_url = await self.bridge.request(preview_id, "takeScreenshot", tool_name=self.name)
        if not isinstance(data_url, str) or "," not in data_url:
            raise ToolExecutionError("Preview returned an invalid screenshot", preview_id=preview_id)

        try:
            image = base64.b64decode(data_url.split(",", 1)[1], validate=True)
        except (binascii.Error, ValueError) as e:
            raise ToolExecutionError(f"Could not decode screenshot: {e}", preview_id=preview_id)

        temp_dir = self.workspace_root / TEMP_DIR_NAME
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        path = temp_dir / f"screenshot-{preview_id}-{timestamp}.png"
        try:
            await asyncio.to_thread(self._save, path, image)
        except OSError as e:
            raise ToolExecutionError(f"Failed to save screenshot: {e}", preview_id=preview_id)

        logger.info(f"[TOOL:{self.name}] Screenshot saved to {path}")
        return {"success": True, "path": str(path)}

    @staticmethod
    def _save(path: Path, image: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(image)

    async def close_preview(self, preview_id: str) -> None:
        self.previews.pop(preview_id, None)
        self.bridge.abandon(target=preview_id)
        surface = self.bridge.detach(preview_id)
        if surface is not None:
            await surface.close()
        logger.info(f"[TOOL:{self.name}] Closed {preview_id}")

    async def release(self) -> None:
        """Close every preview this tool opened"""
        for preview_id in list(self.previews):
            try:
                await self.close_preview(preview_id)
            except Exception as e:
                logger.error(f"[TOOL:{self.name}] Failed to close {preview_id}: {e}")

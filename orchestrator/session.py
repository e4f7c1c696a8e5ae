"""
Agent Session - Wires the registry, the bridge and the ReAct loop together

Public entry points:
1. register_tools() - make tools available to the model
2. run_agent() - run one request to a final answer or truncation
3. shutdown() - abandon pending sandbox requests and release every tool
"""

import asyncio
import logging
import uuid
from typing import Iterable, List, Optional

from agents.shared.config import AgentSettings
from agents.shared.file_logger import setup_file_logger
from agents.shared.llm_client import LLMClient
from agents.shared.schemas import AgentRunResult
from agents.tools.base_tool import BaseTool
from agents.tools.browser_preview import BrowserPreviewTool
from agents.tools.code_analysis import CodeAnalysisTool
from agents.tools.file_system import FileSystemTool
from agents.tools.terminal import TerminalTool
from orchestrator.async_bridge import AsyncBridge, current_session
from orchestrator.execution_log import StepListener
from orchestrator.progress_publisher import ProgressPublisher
from orchestrator.react_loop import ReactLoop
from orchestrator.registry import ToolRegistry

logger = logging.getLogger(__name__)


def default_tools(settings: AgentSettings, bridge: AsyncBridge) -> List[BaseTool]:
    """The reference tool set, rooted at the configured workspace"""
    return [
        FileSystemTool(settings.workspace_root),
        TerminalTool(settings.workspace_root),
        CodeAnalysisTool(settings.workspace_root),
        BrowserPreviewTool(
            bridge,
            workspace_root=settings.workspace_root,
            preview_base_url=settings.preview_base_url
        ),
    ]


class AgentSession:
    """
    One agent host: a tool registry, a sandbox bridge and a model client.

    Each run_agent() call gets its own ReactLoop, so transcripts and
    execution logs are never shared between runs.
    """

    def __init__(
        self,
        settings: Optional[AgentSettings] = None,
        llm_client: Optional[LLMClient] = None,
        progress_publisher: Optional[ProgressPublisher] = None,
        step_listener: Optional[StepListener] = None,
        configure_logging: bool = False
    ):
        """
        Initialize the session.

        Args:
            settings: Session settings (read from the environment if omitted)
            llm_client: Model client (built from settings if omitted)
            progress_publisher: Optional receiver of progress events
            step_listener: Optional callback for every execution step
            configure_logging: Set up the rotating file logger from settings
        """
        self.settings = settings or AgentSettings.from_env()

        if configure_logging:
            for service_name in ("orchestrator", "agents"):
                setup_file_logger(
                    service_name,
                    log_level=self.settings.log_level,
                    output_dir=self.settings.log_dir
                )

        self.llm = llm_client or LLMClient(
            api_key=self.settings.openai_api_key,
            base_url=self.settings.openai_base_url,
            model=self.settings.openai_model,
            max_retries=self.settings.llm_max_retries,
            timeout=self.settings.llm_timeout
        )
        self.registry = ToolRegistry()
        self.bridge = AsyncBridge(
            poll_interval=self.settings.sandbox_poll_interval,
            max_attempts=self.settings.sandbox_max_attempts
        )
        self.progress_publisher = progress_publisher
        self.step_listener = step_listener
        self.closed = False

    def register_tools(self, tools: Iterable[BaseTool]) -> None:
        """
        Register tools with the session's registry.

        Raises:
            DuplicateToolName: If a tool name is already taken
        """
        for tool in tools:
            self.registry.register(tool)

    def register_default_tools(self) -> None:
        self.register_tools(default_tools(self.settings, self.bridge))

    def create_loop(self) -> ReactLoop:
        return ReactLoop(
            llm_client=self.llm,
            registry=self.registry,
            max_iterations=self.settings.max_iterations,
            progress_publisher=self.progress_publisher,
            parallel_tool_calls=self.settings.parallel_tool_calls,
            max_repeated_turns=self.settings.max_repeated_turns,
            step_listener=self.step_listener
        )

    async def run_agent(
        self,
        prompt: str,
        context: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> AgentRunResult:
        """
        Run one request through the ReAct loop.

        Args:
            prompt: Natural language request
            context: Optional code/context to fence into the user message
            session_id: Session identifier (generated if omitted)

        Returns:
            AgentRunResult with the final text and every execution step

        Raises:
            ModelServiceError: If the model service call fails; the
                error's execution_log holds the steps taken so far
        """
        if self.closed:
            raise RuntimeError("Session has been shut down")

        session_id = session_id or f"session-{uuid.uuid4()}"
        token = current_session.set(session_id)
        try:
            return await self.create_loop().execute(prompt, context=context, session_id=session_id)
        except asyncio.CancelledError:
            abandoned = self.bridge.abandon(session_id=session_id)
            logger.info(f"[SESSION] {session_id} cancelled, abandoned {abandoned} request(s)")
            raise
        finally:
            current_session.reset(token)

    async def shutdown(self) -> None:
        """Abandon pending requests, release all tools and close sandboxes"""
        if self.closed:
            return
        self.closed = True

        logger.info("[SESSION] Shutting down...")
        self.bridge.abandon()
        await self.registry.release_all()
        await self.bridge.close()
        logger.info("[SESSION] Shutdown complete")

    async def __aenter__(self) -> "AgentSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

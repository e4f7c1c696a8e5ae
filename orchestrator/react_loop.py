"""
ReAct Loop - Reasoning and Acting loop for one agent session

Implements the tool-calling loop:
1. Reason - the model reads the transcript and the tool catalog
2. Act - every tool call it requested is dispatched through the registry
3. Observe - one tool-result message per call goes back into the transcript
4. Repeat until the model answers without tool calls or the turn budget runs out

A failing tool call never ends the session: the failure is handed back
to the model as a structured error payload.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

from agents.shared.llm_client import LLMClient
from agents.shared.schemas import (
    AgentRunResult,
    ExecutionStep,
    ModelTurn,
    StepOutcome,
    ToolCall
)
from orchestrator.errors import (
    AgentError,
    InvalidToolInput,
    IterationBudgetExhausted,
    ModelServiceError,
    ToolExecutionError
)
from orchestrator.execution_log import ExecutionLog, StepListener
from orchestrator.progress_publisher import ProgressPublisher
from orchestrator.registry import ToolRegistry

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"
TRUNCATION_NOTICE = "Execution exceeded maximum number of steps."
REPETITION_NOTICE = "Execution stopped after the same tool calls were repeated."


@dataclass
class _CallResult:
    """Outcome of one dispatched call, merged into the transcript in request order"""
    call: ToolCall
    tool_input: Any
    outcome: StepOutcome
    content: str


class ReactLoop:
    """
    ReAct loop orchestrator.

    Owns the transcript and the execution log of the session it runs.
    One model turn completes before the next begins; calls inside a turn
    may run concurrently but their results are placed in request order.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        registry: ToolRegistry,
        max_iterations: int = 10,
        progress_publisher: Optional[ProgressPublisher] = None,
        parallel_tool_calls: bool = True,
        max_repeated_turns: Optional[int] = None,
        temperature: float = 0.2,
        step_listener: Optional[StepListener] = None
    ):
        """
        Initialize ReAct loop.

        Args:
            llm_client: Language-model service
            registry: Tool registry for dispatch
            max_iterations: Maximum model turns per session
            progress_publisher: Optional progress publisher for real-time updates
            parallel_tool_calls: Run the calls of one turn concurrently
            max_repeated_turns: Stop early after this many identical consecutive turns (None disables)
            temperature: Sampling temperature for the model
            step_listener: Optional callback for every execution log entry
        """
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        self.llm = llm_client
        self.registry = registry
        self.max_iterations = max_iterations
        self.progress_publisher = progress_publisher
        self.parallel_tool_calls = parallel_tool_calls
        self.max_repeated_turns = max_repeated_turns
        self.temperature = temperature
        self.step_listener = step_listener

        self.session_id: Optional[str] = None
        self.transcript: List[Dict[str, Any]] = []
        self.execution_log: Optional[ExecutionLog] = None

    async def execute(
        self,
        prompt: str,
        context: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> AgentRunResult:
        """
        Execute the loop for a user request.

        Args:
            prompt: Natural language request from the user
            context: Optional code/context to include with the request
            session_id: Session identifier (generated if omitted)

        Returns:
            AgentRunResult with the final text and the execution steps

        Raises:
            ModelServiceError: If the model service call fails
        """
        self.session_id = session_id or f"session-{uuid.uuid4()}"
        self.execution_log = ExecutionLog(self.session_id, listener=self.step_listener)
        self.transcript = self.seed_transcript(prompt, context)

        iteration = 0
        last_rationale = ""
        last_signature: Optional[Tuple] = None
        repeated_turns = 0

        logger.info(f"[REACT] Starting session {self.session_id}: {prompt[:80]}")

        if self.progress_publisher:
            await self.progress_publisher.publish_started(self.session_id, prompt)

        while iteration < self.max_iterations:
            iteration += 1
            logger.info(f"[REACT] === Iteration {iteration}/{self.max_iterations} ===")

            turn = await self.ask_model(iteration)
            self.transcript.append(turn.to_message())

            if turn.rationale:
                last_rationale = turn.rationale
                if self.progress_publisher:
                    await self.progress_publisher.publish_reasoning(
                        self.session_id, iteration, turn.rationale
                    )

            if turn.is_final:
                logger.info(f"[REACT] Final answer after {iteration} iteration(s)")
                self.execution_log.append(ExecutionStep(
                    turn=iteration,
                    action="final_answer",
                    rationale=turn.rationale
                ))

                if self.progress_publisher:
                    await self.progress_publisher.publish_completed(
                        self.session_id, "completed", turn.rationale, iteration
                    )

                return self._result("completed", turn.rationale, iteration)

            logger.info(
                f"[REACT] Model requested {len(turn.tool_calls)} tool call(s): "
                f"{', '.join(call.name for call in turn.tool_calls)}"
            )
            await self.dispatch_turn(turn, iteration)

            if self.max_repeated_turns:
                signature = self.turn_signature(turn)
                repeated_turns = repeated_turns + 1 if signature == last_signature else 1
                last_signature = signature
                if repeated_turns >= self.max_repeated_turns:
                    logger.warning(f"[REACT] Same tool calls repeated {repeated_turns} times, stopping")
                    return await self._truncate(iteration, last_rationale, REPETITION_NOTICE, "repeated_calls")

        logger.warning(f"[REACT] Max iterations ({self.max_iterations}) exceeded")
        return await self._truncate(iteration, last_rationale, TRUNCATION_NOTICE, "budget")

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def seed_transcript(self, prompt: str, context: Optional[str] = None) -> List[Dict[str, Any]]:
        """Initial transcript: one system message and one user message"""
        return [
            {"role": "system", "content": self.build_system_prompt()},
            {"role": "user", "content": self.build_user_prompt(prompt, context)}
        ]

    def build_system_prompt(self) -> str:
        """
        Build system prompt for the model.

        Returns:
            System prompt string
        """
        template = (PROMPTS_DIR / "system_prompt.txt").read_text(encoding="utf-8")
        return template.replace("{available_tools}", self.build_tool_description())

    @staticmethod
    def build_user_prompt(prompt: str, context: Optional[str] = None) -> str:
        if not context:
            return prompt
        return f"{prompt}\n\nHere is the relevant code context:\n```\n{context}\n```"

    def build_tool_description(self) -> str:
        """
        Build human-readable list of available tools.

        Returns:
            Formatted string describing all tools
        """
        tools = self.registry.list_all()

        if not tools:
            return "No tools registered."

        return "\n".join(f"- {tool.name}: {tool.description}" for tool in tools)

    # ------------------------------------------------------------------
    # Model turns
    # ------------------------------------------------------------------

    async def ask_model(self, iteration: int) -> ModelTurn:
        """
        Send the transcript and tool catalog to the model.

        Raises:
            ModelServiceError: If the call fails or the response is unusable
        """
        catalog = self.registry.catalog()

        try:
            response = await asyncio.to_thread(
                self.llm.chat_completion,
                list(self.transcript),
                temperature=self.temperature,
                tools=catalog or None
            )
            return self.parse_model_response(response)
        except Exception as e:
            if isinstance(e, ModelServiceError):
                await self._record_model_error(iteration, e)
                raise
            error = ModelServiceError(f"Model service call failed: {e}", cause=e)
            await self._record_model_error(iteration, error)
            raise error from e

    def parse_model_response(self, response: Dict[str, Any]) -> ModelTurn:
        """
        Parse a chat-completion response into a ModelTurn.

        Args:
            response: Dict as returned by LLMClient.chat_completion

        Returns:
            ModelTurn with rationale text and requested tool calls
        """
        try:
            message = response["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise ModelServiceError(f"Malformed model response: {e}", cause=e)

        tool_calls = []
        for raw_call in message.get("tool_calls") or []:
            function = raw_call.get("function") or {}
            arguments = function.get("arguments")
            tool_calls.append(ToolCall(
                id=raw_call.get("id") or f"call-{uuid.uuid4()}",
                name=function.get("name") or "",
                arguments=arguments if arguments else "{}"
            ))

        return ModelTurn(rationale=message.get("content") or "", tool_calls=tool_calls)

    @staticmethod
    def turn_signature(turn: ModelTurn) -> Tuple:
        """Comparable form of a turn's calls, ignoring call ids and key order"""
        signature = []
        for call in turn.tool_calls:
            try:
                arguments = json.dumps(json.loads(call.arguments), sort_keys=True)
            except (TypeError, ValueError):
                arguments = call.arguments
            signature.append((call.name, arguments))
        return tuple(signature)

    # ------------------------------------------------------------------
    # Dispatching
    # ------------------------------------------------------------------

    async def dispatch_turn(self, turn: ModelTurn, iteration: int) -> None:
        """
        Dispatch every tool call of one model turn.

        Results are appended to the transcript and the execution log in
        the order the calls were requested.
        """
        if self.parallel_tool_calls and len(turn.tool_calls) > 1:
            results = await asyncio.gather(
                *(self.dispatch_call(call) for call in turn.tool_calls)
            )
        else:
            results = [await self.dispatch_call(call) for call in turn.tool_calls]

        for result in results:
            self.execution_log.append(ExecutionStep(
                turn=iteration,
                action="tool_call",
                rationale=turn.rationale,
                tool_name=result.call.name,
                call_id=result.call.id,
                tool_input=result.tool_input,
                outcome=result.outcome
            ))
            self.transcript.append({
                "role": "tool",
                "tool_call_id": result.call.id,
                "content": result.content
            })

    async def dispatch_call(self, call: ToolCall) -> _CallResult:
        """
        Parse, look up, validate and execute one tool call.

        Never raises for tool-side failures; they become failure outcomes.
        """
        tool_input: Any = call.arguments

        if self.progress_publisher:
            await self.progress_publisher.publish_tool_called(
                self.session_id, call.name, call.id, call.arguments
            )

        try:
            parsed = self.parse_arguments(call)
            tool_input = parsed
            tool = self.registry.lookup(call.name)
            validated = tool.validate_input(parsed)
            tool_input = validated.model_dump(mode="json", exclude_none=True)

            logger.info(f"[REACT] Executing {call.name} ({call.id})")
            data = await tool.execute(validated)
            content = json.dumps(data, default=str)
            outcome = StepOutcome.ok(data)

        except AgentError as e:
            logger.warning(f"[REACT] Tool call {call.name} failed: {e.error_type}: {e}")
            outcome, content = self._failure(e)

        except Exception as e:
            logger.error(f"[REACT] Tool {call.name} raised: {e}", exc_info=True)
            outcome, content = self._failure(ToolExecutionError(str(e) or type(e).__name__))

        if self.progress_publisher:
            await self.progress_publisher.publish_tool_completed(
                self.session_id, call.name, call.id, outcome.success,
                outcome.data
            )

        return _CallResult(call=call, tool_input=tool_input, outcome=outcome, content=content)

    @staticmethod
    def parse_arguments(call: ToolCall) -> Any:
        """
        Parse the serialized input payload of a call.

        Raises:
            InvalidToolInput: If the payload is not valid JSON
        """
        try:
            return json.loads(call.arguments)
        except (TypeError, ValueError) as e:
            raise InvalidToolInput(
                f"Could not parse input for '{call.name}': {e}",
                tool_name=call.name
            )

    @staticmethod
    def _failure(error: AgentError) -> Tuple[StepOutcome, str]:
        payload = error.to_payload()
        return StepOutcome.failed(payload), json.dumps(payload, default=str)

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    async def _truncate(
        self,
        iteration: int,
        last_rationale: str,
        notice: str,
        reason: str
    ) -> AgentRunResult:
        final_text = f"{notice} Here's the partial result: {last_rationale}".rstrip()

        marker = IterationBudgetExhausted(self.max_iterations, reason=reason)
        payload = marker.to_payload()
        payload["error"] = notice
        self.execution_log.append(ExecutionStep(
            turn=iteration,
            action="truncated",
            rationale=last_rationale,
            outcome=StepOutcome.failed(payload)
        ))

        if self.progress_publisher:
            await self.progress_publisher.publish_error(
                self.session_id,
                notice,
                details={"max_iterations": self.max_iterations, "iterations": iteration, "reason": reason}
            )

        return self._result("max_iterations_exceeded", final_text, iteration)

    async def _record_model_error(self, iteration: int, error: ModelServiceError) -> None:
        logger.error(f"[REACT] Model service error: {error}")
        self.execution_log.append(ExecutionStep(
            turn=iteration,
            action="model_error",
            outcome=StepOutcome.failed(error.to_payload())
        ))
        error.execution_log = self.execution_log

        if self.progress_publisher:
            await self.progress_publisher.publish_error(
                self.session_id,
                str(error),
                details={"iteration": iteration, "steps": len(self.execution_log)}
            )

    def _result(self, status: str, final_text: str, iterations: int) -> AgentRunResult:
        return AgentRunResult(
            session_id=self.session_id,
            status=status,
            final_text=final_text,
            iterations=iterations,
            steps=list(self.execution_log.steps),
            transcript=list(self.transcript),
            execution_log_markdown=self.execution_log.to_markdown()
        )

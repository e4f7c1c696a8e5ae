"""
Code Agent - Language-Model Service Client

Chat-completions client with tool calling over the OpenAI SDK.
Owns the retry policy for the model service; the orchestrator never
retries on its own.
"""

import os
import time
import logging
from typing import List, Dict, Any, Optional
from openai import OpenAI, APIError, APIStatusError, APITimeoutError, RateLimitError

from orchestrator.errors import ModelServiceError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4-turbo"


def _tool_call_to_dict(tool_call: Any) -> Dict[str, Any]:
    return {
        "id": tool_call.id,
        "type": tool_call.type,
        "function": {
            "name": tool_call.function.name,
            "arguments": tool_call.function.arguments
        }
    }


def completion_to_dict(response: Any) -> Dict[str, Any]:
    """Flatten an SDK completion object into the plain dict the loop parses"""
    choices = []
    for choice in response.choices:
        message = choice.message
        choices.append({
            "index": choice.index,
            "message": {
                "role": message.role,
                "content": message.content,
                "tool_calls": (
                    [_tool_call_to_dict(tc) for tc in message.tool_calls]
                    if message.tool_calls else None
                )
            },
            "finish_reason": choice.finish_reason
        })

    usage = None
    if response.usage:
        usage = {
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "total_tokens": response.usage.total_tokens
        }

    return {"id": response.id, "model": response.model, "choices": choices, "usage": usage}


class LLMClient:
    """
    Language-model collaborator of the ReAct loop.

    Works with OpenAI and any endpoint speaking the same API.
    Calls are blocking; async callers run them in a worker thread.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        max_retries: int = 3,
        timeout: int = 30
    ):
        """
        Initialize LLM client.

        Args:
            api_key: API key (defaults to OPENAI_API_KEY env var)
            base_url: Endpoint URL (defaults to OPENAI_BASE_URL env var, then the SDK default)
            model: Model name (defaults to OPENAI_MODEL env var or "gpt-4-turbo")
            max_retries: Total attempts per call
            timeout: Per-request timeout in seconds

        Raises:
            ModelServiceError: If no API key is available
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ModelServiceError("API key is required. Set OPENAI_API_KEY environment variable.")

        self.base_url = base_url or os.getenv("OPENAI_BASE_URL")
        self.model = model or os.getenv("OPENAI_MODEL", DEFAULT_MODEL)
        self.max_retries = max_retries
        self.timeout = timeout

        # SDK retries are disabled; retry_delay() is the only policy
        self.client = OpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0
        )

        logger.info(f"[LLM] Client ready: model={self.model}, base_url={self.base_url or 'default'}")

    @staticmethod
    def retry_delay(error: APIError, attempt: int) -> Optional[float]:
        """
        Seconds to wait before retrying after an error, or None to give up.

        Rate limits back off exponentially, timeouts retry after one
        second, other client-side (4xx) errors are not retried.
        """
        if isinstance(error, RateLimitError):
            return float(2 ** attempt)
        if isinstance(error, APITimeoutError):
            return 1.0
        if isinstance(error, APIStatusError) and error.status_code < 500:
            return None
        return float(2 ** attempt)

    def build_request(
        self,
        messages: List[Dict[str, Any]],
        temperature: float,
        max_tokens: Optional[int],
        tools: Optional[List[Dict[str, Any]]],
        tool_choice: Optional[str]
    ) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature
        }
        if max_tokens:
            request["max_tokens"] = max_tokens
        if tools:
            request["tools"] = tools
            request["tool_choice"] = tool_choice or "auto"
        return request

    def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Request the next assistant turn.

        Args:
            messages: Transcript messages
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens to generate
            tools: Optional tool catalog for function calling
            tool_choice: Tool choice strategy ("auto" when tools are given)

        Returns:
            Completion as a plain dict (see completion_to_dict)

        Raises:
            ModelServiceError: If the call fails and no retry is left
        """
        request = self.build_request(messages, temperature, max_tokens, tools, tool_choice)
        last_error: Optional[APIError] = None

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"[LLM] Attempt {attempt + 1}/{self.max_retries}")
                response = self.client.chat.completions.create(**request)
                return completion_to_dict(response)

            except APIError as e:
                last_error = e
                delay = self.retry_delay(e, attempt)
                logger.warning(
                    f"[LLM] {type(e).__name__} on attempt {attempt + 1}/{self.max_retries}: {e}"
                )
                if delay is None:
                    break
                if attempt < self.max_retries - 1:
                    time.sleep(delay)

        error_msg = f"LLM API call failed after {attempt + 1} attempt(s): {last_error}"
        logger.error(f"[LLM] {error_msg}")
        raise ModelServiceError(error_msg, cause=last_error)

    def simple_completion(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Single-shot text completion without tools"""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = self.chat_completion(messages)
        return response["choices"][0]["message"]["content"] or ""

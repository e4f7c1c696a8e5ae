"""
Code Agent - Test Fixtures

Shared fixtures for integration testing. The language-model service is
replaced by a Mock returning chat-completion dicts; everything else
(registry, loop, bridge, tools) runs for real.
"""

import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest
from dotenv import load_dotenv

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load .env file for tests
load_dotenv(project_root / ".env")

from agents.shared.llm_client import LLMClient
from agents.shared.schemas import SandboxCommand
from agents.tools.sandbox import SandboxSurface


class FakeSandbox(SandboxSurface):
    """In-memory sandbox that records every command posted to it"""

    def __init__(self, sandbox_id: str = "preview-1", open_: bool = True, fail_post: bool = False):
        super().__init__(sandbox_id)
        self.sent: List[SandboxCommand] = []
        self._open = open_
        self.fail_post = fail_post
        self.closed = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def post_message(self, command: SandboxCommand) -> None:
        if self.fail_post:
            raise ConnectionError("socket gone")
        self.sent.append(command)

    async def close(self) -> None:
        self._open = False
        self.closed = True


@pytest.fixture
def make_tool_call():
    """Factory for raw tool-call entries as returned by LLMClient.chat_completion"""
    counter = {"n": 0}

    def _make(name: str, arguments: Any = None, call_id: Optional[str] = None) -> Dict[str, Any]:
        counter["n"] += 1
        if arguments is None:
            arguments = {}
        return {
            "id": call_id or f"call_{counter['n']}",
            "type": "function",
            "function": {
                "name": name,
                "arguments": arguments if isinstance(arguments, str) else json.dumps(arguments)
            }
        }

    return _make


@pytest.fixture
def make_response():
    """Factory for chat-completion response dicts"""

    def _make(content: Optional[str] = None, tool_calls: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        return {
            "id": "chatcmpl-test",
            "model": "test-model",
            "choices": [{
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": content,
                    "tool_calls": tool_calls or None
                },
                "finish_reason": "tool_calls" if tool_calls else "stop"
            }],
            "usage": None
        }

    return _make


@pytest.fixture
def mock_llm():
    """Factory for a Mock LLM client answering with the given responses in order"""

    def _make(*responses: Any) -> Mock:
        llm = Mock(spec=LLMClient)
        llm.chat_completion = Mock(side_effect=list(responses))
        return llm

    return _make


@pytest.fixture
def fake_sandbox():
    return FakeSandbox("preview-1")


@pytest.fixture
def sandbox_factory():
    """Factory for FakeSandbox instances"""
    return FakeSandbox


@pytest.fixture
def llm_client():
    """
    Create an LLM client for testing.
    Uses real API if OPENAI_API_KEY is set.
    """
    api_key = os.getenv("OPENAI_API_KEY")

    if not api_key:
        pytest.skip("OPENAI_API_KEY not set - skipping LLM test")

    return LLMClient(api_key=api_key)

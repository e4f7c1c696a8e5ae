"""
Integration tests for the Async Bridge

Tests correlation of sandbox commands with their replies: bounded
polling, timeouts, duplicate and late replies, and abandonment.
"""

import asyncio

import pytest

from agents.shared.schemas import SandboxCommand, SandboxMessage
from orchestrator.async_bridge import AsyncBridge, current_session
from orchestrator.errors import (
    AsyncTimeout,
    RequestAbandoned,
    SandboxUnavailable,
    ToolExecutionError
)


def fast_bridge(**kwargs) -> AsyncBridge:
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("max_attempts", 5)
    return AsyncBridge(**kwargs)


class TestSandboxTable:
    """Test attaching and detaching sandbox surfaces"""

    def test_attach_and_detach(self, fake_sandbox):
        bridge = fast_bridge()

        bridge.attach(fake_sandbox)
        assert bridge.is_open("preview-1")
        assert bridge.get_sandbox("preview-1") is fake_sandbox

        assert bridge.detach("preview-1") is fake_sandbox
        assert not bridge.is_open("preview-1")
        assert bridge.detach("preview-1") is None

    def test_closed_surface_is_not_open(self, sandbox_factory):
        bridge = fast_bridge()
        bridge.attach(sandbox_factory("preview-2", open_=False))

        assert not bridge.is_open("preview-2")

    def test_correlation_keys_are_unique(self):
        keys = {AsyncBridge.new_correlation_key("shot") for _ in range(100)}

        assert len(keys) == 100
        assert all(key.startswith("shot-") for key in keys)


@pytest.mark.asyncio
class TestSend:
    """Test outbound commands"""

    async def test_send_posts_command(self, fake_sandbox):
        bridge = fast_bridge()
        bridge.attach(fake_sandbox)

        await bridge.send("preview-1", SandboxCommand(kind="refresh"))

        assert [c.kind for c in fake_sandbox.sent] == ["refresh"]

    async def test_send_to_unknown_target(self):
        with pytest.raises(SandboxUnavailable) as exc_info:
            await fast_bridge().send("nowhere", SandboxCommand(kind="refresh"))

        assert exc_info.value.target == "nowhere"

    async def test_send_failure_is_sandbox_unavailable(self, sandbox_factory):
        bridge = fast_bridge()
        bridge.attach(sandbox_factory("preview-1", fail_post=True))

        with pytest.raises(SandboxUnavailable):
            await bridge.send("preview-1", SandboxCommand(kind="refresh"))


@pytest.mark.asyncio
class TestAwaitResult:
    """Test the bounded wait for replies"""

    async def test_request_resolves_with_reply(self, fake_sandbox):
        bridge = fast_bridge()
        bridge.attach(fake_sandbox)

        async def reply_soon():
            while not fake_sandbox.sent:
                await asyncio.sleep(0.001)
            command = fake_sandbox.sent[0]
            bridge.handle_message(SandboxMessage(correlation_key=command.correlation_key, result={"ok": 1}))

        replier = asyncio.create_task(reply_soon())
        result = await bridge.request("preview-1", "inspectElement", {"selector": "#app"})
        await replier

        assert result == {"ok": 1}
        assert fake_sandbox.sent[0].params == {"selector": "#app"}
        assert bridge.pending_count() == 0

    async def test_reply_before_wait_is_kept(self, fake_sandbox):
        bridge = fast_bridge()
        bridge.attach(fake_sandbox)
        bridge.register_request("key-1", "preview-1")

        assert bridge.handle_message(SandboxMessage(correlation_key="key-1", result="early"))
        assert await bridge.await_result("key-1") == "early"

    async def test_timeout_after_attempt_budget(self, fake_sandbox):
        bridge = fast_bridge(max_attempts=3)
        bridge.attach(fake_sandbox)
        bridge.register_request("key-1", "preview-1")

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(AsyncTimeout) as exc_info:
            await bridge.await_result("key-1")

        assert loop.time() - started >= 3 * 0.01
        assert exc_info.value.details["attempts"] == 3
        assert bridge.pending_count() == 0

    async def test_explicit_zero_attempts_is_honoured(self, fake_sandbox):
        bridge = fast_bridge(max_attempts=50, poll_interval=1.0)
        bridge.attach(fake_sandbox)
        bridge.register_request("key-1", "preview-1")

        with pytest.raises(AsyncTimeout) as exc_info:
            await asyncio.wait_for(bridge.await_result("key-1", max_attempts=0), timeout=0.5)

        assert exc_info.value.details["attempts"] == 0

    async def test_zero_attempts_still_takes_waiting_reply(self, fake_sandbox):
        bridge = fast_bridge(max_attempts=50)
        bridge.attach(fake_sandbox)
        bridge.register_request("key-1", "preview-1")
        bridge.handle_message(SandboxMessage(correlation_key="key-1", result="ready"))

        assert await bridge.await_result("key-1", max_attempts=0) == "ready"

    async def test_timeout_is_a_tool_execution_error(self):
        assert issubclass(AsyncTimeout, ToolExecutionError)
        assert issubclass(SandboxUnavailable, ToolExecutionError)

    async def test_reply_on_last_attempt_counts(self, fake_sandbox):
        bridge = fast_bridge(max_attempts=3, poll_interval=0.05)
        bridge.attach(fake_sandbox)
        bridge.register_request("key-1", "preview-1")

        async def reply_late():
            # inside the third and final interval
            await asyncio.sleep(0.12)
            bridge.handle_message(SandboxMessage(correlation_key="key-1", result="just in time"))

        replier = asyncio.create_task(reply_late())
        assert await bridge.await_result("key-1") == "just in time"
        await replier

    async def test_error_reply_raises_tool_execution_error(self, fake_sandbox):
        bridge = fast_bridge()
        bridge.attach(fake_sandbox)
        bridge.register_request("key-1", "preview-1")
        bridge.handle_message(SandboxMessage(correlation_key="key-1", error="No element matches #x"))

        with pytest.raises(ToolExecutionError) as exc_info:
            await bridge.await_result("key-1")

        assert str(exc_info.value) == "No element matches #x"

    async def test_last_write_wins(self, fake_sandbox):
        bridge = fast_bridge()
        bridge.attach(fake_sandbox)
        bridge.register_request("key-1", "preview-1")

        bridge.handle_message(SandboxMessage(correlation_key="key-1", result="first"))
        bridge.handle_message(SandboxMessage(correlation_key="key-1", result="second"))

        assert await bridge.await_result("key-1") == "second"

    async def test_late_duplicate_is_ignored(self, fake_sandbox):
        bridge = fast_bridge()
        bridge.attach(fake_sandbox)
        bridge.register_request("key-1", "preview-1")
        bridge.handle_message(SandboxMessage(correlation_key="key-1", result="value"))
        await bridge.await_result("key-1")

        assert bridge.handle_message(SandboxMessage(correlation_key="key-1", result="again")) is False
        assert bridge.pending_count() == 0

    async def test_unknown_key_is_ignored(self):
        bridge = fast_bridge()

        assert bridge.handle_message(SandboxMessage(correlation_key="never-sent", result=1)) is False

    async def test_wait_on_closed_target(self):
        bridge = fast_bridge()
        bridge.register_request("key-1", "preview-1")

        with pytest.raises(SandboxUnavailable):
            await bridge.await_result("key-1")

    async def test_request_to_closed_target_leaves_nothing_pending(self):
        bridge = fast_bridge()

        with pytest.raises(SandboxUnavailable):
            await bridge.request("preview-1", "takeScreenshot")

        assert bridge.pending_count() == 0

    async def test_detach_wakes_waiter(self, fake_sandbox):
        bridge = fast_bridge(max_attempts=100, poll_interval=0.05)
        bridge.attach(fake_sandbox)
        bridge.register_request("key-1", "preview-1")

        waiter = asyncio.create_task(bridge.await_result("key-1"))
        await asyncio.sleep(0.01)
        bridge.detach("preview-1")

        with pytest.raises(SandboxUnavailable):
            await asyncio.wait_for(waiter, timeout=1.0)


@pytest.mark.asyncio
class TestAbandon:
    """Test session-level release of pending requests"""

    async def test_abandon_wakes_waiter(self, fake_sandbox):
        bridge = fast_bridge(max_attempts=100, poll_interval=0.05)
        bridge.attach(fake_sandbox)
        bridge.register_request("key-1", "preview-1", session_id="s-1")

        waiter = asyncio.create_task(bridge.await_result("key-1"))
        await asyncio.sleep(0.01)

        assert bridge.abandon(session_id="s-1") == 1
        with pytest.raises(RequestAbandoned):
            await asyncio.wait_for(waiter, timeout=1.0)

        # a late reply after abandonment is a no-op
        assert bridge.handle_message(SandboxMessage(correlation_key="key-1", result="late")) is False

    async def test_abandon_filters_by_session_and_target(self, fake_sandbox):
        bridge = fast_bridge()
        bridge.attach(fake_sandbox)
        bridge.register_request("a", "preview-1", session_id="s-1")
        bridge.register_request("b", "preview-1", session_id="s-2")
        bridge.register_request("c", "preview-2", session_id="s-2")

        assert bridge.abandon(session_id="s-1") == 1
        assert bridge.abandon(target="preview-2") == 1
        assert bridge.pending_count() == 1
        assert bridge.abandon() == 1

    async def test_request_uses_current_session(self, fake_sandbox):
        bridge = fast_bridge(max_attempts=100, poll_interval=0.05)
        bridge.attach(fake_sandbox)

        token = current_session.set("s-9")
        try:
            waiter = asyncio.create_task(bridge.request("preview-1", "executeScript", {"script": "1"}))
            await asyncio.sleep(0.01)
        finally:
            current_session.reset(token)

        assert bridge.abandon(session_id="s-9") == 1
        with pytest.raises(RequestAbandoned):
            await asyncio.wait_for(waiter, timeout=1.0)

    async def test_close_closes_surfaces(self, fake_sandbox):
        bridge = fast_bridge()
        bridge.attach(fake_sandbox)
        bridge.register_request("key-1", "preview-1")

        await bridge.close()

        assert fake_sandbox.closed
        assert bridge.pending_count() == 0
        assert not bridge.is_open("preview-1")

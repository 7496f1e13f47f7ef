"""
Tests for the host key prompt bridge.

Tests:
- Auto-trust without a handler
- Sync, async and deferred (respond) handlers
- Timeouts and handler failures become HostKeyVerificationFailed
- One pending prompt at a time
- respond() from another thread
"""
from __future__ import annotations

import asyncio
import threading

import pytest

from pocket_ssh.errors import HostKeyVerificationFailed
from pocket_ssh.host_key import HostIdentity, HostKeyStatus, HostKeyVerdict
from pocket_ssh.prompt import HostKeyPrompt, HostKeyPromptBridge


def _prompt(status: HostKeyStatus = HostKeyStatus.UNKNOWN) -> HostKeyPrompt:
    previous = "11:22" if status == HostKeyStatus.CHANGED else None
    return HostKeyPrompt(
        HostIdentity("example.com", 2222),
        HostKeyVerdict(status, "aa:bb", previous_fingerprint=previous),
    )


class TestPromptFields:
    def test_accessors(self) -> None:
        prompt = _prompt(HostKeyStatus.CHANGED)
        assert prompt.host == "example.com"
        assert prompt.port == 2222
        assert prompt.fingerprint == "aa:bb"
        assert prompt.classification == HostKeyStatus.CHANGED
        assert prompt.previous_fingerprint == "11:22"


class TestHandlers:
    """Each handler style produces a decision."""

    async def test_no_handler_auto_trusts(self, caplog: pytest.LogCaptureFixture) -> None:
        bridge = HostKeyPromptBridge()
        assert await bridge.request(_prompt()) is True
        assert "auto-trusting" in caplog.text

    async def test_sync_handler(self) -> None:
        seen: list[HostKeyPrompt] = []

        def handler(prompt: HostKeyPrompt) -> bool:
            seen.append(prompt)
            return False

        bridge = HostKeyPromptBridge(handler)
        assert await bridge.request(_prompt()) is False
        assert seen[0].fingerprint == "aa:bb"
        assert bridge.pending is None

    async def test_async_handler(self) -> None:
        async def handler(prompt: HostKeyPrompt) -> bool:
            await asyncio.sleep(0.01)
            return True

        assert await HostKeyPromptBridge(handler).request(_prompt()) is True

    async def test_deferred_respond(self) -> None:
        bridge = HostKeyPromptBridge(lambda prompt: None)

        async def answer() -> None:
            while bridge.pending is None:
                await asyncio.sleep(0.01)
            bridge.respond(True)

        answer_task = asyncio.create_task(answer())
        assert await bridge.request(_prompt()) is True
        await answer_task

    async def test_respond_from_other_thread(self) -> None:
        bridge = HostKeyPromptBridge(lambda prompt: None, timeout_sec=5.0)

        def answer() -> None:
            while bridge.pending is None:
                threading.Event().wait(0.01)
            bridge.respond(False)

        thread = threading.Thread(target=answer)
        thread.start()
        try:
            assert await bridge.request(_prompt()) is False
        finally:
            thread.join()

    async def test_cancel_rejects(self) -> None:
        bridge = HostKeyPromptBridge(lambda prompt: None)

        async def cancel_soon() -> None:
            while bridge.pending is None:
                await asyncio.sleep(0.01)
            bridge.cancel()

        cancel_task = asyncio.create_task(cancel_soon())
        assert await bridge.request(_prompt()) is False
        await cancel_task

    async def test_handler_can_be_replaced(self) -> None:
        bridge = HostKeyPromptBridge()
        bridge.handler = lambda prompt: False
        assert await bridge.request(_prompt()) is False


class TestFailures:
    """Everything short of a decision fails verification."""

    async def test_timeout(self) -> None:
        bridge = HostKeyPromptBridge(lambda prompt: None, timeout_sec=0.05)
        with pytest.raises(HostKeyVerificationFailed):
            await bridge.request(_prompt())
        assert bridge.pending is None

    async def test_async_handler_timeout_cancels_handler(self) -> None:
        cancelled = asyncio.Event()

        async def handler(prompt: HostKeyPrompt) -> bool:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return True

        bridge = HostKeyPromptBridge(handler, timeout_sec=0.05)
        with pytest.raises(HostKeyVerificationFailed):
            await bridge.request(_prompt())
        await asyncio.wait_for(cancelled.wait(), 1.0)

    async def test_sync_handler_raises(self) -> None:
        def handler(prompt: HostKeyPrompt) -> bool:
            raise RuntimeError("ui gone")

        with pytest.raises(HostKeyVerificationFailed, match="ui gone"):
            await HostKeyPromptBridge(handler).request(_prompt())

    async def test_async_handler_raises(self) -> None:
        async def handler(prompt: HostKeyPrompt) -> bool:
            raise RuntimeError("ui gone")

        with pytest.raises(HostKeyVerificationFailed):
            await HostKeyPromptBridge(handler).request(_prompt())

    async def test_second_request_while_pending(self) -> None:
        bridge = HostKeyPromptBridge(lambda prompt: None, timeout_sec=1.0)
        first = asyncio.create_task(bridge.request(_prompt()))
        while bridge.pending is None:
            await asyncio.sleep(0.01)

        with pytest.raises(RuntimeError):
            await bridge.request(_prompt())

        bridge.respond(True)
        assert await first is True

    def test_respond_without_pending(self) -> None:
        with pytest.raises(RuntimeError):
            HostKeyPromptBridge().respond(True)

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(AssertionError):
            HostKeyPromptBridge(timeout_sec=0)

"""
Suspend a handshake until someone decides whether to trust a host key.

The session posts a HostKeyPrompt to the bridge and awaits the answer.
The registered handler may:
- return a bool straight away
- return an awaitable that resolves to a bool
- return None and answer later through respond(), from any thread

Only one prompt can be pending per bridge. Without a handler every key is
accepted, which suits non-interactive use but is logged as a warning.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from pocket_ssh.errors import ErrorContext, HostKeyVerificationFailed
from pocket_ssh.host_key import HostIdentity, HostKeyStatus, HostKeyVerdict

logger = logging.getLogger(__name__)

HandlerResult = Union[bool, Awaitable[bool], None]
PromptHandler = Callable[["HostKeyPrompt"], HandlerResult]


@dataclass(frozen=True)
class HostKeyPrompt:
    """What the user is asked about."""
    identity: HostIdentity
    verdict: HostKeyVerdict

    @property
    def host(self) -> str:
        return self.identity.host

    @property
    def port(self) -> int:
        return self.identity.port

    @property
    def fingerprint(self) -> str:
        return self.verdict.fingerprint

    @property
    def classification(self) -> HostKeyStatus:
        return self.verdict.status

    @property
    def previous_fingerprint(self) -> str | None:
        return self.verdict.previous_fingerprint


@dataclass
class _PendingPrompt:
    prompt: HostKeyPrompt
    future: asyncio.Future[bool]
    loop: asyncio.AbstractEventLoop


class HostKeyPromptBridge:
    """
    Request/response slot between a handshake and a decision maker.

    Usage:
        def ask(prompt):
            return console_yes_no(f"Trust {prompt.fingerprint}?")

        bridge = HostKeyPromptBridge(ask, timeout_sec=120.0)
        accepted = await bridge.request(prompt)
    """

    def __init__(
        self,
        handler: PromptHandler | None = None,
        timeout_sec: float | None = None,
    ) -> None:
        if timeout_sec is not None:
            assert timeout_sec > 0, f"timeout_sec must be positive, got {timeout_sec}"
        self._handler = handler
        self._timeout_sec = timeout_sec
        self._pending: _PendingPrompt | None = None

    @property
    def handler(self) -> PromptHandler | None:
        return self._handler

    @handler.setter
    def handler(self, handler: PromptHandler | None) -> None:
        self._handler = handler

    @property
    def timeout_sec(self) -> float | None:
        return self._timeout_sec

    @timeout_sec.setter
    def timeout_sec(self, value: float | None) -> None:
        if value is not None:
            assert value > 0, f"timeout_sec must be positive, got {value}"
        self._timeout_sec = value

    @property
    def pending(self) -> HostKeyPrompt | None:
        """The prompt awaiting a decision, if any."""
        pending = self._pending
        return pending.prompt if pending else None

    async def request(self, prompt: HostKeyPrompt) -> bool:
        """
        Wait for an accept/reject decision.

        Raises:
            RuntimeError: A prompt is already pending on this bridge
            HostKeyVerificationFailed: The decision timed out or the
                handler failed
        """
        if self._handler is None:
            logger.warning(
                "No host key handler registered; auto-trusting %s key for %s (%s)",
                prompt.classification.value, prompt.identity, prompt.fingerprint,
            )
            return True

        if self._pending is not None:
            raise RuntimeError(
                f"A host key prompt for {self._pending.prompt.identity} is already pending"
            )

        loop = asyncio.get_running_loop()
        future: asyncio.Future[bool] = loop.create_future()
        self._pending = _PendingPrompt(prompt, future, loop)
        handler_task: asyncio.Future[Any] | None = None
        context = ErrorContext(
            host=prompt.host,
            port=prompt.port,
            extra={"fingerprint": prompt.fingerprint},
        )

        try:
            try:
                result = self._handler(prompt)
            except Exception as e:
                raise HostKeyVerificationFailed(
                    f"Host key decision failed: {e}",
                    ErrorContext(host=prompt.host, port=prompt.port, original_error=repr(e)),
                ) from e

            if inspect.isawaitable(result):
                handler_task = asyncio.ensure_future(result)
                handler_task.add_done_callback(
                    lambda task: self._settle_from_task(future, task)
                )
            elif result is not None:
                future.set_result(bool(result))

            return await asyncio.wait_for(future, self._timeout_sec)
        except asyncio.TimeoutError as e:
            raise HostKeyVerificationFailed(
                f"No trust decision for {prompt.identity} within "
                f"{self._timeout_sec:g}s",
                context,
            ) from e
        finally:
            self._pending = None
            if handler_task is not None and not handler_task.done():
                handler_task.cancel()

    @staticmethod
    def _settle_from_task(future: asyncio.Future[bool], task: asyncio.Future[Any]) -> None:
        if future.done() or task.cancelled():
            return
        error = task.exception()
        if error is not None:
            future.set_exception(HostKeyVerificationFailed(
                f"Host key decision failed: {error}",
                ErrorContext(original_error=repr(error)),
            ))
        else:
            future.set_result(bool(task.result()))

    def respond(self, accept: bool) -> None:
        """
        Deliver the decision for the pending prompt. Thread-safe.

        Raises:
            RuntimeError: No prompt is pending
        """
        pending = self._pending
        if pending is None:
            raise RuntimeError("No host key prompt is pending")

        def settle() -> None:
            if not pending.future.done():
                pending.future.set_result(bool(accept))

        pending.loop.call_soon_threadsafe(settle)

    def cancel(self) -> None:
        """Reject the pending prompt, if any. Thread-safe."""
        if self._pending is not None:
            self.respond(False)

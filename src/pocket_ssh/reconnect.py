"""
Bounded automatic reconnection for a TransportSession.

The controller watches the session's disconnect notifications. A manual
disconnect() ends the session quietly; any other loss triggers up to
ReconnectPolicy.max_attempts new connect attempts, ReconnectPolicy.delay_sec
apart, reusing the original target and credential. Errors that another
attempt cannot fix (authentication, host key, bad key material) stop the
cycle immediately.

Callbacks run on the session loop:
- on_reconnecting(attempt, max_attempts): before each attempt
- on_reconnected(): an attempt succeeded
- on_connection_lost(message): reconnection is disabled or gave up
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

from pocket_ssh.config import ReconnectPolicy
from pocket_ssh.credentials import Credential
from pocket_ssh.errors import AuthenticationError, HostKeyError, SSHError
from pocket_ssh.events import EventCollector, EventEmitter, EventType
from pocket_ssh.models import ServerProfile, Target
from pocket_ssh.session import TransportSession

logger = logging.getLogger(__name__)

# Retrying cannot fix these
_PERMANENT_ERRORS = (AuthenticationError, HostKeyError)


@dataclass
class ReconnectContext:
    attempt_count: int = 0
    max_attempts: int = 3
    is_manual_disconnect: bool = False

    @property
    def exhausted(self) -> bool:
        return self.attempt_count >= self.max_attempts


class ReconnectController:
    """
    Wraps a TransportSession with reconnect-on-loss behaviour.

    Usage:
        controller = ReconnectController(session, ReconnectPolicy(max_attempts=5))
        controller.on_connection_lost = show_error
        await controller.connect(target, credential)
        ...
        controller.disconnect()
    """

    def __init__(
        self,
        session: TransportSession,
        policy: ReconnectPolicy | None = None,
        on_connection_lost: Callable[[str], None] | None = None,
        on_reconnecting: Callable[[int, int], None] | None = None,
        on_reconnected: Callable[[], None] | None = None,
        event_collector: EventCollector | None = None,
        event_log_path: str | None = None,
    ) -> None:
        self._session = session
        self._policy = policy if policy is not None else ReconnectPolicy()
        self._context = ReconnectContext(max_attempts=self._policy.max_attempts)
        self._emitter = EventEmitter(collector=event_collector, jsonl_path=event_log_path)

        self._target: Target | None = None
        self._credential: Credential | None = None
        self._profile: ServerProfile | None = None
        self._task: asyncio.Task[None] | None = None

        self.on_connection_lost = on_connection_lost
        self.on_reconnecting = on_reconnecting
        self.on_reconnected = on_reconnected

        session.on_disconnected = self._on_disconnected

    @property
    def session(self) -> TransportSession:
        return self._session

    @property
    def policy(self) -> ReconnectPolicy:
        return self._policy

    @property
    def context(self) -> ReconnectContext:
        return self._context

    @property
    def is_reconnecting(self) -> bool:
        return self._task is not None and not self._task.done()

    async def connect(
        self,
        target: Target,
        credential: Credential | None = None,
        profile: ServerProfile | None = None,
    ) -> None:
        """Connect the session and remember how, for later reconnects."""
        self._context = ReconnectContext(max_attempts=self._policy.max_attempts)
        self._target = target
        self._credential = credential
        self._profile = profile
        await self._session.connect(target, credential, profile=profile)

    def disconnect(self) -> None:
        """User-initiated disconnect; never triggers a reconnect."""
        self._context.is_manual_disconnect = True
        self._context.attempt_count = 0
        self._session.run_soon(self._cancel_task)
        self._session.disconnect()

    def close(self) -> None:
        self._emitter.close()

    def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def _invoke(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Reconnect callback %r raised", callback)

    def _on_disconnected(self, error: SSHError | None) -> None:
        if self._context.is_manual_disconnect or error is None:
            self._context.is_manual_disconnect = False
            return
        if self.is_reconnecting or self._target is None:
            return

        logger.warning("Session to %s lost: %s", self._target, error)
        self._task = asyncio.get_running_loop().create_task(self._handle_unexpected(error))

    def _give_up(self, error: SSHError | None) -> None:
        message = str(error) if error is not None else "Connection lost"
        logger.error("Giving up on %s after %d attempt(s): %s",
                     self._target, self._context.attempt_count, message)
        self._emitter.emit(
            EventType.RECONNECT,
            status="gave_up",
            attempt=self._context.attempt_count,
            max_attempts=self._context.max_attempts,
            message=message,
        )
        self._context.attempt_count = 0
        self._invoke(self.on_connection_lost, message)

    async def _handle_unexpected(self, error: SSHError) -> None:
        assert self._target is not None
        last_error: SSHError = error

        while True:
            if not self._policy.enabled or self._context.exhausted:
                self._give_up(last_error)
                return

            self._context.attempt_count += 1
            attempt = self._context.attempt_count
            logger.info("Reconnect attempt %d/%d to %s in %.1fs",
                        attempt, self._context.max_attempts, self._target,
                        self._policy.delay_sec)
            self._emitter.emit(
                EventType.RECONNECT,
                status="scheduled",
                attempt=attempt,
                max_attempts=self._context.max_attempts,
                delay_sec=self._policy.delay_sec,
            )
            self._invoke(self.on_reconnecting, attempt, self._context.max_attempts)

            await asyncio.sleep(self._policy.delay_sec)
            if self._context.is_manual_disconnect:
                return
            self._session.reset()

            try:
                await self._session.connect(
                    self._target, self._credential, profile=self._profile
                )
            except _PERMANENT_ERRORS as e:
                if self._context.is_manual_disconnect:
                    return
                self._emitter.emit(
                    EventType.RECONNECT, status="failed", attempt=attempt, **e.to_dict()
                )
                self._give_up(e)
                return
            except SSHError as e:
                if self._context.is_manual_disconnect:
                    return
                self._emitter.emit(
                    EventType.RECONNECT, status="failed", attempt=attempt, **e.to_dict()
                )
                last_error = e
                continue

            self._emitter.emit(
                EventType.RECONNECT, status="succeeded", attempt=attempt,
                max_attempts=self._context.max_attempts,
            )
            self._context.attempt_count = 0
            logger.info("Reconnected to %s", self._target)
            self._invoke(self.on_reconnected)
            return

"""
Interactive shell transport session.

A TransportSession owns one SSH connection and one pty shell channel and
drives them through a small state machine:

    DISCONNECTED -> CONNECTING -> AUTHENTICATING -> CONNECTED
                         |              |               |
                         +--------------+---------------+--> FAILED
    FAILED / CONNECTED --disconnect()--> DISCONNECTED

Network I/O runs on a private asyncio loop on a dedicated thread (or on a
loop handed in by the caller). connect() may be awaited from any loop;
send(), resize() and disconnect() are fire-and-forget and safe to call
from any thread. Callbacks run on the session loop:

- on_data(bytes): inbound shell output, in arrival order
- on_state_changed(state, reason): every state transition
- on_disconnected(error): the session left CONNECTED; error is None only
  for a user-initiated disconnect()

Host key checking happens inside the handshake. An unknown or changed key
is handed to the HostKeyPromptBridge and no credential is offered until
the decision arrives; a rejection fails the attempt with HostKeyRejected.
"""
from __future__ import annotations

import asyncio
import errno
import logging
import socket
import threading
from enum import Enum
from typing import Any, Callable

import asyncssh
from asyncssh.constants import OPEN_REQUEST_PTY_FAILED, OPEN_REQUEST_SESSION_FAILED

from pocket_ssh.auth import (
    METHOD_PASSWORD,
    METHOD_PUBLICKEY,
    AuthStrategy,
    build_auth_strategy,
)
from pocket_ssh.config import SessionConfig
from pocket_ssh.credentials import Credential, CredentialSource
from pocket_ssh.errors import (
    AuthenticationFailed,
    ChannelCreationFailed,
    ConnectionFailed,
    ConnectionRefused,
    ConnectionTimeout,
    DisconnectReason,
    ErrorContext,
    HostKeyChanged,
    HostKeyError,
    HostKeyRejected,
    HostUnreachable,
    PtyRequestFailed,
    SessionDisconnected,
    ShellRequestFailed,
    SSHError,
)
from pocket_ssh.events import EventCollector, EventEmitter, EventType
from pocket_ssh.host_key import HostIdentity, HostKeyStatus, HostKeyVerdict, TrustStore
from pocket_ssh.models import AuthMethod, ServerProfile, Target
from pocket_ssh.prompt import HostKeyPrompt, HostKeyPromptBridge

logger = logging.getLogger(__name__)

DataCallback = Callable[[bytes], None]
StateCallback = Callable[["ConnectionState", "str | None"], None]
DisconnectCallback = Callable[["SSHError | None"], None]


class ConnectionState(str, Enum):
    """Lifecycle state of a TransportSession."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    FAILED = "failed"

    def status_text(self, reason: str | None = None) -> str:
        """Short user-facing label, e.g. "Connecting..." or "Failed: <reason>"."""
        if self is ConnectionState.FAILED:
            return f"Failed: {reason}" if reason else "Failed"
        return _STATUS_TEXT[self]


_STATUS_TEXT: dict[ConnectionState, str] = {
    ConnectionState.DISCONNECTED: "Disconnected",
    ConnectionState.CONNECTING: "Connecting...",
    ConnectionState.AUTHENTICATING: "Authenticating...",
    ConnectionState.CONNECTED: "Connected",
}

_VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
    ConnectionState.CONNECTING: {
        ConnectionState.AUTHENTICATING,
        ConnectionState.FAILED,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.AUTHENTICATING: {
        ConnectionState.CONNECTED,
        ConnectionState.FAILED,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.CONNECTED: {
        ConnectionState.FAILED,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.FAILED: {ConnectionState.DISCONNECTED},
}


class _LoopThread:
    """An asyncio loop running forever on a daemon thread."""

    def __init__(self, name: str) -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self.loop)
            for task in pending:
                task.cancel()
            if pending:
                self.loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True)
                )
            self.loop.run_until_complete(self.loop.shutdown_asyncgens())
            self.loop.close()

    @property
    def is_current(self) -> bool:
        return threading.current_thread() is self._thread

    def stop(self, timeout: float | None = 5.0) -> None:
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        if not self.is_current:
            self._thread.join(timeout)


def _map_os_error(exc: OSError, target: Target, ctx: ErrorContext) -> ConnectionFailed:
    ctx.original_error = str(exc)
    where = f"{target.host}:{target.port}"
    if isinstance(exc, socket.gaierror):
        return HostUnreachable(f"Could not resolve {target.host}", ctx)
    if isinstance(exc, ConnectionRefusedError) or exc.errno == errno.ECONNREFUSED:
        return ConnectionRefused(f"Connection refused by {where}", ctx)
    if exc.errno in (errno.EHOSTUNREACH, errno.ENETUNREACH):
        return HostUnreachable(f"Host {where} is unreachable", ctx)
    if exc.errno == errno.ETIMEDOUT:
        return ConnectionTimeout(f"Connection to {where} timed out", ctx)
    return ConnectionFailed(f"Connection to {where} failed: {exc}", ctx)


def _map_channel_error(exc: asyncssh.ChannelOpenError, ctx: ErrorContext) -> SSHError:
    ctx.original_error = exc.reason
    if exc.code == OPEN_REQUEST_PTY_FAILED:
        return PtyRequestFailed("Failed to request PTY", ctx)
    if exc.code == OPEN_REQUEST_SESSION_FAILED:
        return ShellRequestFailed("Failed to start shell", ctx)
    return ChannelCreationFailed(f"Failed to create channel: {exc.reason}", ctx)


class _ShellClient(asyncssh.SSHClient):
    """
    asyncssh client hooks for one connection attempt.

    validate_host_public_key is synchronous, so an untrusted key starts a
    decision task and provisionally returns True; the auth hooks then wait
    for that task and withhold credentials on rejection, which keeps the
    handshake from ever completing.
    """

    def __init__(
        self,
        session: "TransportSession",
        generation: int,
        identity: HostIdentity,
        strategy: AuthStrategy,
    ) -> None:
        super().__init__()
        self._session = session
        self._generation = generation
        self._identity = identity
        self._strategy = strategy
        self._decision: asyncio.Task[bool] | None = None
        self.verdict: HostKeyVerdict | None = None
        self.host_key_error: HostKeyError | None = None
        self.handshake_timed_out = False

    @property
    def decision_pending(self) -> bool:
        return self._decision is not None and not self._decision.done()

    async def wait_for_decision(self) -> None:
        if self._decision is not None:
            await asyncio.wait([self._decision])

    def cancel_decision(self) -> None:
        if self._decision is not None and not self._decision.done():
            self._decision.cancel()

    async def host_key_accepted(self) -> bool:
        if self._decision is None:
            return True
        return await asyncio.shield(self._decision)

    def raise_for_host_key(self) -> None:
        if self.host_key_error is not None:
            raise self.host_key_error

    def validate_host_public_key(
        self,
        host: str,
        addr: tuple[str, int],
        port: int,
        key: asyncssh.SSHKey,
    ) -> bool:
        verdict = self._session.trust_store.verify(self._identity, key.public_data)
        self.verdict = verdict
        self._session._emit_host_key(self._identity, verdict)

        if not verdict.is_trusted and self._decision is None:
            self._decision = asyncio.ensure_future(
                self._decide(verdict, key.public_data)
            )
        return True

    async def _decide(self, verdict: HostKeyVerdict, key_data: bytes) -> bool:
        ctx = ErrorContext(host=self._identity.host, port=self._identity.port)
        try:
            accepted = await self._session.prompt_bridge.request(
                HostKeyPrompt(self._identity, verdict)
            )
        except HostKeyError as e:
            self.host_key_error = e
            self._session._emit_host_key(self._identity, verdict, decision="failed")
            return False

        if accepted:
            await asyncio.get_running_loop().run_in_executor(
                None, self._session.trust_store.trust, self._identity, key_data
            )
        elif verdict.status == HostKeyStatus.CHANGED:
            assert verdict.previous_fingerprint is not None
            self.host_key_error = HostKeyChanged(
                f"Host key for {self._identity} has changed and was rejected",
                old_fingerprint=verdict.previous_fingerprint,
                new_fingerprint=verdict.fingerprint,
                context=ctx,
            )
        else:
            self.host_key_error = HostKeyRejected(
                f"Host key for {self._identity} was rejected",
                fingerprint=verdict.fingerprint,
                context=ctx,
            )

        self._session._emit_host_key(
            self._identity, verdict, decision="accepted" if accepted else "rejected"
        )
        return accepted

    def _offer(self, method: str) -> Any:
        offer = self._strategy.offer(method)
        self._session._emitter.emit(
            EventType.AUTH,
            method=method,
            status="offered" if offer is not None else "declined",
        )
        return offer

    async def password_auth_requested(self) -> str | None:
        if not await self.host_key_accepted():
            return None
        return self._offer(METHOD_PASSWORD)

    async def public_key_auth_requested(self) -> asyncssh.SSHKey | None:
        if not await self.host_key_accepted():
            return None
        return self._offer(METHOD_PUBLICKEY)

    def auth_completed(self) -> None:
        self._session._emitter.emit(
            EventType.AUTH, method=self._strategy.method, status="success"
        )

    def connection_lost(self, exc: Exception | None) -> None:
        self._session._on_transport_lost(self._generation, exc)


class _ShellChannel(asyncssh.SSHClientSession):
    """Routes shell channel callbacks back to the owning session."""

    def __init__(self, session: "TransportSession", generation: int) -> None:
        self._session = session
        self._generation = generation

    def data_received(self, data: bytes, datatype: int | None) -> None:
        self._session._deliver(self._generation, data)

    def exit_status_received(self, status: int) -> None:
        self._session._record_exit(self._generation, status)

    def connection_lost(self, exc: Exception | None) -> None:
        self._session._on_transport_lost(self._generation, exc)


class TransportSession:
    """
    One interactive shell over SSH, with its own event loop.

    Usage:
        session = TransportSession(trust_store=TrustStore(JSONFileStorage(path)))
        session.on_data = terminal.feed
        await session.connect(Target("example.com", "alice"),
                              PasswordCredential("secret"))
        session.send(b"ls\\n")
        session.resize(120, 40)
        session.disconnect()
        session.close()
    """

    def __init__(
        self,
        trust_store: TrustStore | None = None,
        config: SessionConfig | None = None,
        prompt_bridge: HostKeyPromptBridge | None = None,
        credential_source: CredentialSource | None = None,
        event_collector: EventCollector | None = None,
        event_log_path: str | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        name: str = "pocket-ssh-session",
    ) -> None:
        """
        Args:
            trust_store: Host key trust store, normally shared process-wide
            config: Terminal geometry, timeouts and keepalive settings
            prompt_bridge: Decision point for unknown or changed host keys;
                a handler-less bridge (auto-trust) is created if omitted
            credential_source: Used when connect() gets no credential
            event_collector: Optional in-memory event sink
            event_log_path: Optional JSONL event log
            loop: Run on this loop instead of a private loop thread
            name: Thread name for the private loop
        """
        self._config = config if config is not None else SessionConfig()
        self._trust_store = trust_store if trust_store is not None else TrustStore()
        self._bridge = prompt_bridge if prompt_bridge is not None else HostKeyPromptBridge(
            timeout_sec=self._config.host_key_decision_timeout_sec
        )
        self._credential_source = credential_source
        self._emitter = EventEmitter(collector=event_collector, jsonl_path=event_log_path)
        self._name = name

        self._loop = loop
        self._loop_thread: _LoopThread | None = None
        self._loop_lock = threading.Lock()
        self._closed = False

        self._state = ConnectionState.DISCONNECTED
        self._failure_reason: str | None = None
        self._target: Target | None = None
        self._generation = 0
        self._closing = False
        self._exit_status: int | None = None

        self._geometry_lock = threading.Lock()
        self._cols = self._config.cols
        self._rows = self._config.rows

        self._conn: asyncssh.SSHClientConnection | None = None
        self._channel: asyncssh.SSHClientChannel | None = None
        self._client: _ShellClient | None = None
        self._connect_task: asyncio.Task[None] | None = None

        self.on_data: DataCallback | None = None
        self.on_state_changed: StateCallback | None = None
        self.on_disconnected: DisconnectCallback | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def failure_reason(self) -> str | None:
        """Reason attached to the FAILED state, None in any other state."""
        return self._failure_reason

    @property
    def status_text(self) -> str:
        return self._state.status_text(self._failure_reason)

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def target(self) -> Target | None:
        return self._target

    @property
    def geometry(self) -> tuple[int, int]:
        """Remembered (cols, rows), applied to the next pty request."""
        with self._geometry_lock:
            return self._cols, self._rows

    @property
    def exit_status(self) -> int | None:
        """Exit status the remote shell reported, if it exited."""
        return self._exit_status

    @property
    def trust_store(self) -> TrustStore:
        return self._trust_store

    @property
    def prompt_bridge(self) -> HostKeyPromptBridge:
        return self._bridge

    @property
    def config(self) -> SessionConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def connect(
        self,
        target: Target,
        credential: Credential | None = None,
        *,
        profile: ServerProfile | None = None,
    ) -> None:
        """
        Connect, authenticate and open an interactive shell.

        Args:
            target: Destination host, port and username
            credential: Password or key; if None it is resolved for
                `profile` through the credential source
            profile: Saved profile used for credential lookup

        Raises:
            AuthenticationFailed: Secret missing or empty (no socket is
                opened) or rejected by the server
            InvalidKey: The private key could not be parsed (no socket
                is opened)
            ConnectionFailed: TCP or handshake failure, or the session is
                not DISCONNECTED
            HostKeyRejected: The host key was not trusted
            HostKeyVerificationFailed: No trust decision was reached
            ChannelCreationFailed, PtyRequestFailed, ShellRequestFailed:
                The remote refused a channel step
            SessionDisconnected: disconnect() was called mid-connect
        """
        loop = self._ensure_loop()
        future = asyncio.run_coroutine_threadsafe(
            self._run_connect(target, credential, profile), loop
        )
        await asyncio.wrap_future(future)

    def send(self, data: bytes) -> None:
        """Write bytes to the shell. Dropped silently when no channel is open."""
        if data:
            self.run_soon(self._write, bytes(data))

    def resize(self, cols: int, rows: int) -> None:
        """Remember new geometry and signal a window change if a channel is open."""
        assert cols > 0 and rows > 0, f"Terminal geometry must be positive, got {cols}x{rows}"
        with self._geometry_lock:
            self._cols, self._rows = cols, rows
        self.run_soon(self._apply_geometry)

    def disconnect(self) -> None:
        """Close the channel and connection. Idempotent."""
        self.run_soon(self._disconnect)

    def reset(self) -> None:
        """Return a FAILED session to DISCONNECTED without a disconnect notification."""
        self.run_soon(self._reset)

    def close(self, timeout: float | None = 5.0) -> None:
        """
        Disconnect and stop the private loop thread.

        The session cannot be reused afterwards.
        """
        if self._closed:
            return
        self._closed = True
        self.run_soon(self._disconnect)
        if self._loop_thread is not None:
            self._loop_thread.stop(timeout)
            self._emitter.close()
        elif not self.run_soon(self._emitter.close):
            self._emitter.close()

    def run_soon(self, callback: Callable[..., Any], *args: Any) -> bool:
        """
        Schedule a callback on the session loop from any thread.

        Returns:
            False if the loop has not started or is already closed
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            return False
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop closed between the check and the call
            logger.debug("Session loop closed, dropping %s", callback)
            return False
        return True

    def __del__(self) -> None:
        thread = getattr(self, "_loop_thread", None)
        if thread is not None:
            thread.stop(timeout=0)

    # ------------------------------------------------------------------
    # Loop-side implementation
    # ------------------------------------------------------------------

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._loop_lock:
            if self._closed:
                raise RuntimeError("TransportSession is closed")
            if self._loop is None:
                self._loop_thread = _LoopThread(self._name)
                self._loop = self._loop_thread.loop
            return self._loop

    def _context(self, target: Target) -> ErrorContext:
        return ErrorContext(host=target.host, port=target.port, username=target.username)

    def _invoke(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Session callback %r raised", callback)

    def _transition(self, new_state: ConnectionState, reason: str | None = None) -> None:
        old_state = self._state
        assert new_state in _VALID_TRANSITIONS[old_state], (
            f"Invalid transition: {old_state.value} -> {new_state.value}"
        )
        self._state = new_state
        self._failure_reason = reason if new_state == ConnectionState.FAILED else None

        logger.info(
            "Session %s: %s -> %s%s",
            self._target, old_state.value, new_state.value,
            f" ({reason})" if reason else "",
        )
        self._emitter.emit(
            EventType.STATE_CHANGE,
            from_state=old_state.value,
            to_state=new_state.value,
            reason=reason,
        )
        self._invoke(self.on_state_changed, new_state, reason)

    def _emit_host_key(
        self,
        identity: HostIdentity,
        verdict: HostKeyVerdict,
        decision: str | None = None,
    ) -> None:
        self._emitter.emit(
            EventType.HOST_KEY,
            host=identity.host,
            port=identity.port,
            status=verdict.status.value,
            fingerprint=verdict.fingerprint,
            previous_fingerprint=verdict.previous_fingerprint,
            decision=decision,
        )

    async def _run_connect(
        self,
        target: Target,
        credential: Credential | None,
        profile: ServerProfile | None,
    ) -> None:
        self._connect_task = asyncio.current_task()
        try:
            await self._connect(target, credential, profile)
        finally:
            self._connect_task = None

    async def _connect(
        self,
        target: Target,
        credential: Credential | None,
        profile: ServerProfile | None,
    ) -> None:
        ctx = self._context(target)
        if self._state != ConnectionState.DISCONNECTED:
            raise ConnectionFailed(
                f"Cannot connect while session is {self._state.value}", ctx
            )

        self._generation += 1
        self._closing = False
        self._target = target
        self._exit_status = None
        self._transition(ConnectionState.CONNECTING)
        self._emitter.emit(
            EventType.CONNECT,
            status="initiating",
            host=target.host,
            port=target.port,
            username=target.username,
        )

        resolved = credential is None
        try:
            if resolved:
                credential = self._resolve_credential(profile, ctx)
            strategy = build_auth_strategy(credential, ctx)
            ctx.auth_method = strategy.method
            # Storage I/O stays off the session loop; verify() then reads the cache
            await asyncio.get_running_loop().run_in_executor(None, self._trust_store.load)

            sock = await self._open_socket(target, ctx)
            self._transition(ConnectionState.AUTHENTICATING)
            self._emitter.emit(
                EventType.CONNECT, status="tcp_established",
                host=target.host, port=target.port,
            )

            await self._handshake(sock, target, strategy, ctx)
            await self._open_shell(ctx)
        except asyncio.CancelledError:
            if not self._closing:
                self._fail(ConnectionFailed("Connection attempt cancelled", ctx))
                raise
            raise SessionDisconnected("Disconnected while connecting", ctx) from None
        except SSHError as e:
            if self._closing:
                raise SessionDisconnected("Disconnected while connecting", ctx) from e
            self._fail(e)
            raise
        finally:
            if resolved and credential is not None:
                credential.discard()

        self._transition(ConnectionState.CONNECTED)
        self._emitter.emit(
            EventType.CONNECT, status="connected",
            host=target.host, port=target.port, username=target.username,
        )

    def _resolve_credential(
        self,
        profile: ServerProfile | None,
        ctx: ErrorContext,
    ) -> Credential | None:
        if profile is None or self._credential_source is None:
            return None
        credential = self._credential_source.resolve(profile)
        if credential is None:
            if profile.auth_method == AuthMethod.PASSWORD:
                raise AuthenticationFailed("No password configured", ctx)
            raise AuthenticationFailed("No SSH key configured", ctx)
        return credential

    @staticmethod
    async def _connect_socket(target: Target) -> socket.socket:
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(target.host, target.port, type=socket.SOCK_STREAM)
        last_error: OSError | None = None
        for family, sock_type, proto, _, address in infos:
            sock = socket.socket(family, sock_type, proto)
            sock.setblocking(False)
            try:
                await loop.sock_connect(sock, address)
            except OSError as e:
                sock.close()
                last_error = e
                continue
            except BaseException:
                sock.close()
                raise
            return sock
        raise last_error or OSError(f"No addresses found for {target.host}")

    async def _open_socket(self, target: Target, ctx: ErrorContext) -> socket.socket:
        try:
            return await asyncio.wait_for(
                self._connect_socket(target), self._config.connect_timeout_sec
            )
        except asyncio.TimeoutError as e:
            raise ConnectionTimeout(
                f"Connection to {target.host}:{target.port} timed out", ctx
            ) from e
        except OSError as e:
            raise _map_os_error(e, target, ctx) from e

    async def _watch_handshake(self, client: _ShellClient, handshake: asyncio.Future[Any]) -> None:
        """Cancel a stalled handshake, not counting time spent on a host key decision."""
        timeout = self._config.connect_timeout_sec
        while not handshake.done():
            await asyncio.sleep(timeout)
            if handshake.done():
                return
            if client.decision_pending:
                await client.wait_for_decision()
                continue
            logger.warning("SSH handshake exceeded %.1fs, cancelling", timeout)
            client.handshake_timed_out = True
            handshake.cancel()
            return

    async def _handshake(
        self,
        sock: socket.socket,
        target: Target,
        strategy: AuthStrategy,
        ctx: ErrorContext,
    ) -> None:
        client = _ShellClient(
            self, self._generation, HostIdentity(target.host, target.port), strategy
        )
        self._client = client

        options: dict[str, Any] = {
            "username": target.username,
            # Empty trusted/CA/revoked lists: every key goes to validate_host_public_key
            "known_hosts": ([], [], []),
            "client_keys": None,
            "agent_path": None,
            "preferred_auth": [strategy.method],
            "kbdint_auth": False,
            "gss_auth": False,
            "gss_kex": False,
            "host_based_auth": False,
            "agent_forwarding": False,
        }
        if self._config.keepalive is not None:
            options.update(self._config.keepalive.to_asyncssh_options())

        handshake = asyncio.ensure_future(asyncssh.connect(
            target.host,
            target.port,
            sock=sock,
            client_factory=lambda: client,
            **options,
        ))
        watchdog = asyncio.ensure_future(self._watch_handshake(client, handshake))

        try:
            conn = await handshake
        except asyncio.CancelledError:
            if client.handshake_timed_out:
                raise ConnectionTimeout(
                    f"SSH handshake with {target.host}:{target.port} timed out", ctx
                ) from None
            raise
        except asyncssh.PermissionDenied as e:
            client.raise_for_host_key()
            ctx.original_error = str(e)
            raise AuthenticationFailed(
                f"Authentication failed for {target.username}@{target.host}", ctx
            ) from e
        except (asyncssh.DisconnectError, OSError) as e:
            client.raise_for_host_key()
            ctx.original_error = str(e)
            raise ConnectionFailed(
                f"SSH handshake with {target.host}:{target.port} failed: {e}", ctx
            ) from e
        finally:
            watchdog.cancel()

        self._conn = conn
        # Servers that skip user auth never call the auth hooks
        if not await client.host_key_accepted():
            client.raise_for_host_key()

    async def _open_shell(self, ctx: ErrorContext) -> None:
        assert self._conn is not None, "Shell requested without a connection"
        cols, rows = self.geometry
        generation = self._generation

        with self._emitter.timed_event(
            EventType.SHELL, term_type=self._config.term_type, cols=cols, rows=rows,
        ) as event_data:
            try:
                channel, _ = await self._conn.create_session(
                    lambda: _ShellChannel(self, generation),
                    term_type=self._config.term_type,
                    term_size=(cols, rows),
                    encoding=None,
                )
            except asyncssh.ChannelOpenError as e:
                event_data["status"] = "failed"
                raise _map_channel_error(e, ctx) from e
            except (asyncssh.DisconnectError, OSError) as e:
                event_data["status"] = "failed"
                ctx.original_error = str(e)
                raise ConnectionFailed(f"Connection lost while opening shell: {e}", ctx) from e
            event_data["status"] = "opened"

        self._channel = channel
        if self.geometry != (cols, rows):
            self._apply_geometry()

    def _fail(self, error: SSHError) -> None:
        self._release()
        self._emitter.emit(EventType.ERROR, **error.to_dict())
        if self._state in (
            ConnectionState.CONNECTING,
            ConnectionState.AUTHENTICATING,
            ConnectionState.CONNECTED,
        ):
            self._transition(ConnectionState.FAILED, str(error))

    def _release(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            client.cancel_decision()
        channel, self._channel = self._channel, None
        if channel is not None:
            channel.close()
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()

    def _write(self, data: bytes) -> None:
        if self._channel is None:
            logger.debug("No shell channel, dropping %d byte(s)", len(data))
            return
        self._channel.write(data)

    def _apply_geometry(self) -> None:
        if self._channel is None:
            return
        cols, rows = self.geometry
        self._channel.change_terminal_size(cols, rows)
        logger.debug("Window change sent: %dx%d", cols, rows)

    def _deliver(self, generation: int, data: bytes) -> None:
        if generation == self._generation:
            self._invoke(self.on_data, data)

    def _record_exit(self, generation: int, status: int) -> None:
        if generation == self._generation:
            self._exit_status = status

    def _on_transport_lost(self, generation: int, exc: Exception | None) -> None:
        if (
            generation != self._generation
            or self._closing
            or self._state != ConnectionState.CONNECTED
        ):
            return

        assert self._target is not None
        ctx = self._context(self._target)
        error: SSHError
        if exc is None:
            reason = DisconnectReason.REMOTE_CLOSED
            error = SessionDisconnected("Disconnected from server", ctx)
        else:
            ctx.original_error = str(exc)
            if "keepalive" in str(exc).lower():
                reason = DisconnectReason.KEEPALIVE_TIMEOUT
            else:
                reason = DisconnectReason.NETWORK_ERROR
            error = ConnectionFailed(f"Connection lost: {exc}", ctx)

        self._release()
        self._transition(ConnectionState.FAILED, str(error))
        self._emitter.emit(
            EventType.DISCONNECT,
            reason=reason.value,
            exit_status=self._exit_status,
            **error.to_dict(),
        )
        self._invoke(self.on_disconnected, error)

    def _disconnect(self) -> None:
        self._closing = True
        task = self._connect_task
        if task is not None and not task.done():
            task.cancel()
        self._release()

        if self._state == ConnectionState.DISCONNECTED:
            return
        self._transition(ConnectionState.DISCONNECTED)
        self._emitter.emit(
            EventType.DISCONNECT,
            reason=DisconnectReason.NORMAL.value,
            host=self._target.host if self._target else None,
        )
        self._invoke(self.on_disconnected, None)

    def _reset(self) -> None:
        if self._state == ConnectionState.FAILED:
            self._release()
            self._transition(ConnectionState.DISCONNECTED)

"""
CLI interface for pocket-ssh.

Usage:
    python -m pocket_ssh user@host                 # Interactive shell, password
    python -m pocket_ssh -i ~/.ssh/id_ed25519 user@host
    python -m pocket_ssh -p 2222 -l alice host
    python -m pocket_ssh --events session.jsonl user@host
    python -m pocket_ssh --help
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import os
import signal
import sys
import termios
import tty
from pathlib import Path
from typing import Any, Callable

from pocket_ssh.config import DEFAULT_PORT, load_config
from pocket_ssh.credentials import Credential, KeyCredential, PasswordCredential
from pocket_ssh.errors import SSHError
from pocket_ssh.host_key import HostKeyStatus, JSONFileStorage, TrustStore, format_changed_warning
from pocket_ssh.models import Target
from pocket_ssh.platform import expand_path, get_config_path, get_trust_store_path
from pocket_ssh.prompt import HostKeyPrompt, HostKeyPromptBridge
from pocket_ssh.reconnect import ReconnectController
from pocket_ssh.session import ConnectionState, TransportSession

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def console_host_key_prompt(prompt: HostKeyPrompt) -> bool:
    """
    Ask on the console whether to trust an unknown or changed host key.

    Blocking; run it in an executor.
    """
    if prompt.classification == HostKeyStatus.CHANGED:
        assert prompt.previous_fingerprint is not None
        print(
            format_changed_warning(
                prompt.identity, prompt.previous_fingerprint, prompt.fingerprint
            ),
            file=sys.stderr,
        )
    else:
        print(
            f"The authenticity of host '{prompt.identity}' can't be established.",
            file=sys.stderr,
        )
        print(f"SHA-256 key fingerprint is {prompt.fingerprint}.", file=sys.stderr)

    while True:
        try:
            response = input("Are you sure you want to continue connecting (yes/no)? ")
        except (EOFError, KeyboardInterrupt):
            print("\nHost key verification failed.", file=sys.stderr)
            return False
        response = response.strip().lower()
        if response in ("yes", "y"):
            print(f"Warning: Permanently added '{prompt.identity}' to the trust store.",
                  file=sys.stderr)
            return True
        if response in ("no", "n"):
            print("Host key verification failed.", file=sys.stderr)
            return False
        print("Please type 'yes' or 'no'.", file=sys.stderr)


class ConsoleTerminal:
    """
    The controlling terminal while a shell runs.

    start() puts a tty in raw mode and passes each chunk read from stdin to
    on_input, with b"" at end of file. A host key prompt raised during an
    auto-reconnect needs a normal line editor, so ask() restores cooked mode
    and detaches the stdin reader until the answer is in.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_input: Callable[[bytes], None],
        fd: int | None = None,
    ) -> None:
        self._loop = loop
        self._fd = fd
        self._on_input = on_input
        self._saved: list[Any] | None = None
        self._reading = False
        self._stopped = False

    @property
    def reading(self) -> bool:
        return self._reading

    def start(self) -> None:
        self._stopped = False
        if self._fd is None:
            self._fd = sys.stdin.fileno()
        if os.isatty(self._fd):
            self._saved = termios.tcgetattr(self._fd)
        self._resume()

    def stop(self) -> None:
        self._stopped = True
        self._suspend()
        self._saved = None

    def _suspend(self) -> None:
        if self._reading:
            assert self._fd is not None
            self._loop.remove_reader(self._fd)
            self._reading = False
        if self._saved is not None:
            assert self._fd is not None
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved)

    def _resume(self) -> None:
        if self._stopped or self._fd is None:
            return
        if self._saved is not None:
            tty.setraw(self._fd)
        self._loop.add_reader(self._fd, self._on_readable)
        self._reading = True

    def _on_readable(self) -> None:
        assert self._fd is not None
        self._on_input(os.read(self._fd, 1024))

    async def _suspend_if_started(self) -> bool:
        started = self._reading
        if started:
            self._suspend()
        return started

    def ask(self, prompt: HostKeyPrompt) -> bool:
        """Blocking console prompt; call from a worker thread, not the loop."""
        started = asyncio.run_coroutine_threadsafe(
            self._suspend_if_started(), self._loop
        ).result()
        try:
            return console_host_key_prompt(prompt)
        finally:
            if started and not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self._resume)

    async def handle(self, prompt: HostKeyPrompt) -> bool:
        """HostKeyPromptBridge handler; runs on the session loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.ask, prompt)


def parse_target(target: str) -> tuple[str, str | None]:
    """
    Parse user@host target string.

    Returns:
        Tuple of (host, username) where username may be None.
    """
    if "@" in target:
        username, host = target.rsplit("@", 1)
        return host, username
    return target, None


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the pocket-ssh CLI."""
    parser = argparse.ArgumentParser(
        prog="pocket-ssh",
        description="Interactive SSH shell with host key trust prompts and auto-reconnect",
        epilog="Example: python -m pocket_ssh alice@example.com",
    )
    parser.add_argument(
        "target",
        metavar="[user@]host",
        help="Target host (optionally with username)",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=DEFAULT_PORT,
        help="SSH port (default: 22)",
    )
    parser.add_argument(
        "-l", "--login",
        metavar="USER",
        help="Login username (alternative to user@host)",
    )
    parser.add_argument(
        "-i", "--identity",
        metavar="FILE",
        help="Unencrypted private key file (Ed25519, ECDSA or RSA); "
             "password authentication is used otherwise",
    )
    parser.add_argument(
        "--known-hosts-file",
        metavar="FILE",
        help="Trust store file (default: known_hosts.json in the state directory)",
    )
    parser.add_argument(
        "--no-reconnect",
        action="store_true",
        help="Do not reconnect automatically when the connection drops",
    )
    parser.add_argument(
        "--term",
        metavar="TYPE",
        help="Terminal type for the remote pty (default: $TERM or config)",
    )
    parser.add_argument(
        "--events",
        metavar="FILE",
        help="Append JSONL session events to FILE",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Verbose logging to stderr (repeat for more)",
    )
    return parser


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if verbose < 3:
        logging.getLogger("asyncssh").setLevel(logging.WARNING)


def _load_credential(args: argparse.Namespace, target: Target) -> Credential:
    if args.identity:
        key_path = expand_path(args.identity)
        if not key_path.exists():
            raise FileNotFoundError(f"Key file not found: {key_path}")
        return KeyCredential(key_path.read_bytes())
    return PasswordCredential(getpass.getpass(f"{target}'s password: "))


def _terminal_size() -> tuple[int, int] | None:
    try:
        size = os.get_terminal_size(sys.stdout.fileno())
    except OSError:
        return None
    return size.columns, size.lines


async def run_shell(args: argparse.Namespace) -> int:
    """
    Run one interactive shell session.

    Returns:
        0 on a clean exit, 1 on a connection error
    """
    _configure_logging(args.verbose)

    host, target_user = parse_target(args.target)
    username = args.login or target_user or getpass.getuser()
    try:
        target = Target(host=host, username=username, port=args.port)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    try:
        config = load_config(get_config_path())
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    session_config = config.session
    term = args.term or os.environ.get("TERM")
    if term:
        session_config.term_type = term
    size = _terminal_size()
    if size is not None:
        session_config.cols, session_config.rows = size
    if args.no_reconnect:
        config.reconnect.enabled = False

    try:
        credential = _load_credential(args, target)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    loop = asyncio.get_running_loop()
    finished = asyncio.Event()
    exit_code = EXIT_OK

    def finish(code: int) -> None:
        nonlocal exit_code
        exit_code = code
        finished.set()

    def on_stdin(data: bytes) -> None:
        if data:
            session.send(data)
        else:
            finish(EXIT_OK)

    terminal = ConsoleTerminal(loop, on_stdin)
    trust_path = Path(args.known_hosts_file) if args.known_hosts_file else get_trust_store_path()
    session = TransportSession(
        trust_store=TrustStore(JSONFileStorage(expand_path(trust_path))),
        config=session_config,
        prompt_bridge=HostKeyPromptBridge(
            terminal.handle, timeout_sec=session_config.host_key_decision_timeout_sec
        ),
        event_log_path=args.events,
    )
    controller = ReconnectController(
        session, config.reconnect, event_log_path=args.events
    )

    def on_state_changed(state: ConnectionState, reason: str | None) -> None:
        if state == ConnectionState.FAILED and session.exit_status is not None:
            # Remote shell exited on its own
            loop.call_soon_threadsafe(finish, EXIT_OK)

    def on_connection_lost(message: str) -> None:
        loop.call_soon_threadsafe(finish, EXIT_ERROR)
        os.write(sys.stderr.fileno(), f"\r\nConnection lost: {message}\r\n".encode())

    def on_reconnecting(attempt: int, max_attempts: int) -> None:
        os.write(sys.stderr.fileno(),
                 f"\r\nReconnecting ({attempt}/{max_attempts})...\r\n".encode())

    session.on_data = lambda data: os.write(sys.stdout.fileno(), data)
    session.on_state_changed = on_state_changed
    controller.on_connection_lost = on_connection_lost
    controller.on_reconnecting = on_reconnecting

    try:
        await controller.connect(target, credential)
    except SSHError as e:
        print(f"Error: {e}", file=sys.stderr)
        session.close()
        controller.close()
        credential.discard()
        return EXIT_ERROR

    def on_winch() -> None:
        size = _terminal_size()
        if size is not None:
            session.resize(*size)

    terminal.start()
    if hasattr(signal, "SIGWINCH"):
        loop.add_signal_handler(signal.SIGWINCH, on_winch)

    try:
        await finished.wait()
    finally:
        terminal.stop()
        if hasattr(signal, "SIGWINCH"):
            loop.remove_signal_handler(signal.SIGWINCH)
        controller.disconnect()
        session.close()
        controller.close()
        credential.discard()

    return exit_code


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        return asyncio.run(run_shell(args))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())

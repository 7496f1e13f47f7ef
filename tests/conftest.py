"""
Pytest fixtures for pocket-ssh tests.

Provides:
- MockSSHServer fixtures (password and key auth), no external sshd needed
- Event capture fixture for asserting event sequences
- In-memory trust store
- wait_until helper for state reached on the session's loop thread
"""
from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import AsyncGenerator, Callable, Generator

import asyncssh
import pytest

from pocket_ssh.events import EventCollector
from pocket_ssh.host_key import MemoryStorage, TrustStore
from pocket_ssh.testing.mock_server import MockServerConfig, MockSSHServer

TEST_USERNAME = "test"
TEST_PASSWORD = "test"


async def wait_until(
    predicate: Callable[[], bool],
    timeout: float = 5.0,
    interval: float = 0.02,
) -> None:
    """Poll until predicate() is true; fail the test on timeout."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)


@pytest.fixture
async def mock_ssh_server() -> AsyncGenerator[MockSSHServer, None]:
    """MockSSHServer accepting test/test over password auth."""
    config = MockServerConfig(username=TEST_USERNAME, password=TEST_PASSWORD)
    async with MockSSHServer(config) as server:
        yield server


@pytest.fixture
def client_key() -> asyncssh.SSHKey:
    return asyncssh.generate_private_key("ssh-ed25519")


@pytest.fixture
async def key_ssh_server(client_key: asyncssh.SSHKey) -> AsyncGenerator[MockSSHServer, None]:
    """MockSSHServer accepting only the client_key fixture's public key."""
    config = MockServerConfig(
        username=TEST_USERNAME,
        password=None,
        authorized_keys=[client_key],
    )
    async with MockSSHServer(config) as server:
        yield server


@pytest.fixture
def event_collector() -> Generator[EventCollector, None, None]:
    """
    Fixture for capturing and asserting event sequences.

    Usage:
        def test_example(event_collector):
            session = TransportSession(event_collector=event_collector)
            ...
            assert event_collector.get_by_type("CONNECT")
    """
    collector = EventCollector()
    yield collector
    collector.clear()


@pytest.fixture
def trust_store() -> TrustStore:
    return TrustStore(MemoryStorage())


@pytest.fixture
def temp_jsonl_path(tmp_path: Path) -> Path:
    """Provide a temporary path for JSONL event log output."""
    return tmp_path / "events.jsonl"

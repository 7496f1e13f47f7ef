"""
Testing utilities for pocket-ssh.

Provides MockSSHServer for integration tests against a real SSH handshake.
"""
from pocket_ssh.testing.mock_server import AuthAttempt, MockServerConfig, MockSSHServer

__all__ = ["AuthAttempt", "MockSSHServer", "MockServerConfig"]

"""
Wiring for a terminal front end.

ClientServices holds what every session shares: settings, the host key
trust store, the credential source and event sinks. Build it once with
create_services() at process start and hand it to each TerminalClient.

TerminalClient binds one ServerProfile to a TransportSession plus a
ReconnectController and exposes the few operations a terminal view needs.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from pocket_ssh.config import ClientConfig, load_config
from pocket_ssh.credentials import (
    Credential,
    CredentialSource,
    CredentialStore,
    KeyringCredentialStore,
)
from pocket_ssh.events import EventCollector
from pocket_ssh.host_key import JSONFileStorage, TrustStore
from pocket_ssh.keys import TerminalKey, control_character, encode_text
from pocket_ssh.models import ServerProfile
from pocket_ssh.platform import CONFIG_FILENAME, TRUST_STORE_FILENAME, get_state_dir
from pocket_ssh.prompt import HostKeyPromptBridge, PromptHandler
from pocket_ssh.reconnect import ReconnectController
from pocket_ssh.session import ConnectionState, TransportSession

logger = logging.getLogger(__name__)


@dataclass
class ClientServices:
    config: ClientConfig
    trust_store: TrustStore
    credentials: CredentialSource
    event_collector: EventCollector | None = None
    event_log_path: str | None = None


def create_services(
    state_dir: Path | str | None = None,
    credential_store: CredentialStore | None = None,
    config: ClientConfig | None = None,
    event_collector: EventCollector | None = None,
    event_log_path: str | None = None,
) -> ClientServices:
    """
    Build the shared services.

    Args:
        state_dir: Where the trust store and config file live; defaults
            to get_state_dir()
        credential_store: Defaults to the OS keychain
        config: Overrides the config file
    """
    state_dir = Path(state_dir) if state_dir is not None else get_state_dir()
    if config is None:
        config = load_config(state_dir / CONFIG_FILENAME)

    if credential_store is None:
        credential_store = KeyringCredentialStore()

    return ClientServices(
        config=config,
        trust_store=TrustStore(JSONFileStorage(state_dir / TRUST_STORE_FILENAME)),
        credentials=CredentialSource(credential_store),
        event_collector=event_collector,
        event_log_path=event_log_path,
    )


@dataclass
class ClientCallbacks:
    """Front-end hooks. All run on the session's loop thread."""
    on_data: Callable[[bytes], None] | None = None
    on_state_changed: Callable[[ConnectionState, str | None], None] | None = None
    on_connection_lost: Callable[[str], None] | None = None
    on_reconnecting: Callable[[int, int], None] | None = None
    on_reconnected: Callable[[], None] | None = None


ProfileSaver = Callable[[ServerProfile], None]


class TerminalClient:
    """
    One terminal view's connection to one saved server.

    Usage:
        client = TerminalClient(profile, services, prompt_handler=ask_user,
                                callbacks=ClientCallbacks(on_data=view.feed))
        await client.connect()
        client.send_text("uptime\\r")
        client.send_key(TerminalKey.UP)
        client.resize(100, 30)
        client.disconnect()
        client.close()
    """

    def __init__(
        self,
        profile: ServerProfile,
        services: ClientServices,
        prompt_handler: PromptHandler | None = None,
        callbacks: ClientCallbacks | None = None,
        profile_saver: ProfileSaver | None = None,
    ) -> None:
        self._profile = profile
        self._services = services
        self._profile_saver = profile_saver
        self._credential: Credential | None = None
        callbacks = callbacks or ClientCallbacks()

        session_config = services.config.session
        self._session = TransportSession(
            trust_store=services.trust_store,
            config=session_config,
            prompt_bridge=HostKeyPromptBridge(
                prompt_handler, timeout_sec=session_config.host_key_decision_timeout_sec
            ),
            credential_source=services.credentials,
            event_collector=services.event_collector,
            event_log_path=services.event_log_path,
            name=f"pocket-ssh-{profile.display_host}",
        )
        self._session.on_data = callbacks.on_data
        self._session.on_state_changed = callbacks.on_state_changed

        self._controller = ReconnectController(
            self._session,
            services.config.reconnect,
            on_connection_lost=callbacks.on_connection_lost,
            on_reconnecting=callbacks.on_reconnecting,
            on_reconnected=callbacks.on_reconnected,
            event_collector=services.event_collector,
            event_log_path=services.event_log_path,
        )

    @property
    def profile(self) -> ServerProfile:
        return self._profile

    @property
    def session(self) -> TransportSession:
        return self._session

    @property
    def controller(self) -> ReconnectController:
        return self._controller

    @property
    def state(self) -> ConnectionState:
        return self._session.state

    @property
    def status_text(self) -> str:
        return self._session.status_text

    async def connect(self, one_time_password: str | None = None) -> None:
        """
        Connect with the profile's stored credential, or a one-time password.

        On success the profile's last_connected_at is updated and handed
        to the profile saver.
        """
        self._discard_credential()
        if one_time_password is not None:
            self._credential = self._services.credentials.resolve(
                self._profile, one_time_password
            )

        await self._controller.connect(
            self._profile.to_target(), self._credential, profile=self._profile
        )

        self._profile.touch()
        if self._profile_saver is not None:
            self._profile_saver(self._profile)
        logger.info("Connected to %s (%s)", self._profile.name, self._profile.display_host)

    def disconnect(self) -> None:
        self._controller.disconnect()

    def send_text(self, text: str) -> None:
        self._session.send(encode_text(text))

    def send_key(self, key: TerminalKey) -> None:
        self._session.send(key.sequence)

    def send_control(self, letter: str) -> None:
        self._session.send(control_character(letter))

    def resize(self, cols: int, rows: int) -> None:
        self._session.resize(cols, rows)

    def close(self) -> None:
        """Disconnect, stop the session thread and drop any one-time secret."""
        self._controller.disconnect()
        self._session.close()
        self._controller.close()
        self._discard_credential()

    def _discard_credential(self) -> None:
        credential, self._credential = self._credential, None
        if credential is not None:
            credential.discard()

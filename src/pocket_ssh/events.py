"""
Structured session events for pocket-ssh.

Sessions and reconnect controllers emit one event per lifecycle step so a
terminal front end (or a test) can reconstruct what happened without
scraping log text.

Event types:
- CONNECT: connection initiated / TCP established / shell ready
- AUTH: credential offered, accepted or rejected
- HOST_KEY: host key classified and the trust decision taken
- SHELL: pty and shell channel opened
- STATE_CHANGE: session state machine transition
- DISCONNECT: session ended, with a DisconnectReason
- RECONNECT: automatic reconnection attempt, success or give-up
- ERROR: any failure surfaced to the caller

Secrets never appear in event data.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any, Iterator

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    CONNECT = "CONNECT"
    AUTH = "AUTH"
    HOST_KEY = "HOST_KEY"
    SHELL = "SHELL"
    STATE_CHANGE = "STATE_CHANGE"
    DISCONNECT = "DISCONNECT"
    RECONNECT = "RECONNECT"
    ERROR = "ERROR"


_EVENT_TYPES = frozenset(t.value for t in EventType)


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class Event:
    """One lifecycle step; timestamp is Unix epoch milliseconds."""
    event_type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=_now_ms)

    def __post_init__(self) -> None:
        if isinstance(self.event_type, EventType):
            self.event_type = self.event_type.value
        assert self.event_type in _EVENT_TYPES, (
            f"Unknown event type {self.event_type!r}, expected one of {sorted(_EVENT_TYPES)}"
        )
        assert self.timestamp > 0, f"Timestamp must be positive, got {self.timestamp}"

    def to_dict(self) -> dict[str, Any]:
        return {"event_type": self.event_type, "timestamp": self.timestamp, "data": self.data}

    def to_json(self) -> str:
        # Enums and paths in data are written as their str() form
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Event":
        return cls(raw["event_type"], dict(raw.get("data") or {}), raw["timestamp"])

    @classmethod
    def from_json(cls, line: str) -> "Event":
        return cls.from_dict(json.loads(line))


class EventCollector:
    """
    In-memory sink, mainly for tests.

    Sessions emit from their own loop thread, so every access takes a lock
    and readers get snapshots.
    """

    def __init__(self) -> None:
        self._events: list[Event] = []
        self._lock = threading.Lock()

    def record(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[Event]:
        with self._lock:
            return list(self._events)

    def get_by_type(self, event_type: str | EventType) -> list[Event]:
        wanted = EventType(event_type).value
        return [event for event in self.events if event.event_type == wanted]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class JSONLEventLog:
    """
    Append-only JSONL sink.

    The file is opened on the first event, so an emitter that never emits
    leaves no file behind. Several logs may append to the same path.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._file: IO[str] | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def record(self, event: Event) -> None:
        with self._lock:
            if self._file is None:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._file = self._path.open("a", encoding="utf-8")
            self._file.write(event.to_json() + "\n")
            self._file.flush()

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None


class EventEmitter:
    """
    Builds events and fans them out to the configured sinks.

    Usage:
        emitter = EventEmitter(collector=EventCollector(), jsonl_path="session.jsonl")
        emitter.emit(EventType.CONNECT, status="initiating", host="example.com")
        emitter.close()
    """

    def __init__(
        self,
        collector: EventCollector | None = None,
        jsonl_path: Path | str | None = None,
    ) -> None:
        self._collector = collector
        self._log = JSONLEventLog(jsonl_path) if jsonl_path else None

    def emit(self, event_type: str | EventType, **data: Any) -> Event:
        event = Event(event_type, data)
        logger.debug("%s %s", event.event_type, data)
        if self._collector is not None:
            self._collector.record(event)
        if self._log is not None:
            self._log.record(event)
        return event

    @contextmanager
    def timed_event(
        self,
        event_type: str | EventType,
        **data: Any,
    ) -> Iterator[dict[str, Any]]:
        """
        Emit one event when the block exits, with its duration_ms.

        The yielded dict is the event data; fill in status inside the
        block. The event is emitted even if the block raises.
        """
        started = time.monotonic()
        try:
            yield data
        finally:
            data["duration_ms"] = round((time.monotonic() - started) * 1000, 3)
            self.emit(event_type, **data)

    def close(self) -> None:
        if self._log is not None:
            self._log.close()


def read_jsonl_events(path: Path | str) -> list[Event]:
    """Load every event from a JSONL log, skipping blank lines."""
    with Path(path).open("r", encoding="utf-8") as f:
        return [Event.from_json(line) for line in f if line.strip()]

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

from lockerlease.core.errors import BusUnavailable
from lockerlease.core.gateways.command_bus import CommandBus, StatusHandler

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PublishedMessage:
    topic: str
    payload: dict[str, Any]


class InMemoryCommandBus(CommandBus):
    """
    In-process bus used when no broker is configured. Keeps what was published so it can be
    inspected, and lets inbound device reports be injected with `deliver`.
    """

    def __init__(self, *, connected: bool = True) -> None:
        self._connected = connected
        self._lock = threading.Lock()
        self._published: list[PublishedMessage] = []
        self._handlers: dict[str, list[StatusHandler]] = {}

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def published(self) -> list[PublishedMessage]:
        with self._lock:
            return list(self._published)

    def connect(self) -> None:
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    def reset(self) -> None:
        with self._lock:
            self._published.clear()
            self._handlers.clear()
        self._connected = True

    def publish(self, topic: str, payload: dict[str, Any]) -> bool:
        if not self._connected:
            raise BusUnavailable("In-memory bus is disconnected")
        with self._lock:
            self._published.append(PublishedMessage(topic=topic, payload=dict(payload)))
        logger.debug("in_memory_publish", extra={"topic": topic})
        return True

    def subscribe(self, topic: str, handler: StatusHandler) -> None:
        with self._lock:
            self._handlers.setdefault(topic, []).append(handler)

    def deliver(self, topic: str, payload: dict[str, Any]) -> int:
        """Simulate an inbound message. Returns how many handlers saw it."""
        with self._lock:
            handlers = list(self._handlers.get(topic, ()))
        for handler in handlers:
            handler(topic, payload)
        return len(handlers)

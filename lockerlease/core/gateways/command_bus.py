from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

StatusHandler = Callable[[str, dict[str, Any]], None]


class CommandBus(ABC):
    """
    Publish/subscribe primitive towards the locker hardware.

    Acceptance by `publish` only means the client took the message; the device never acknowledges.
    """

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def connect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def disconnect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def publish(self, topic: str, payload: dict[str, Any]) -> bool:
        """Raises BusUnavailable when not connected."""
        raise NotImplementedError

    @abstractmethod
    def subscribe(self, topic: str, handler: StatusHandler) -> None:
        """Register `handler(topic, payload)` for inbound messages on `topic`."""
        raise NotImplementedError

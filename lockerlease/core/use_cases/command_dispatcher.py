from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from lockerlease.core.entities.command import Command, CommandKind
from lockerlease.core.errors import BusUnavailable
from lockerlease.core.gateways.command_bus import CommandBus, StatusHandler

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CommandDispatcher:
    """
    Best-effort translation of lease decisions into actuator commands.

    Returns whether the bus client accepted the publish. A disconnected bus fails fast; nothing is
    queued or retried and the caller's state transition is never rolled back.
    """

    def __init__(
        self,
        *,
        bus: CommandBus,
        topic_prefix: str = "smartlocker",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._bus = bus
        self._topic_prefix = topic_prefix.rstrip("/")
        self._clock = clock

    def topic(self, locker_id: str, channel: str) -> str:
        return f"{self._topic_prefix}/locker/{locker_id}/{channel}"

    def send_lock(self, locker_id: str) -> bool:
        return self._send(Command(CommandKind.LOCK, locker_id, self._clock()))

    def send_unlock(self, locker_id: str, context: Mapping[str, Any] | None = None) -> bool:
        return self._send(Command(CommandKind.UNLOCK, locker_id, self._clock(), dict(context or {})))

    def subscribe_status(self, locker_id: str, handler: StatusHandler) -> None:
        self._bus.subscribe(self.topic(locker_id, "status"), handler)

    def _send(self, command: Command) -> bool:
        topic = self.topic(command.locker_id, command.kind.value.lower())
        if not self._bus.is_connected:
            logger.warning(
                "command_bus_unavailable",
                extra={"locker_id": command.locker_id, "command": command.kind.value, "topic": topic},
            )
            return False

        try:
            accepted = self._bus.publish(topic, command.to_payload())
        except BusUnavailable as e:
            logger.warning(
                "command_bus_unavailable",
                extra={
                    "locker_id": command.locker_id,
                    "command": command.kind.value,
                    "topic": topic,
                    "error": str(e),
                },
            )
            return False

        if accepted:
            logger.info("command_published", extra={"locker_id": command.locker_id, "command": command.kind.value})
        else:
            logger.warning("command_rejected", extra={"locker_id": command.locker_id, "command": command.kind.value})
        return accepted

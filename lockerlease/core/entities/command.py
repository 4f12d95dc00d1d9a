from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class CommandKind(str, Enum):
    LOCK = "LOCK"
    UNLOCK = "UNLOCK"


@dataclass(frozen=True, slots=True)
class Command:
    """
    Level-triggered actuator directive. Never persisted; repeated delivery is harmless.
    """
    kind: CommandKind
    locker_id: str
    timestamp: datetime
    extra_context: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            **self.extra_context,
            "command": self.kind.value,
            "locker_id": self.locker_id,
            "timestamp": self.timestamp.isoformat(),
        }

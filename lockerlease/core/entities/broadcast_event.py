from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from lockerlease.core.entities.locker import Locker


class BroadcastEventKind(str, Enum):
    CONNECTED = "connected"
    ALLOCATION_UPDATE = "allocation_update"
    LOCKER_STATUS = "locker_status"
    DEVICE_STATUS = "device_status"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True, slots=True)
class BroadcastEvent:
    kind: BroadcastEventKind
    payload: dict[str, Any]

    def to_record(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "payload": self.payload}

    @classmethod
    def connected(cls, subscriber_id: int) -> BroadcastEvent:
        return cls(BroadcastEventKind.CONNECTED, {"subscriber_id": subscriber_id})

    @classmethod
    def allocation_update(
        cls, *, locker_id: str, token: str, expires_at: datetime, qr_content: str
    ) -> BroadcastEvent:
        return cls(
            BroadcastEventKind.ALLOCATION_UPDATE,
            {
                "locker_id": locker_id,
                "token": token,
                "expires_at": _iso(expires_at),
                "qr_content": qr_content,
            },
        )

    @classmethod
    def locker_status(cls, locker: Locker) -> BroadcastEvent:
        return cls(
            BroadcastEventKind.LOCKER_STATUS,
            {
                "locker_id": locker.locker_id,
                "state": locker.state.value,
                "last_opened_at": _iso(locker.last_opened_at),
            },
        )

    @classmethod
    def device_status(cls, locker_id: str, report: dict[str, Any]) -> BroadcastEvent:
        return cls(BroadcastEventKind.DEVICE_STATUS, {"locker_id": locker_id, "report": report})

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_PATTERN = re.compile(r"^(?P<locker_id>[^:]+):TOKEN_(?P<token>[^:]+):EXP_(?P<expires_at_ms>\d+)$")


def to_epoch_ms(value: datetime) -> int:
    return (value - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=value)


@dataclass(frozen=True, slots=True)
class QrContent:
    """
    Payload rendered into the QR code handed to the courier:
    "<locker_id>:TOKEN_<token>:EXP_<epoch_ms>"
    """
    locker_id: str
    token: str
    expires_at_ms: int

    @property
    def expires_at(self) -> datetime:
        return from_epoch_ms(self.expires_at_ms)

    def encode(self) -> str:
        return f"{self.locker_id}:TOKEN_{self.token}:EXP_{self.expires_at_ms}"

    @classmethod
    def from_lease(cls, locker_id: str, token: str, expires_at: datetime) -> QrContent:
        return cls(locker_id=locker_id, token=token, expires_at_ms=to_epoch_ms(expires_at))

    @classmethod
    def parse(cls, raw: str) -> QrContent:
        match = _PATTERN.match(raw)
        if match is None:
            raise ValueError(f"Malformed QR content: {raw!r}")
        return cls(
            locker_id=match.group("locker_id"),
            token=match.group("token"),
            expires_at_ms=int(match.group("expires_at_ms")),
        )

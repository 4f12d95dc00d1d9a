from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class LockerState(str, Enum):
    AVAILABLE = "AVAILABLE"
    LEASED = "LEASED"
    OCCUPIED = "OCCUPIED"
    MAINTENANCE = "MAINTENANCE"


# Record fields a conditional update may write.
PATCHABLE_FIELDS = frozenset(
    {
        "state",
        "lease_token",
        "lease_issued_at",
        "lease_expires_at",
        "occupant_ref",
        "last_opened_at",
    }
)


def validate_locker_id(locker_id: str) -> str:
    """Raises ValueError if locker_id cannot be embedded in a QR payload."""
    if not isinstance(locker_id, str) or not locker_id.strip():
        raise ValueError("locker_id must be a non-empty string")
    if ":" in locker_id:
        raise ValueError(f"locker_id {locker_id!r} must not contain ':'")
    return locker_id


@dataclass(frozen=True, slots=True)
class Lease:
    token: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def fields(self) -> dict[str, Any]:
        return {
            "lease_token": self.token,
            "lease_issued_at": self.issued_at,
            "lease_expires_at": self.expires_at,
        }


def cleared_lease_fields() -> dict[str, Any]:
    return {"lease_token": None, "lease_issued_at": None, "lease_expires_at": None}


@dataclass(slots=True)
class Locker:
    locker_id: str
    state: LockerState = LockerState.AVAILABLE
    lease: Lease | None = None
    occupant_ref: str | None = None
    last_opened_at: datetime | None = None

    def lease_lapsed(self, now: datetime) -> bool:
        """True when an unconsumed lease is past its deadline and should be cleared."""
        return self.state is LockerState.LEASED and self.lease is not None and self.lease.is_expired(now)


@dataclass(frozen=True, slots=True)
class LockerCondition:
    """
    Predicate a conditional update must match at write time.

    Empty fields are not checked, so `LockerCondition()` only requires the record to exist.
    """
    states: tuple[LockerState, ...] = ()
    token: str | None = None
    lease_valid_at: datetime | None = None
    lease_expired_at: datetime | None = None

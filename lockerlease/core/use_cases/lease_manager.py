from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, NoReturn

from lockerlease.core.entities.broadcast_event import BroadcastEvent
from lockerlease.core.entities.locker import (
    Lease,
    Locker,
    LockerCondition,
    LockerState,
    cleared_lease_fields,
)
from lockerlease.core.entities.qr_content import QrContent
from lockerlease.core.errors import (
    InvalidLockerState,
    LeaseNotFound,
    LockerNotFound,
    OccupantNotFound,
    ResourceExhausted,
    TokenExpired,
    TokenMismatch,
)
from lockerlease.core.repositories.locker_repository import LockerRepository
from lockerlease.core.use_cases.command_dispatcher import CommandDispatcher
from lockerlease.core.use_cases.event_fanout import EventFanout

logger = logging.getLogger(__name__)

DEFAULT_LEASE_TTL = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _truncate_to_ms(value: datetime) -> datetime:
    return value.replace(microsecond=value.microsecond - value.microsecond % 1000)


@dataclass(frozen=True, slots=True)
class Allocation:
    locker_id: str
    token: str
    expires_at: datetime

    @property
    def qr_content(self) -> str:
        return QrContent.from_lease(self.locker_id, self.token, self.expires_at).encode()


@dataclass(frozen=True, slots=True)
class UnlockResult:
    """Logical outcome (always a successful transition) plus the separate physical dispatch outcome."""
    locker_id: str
    state: LockerState
    dispatched: bool


class LeaseManager:
    """
    Owns every locker state transition.

    Each transition is a single conditional write against the record store; correctness under
    concurrent callers comes from the store predicate, never from an in-process lock.
    """

    def __init__(
        self,
        *,
        locker_repo: LockerRepository,
        dispatcher: CommandDispatcher,
        fanout: EventFanout,
        lease_ttl: timedelta = DEFAULT_LEASE_TTL,
        token_bytes: int = 16,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._locker_repo = locker_repo
        self._dispatcher = dispatcher
        self._fanout = fanout
        self._lease_ttl = lease_ttl
        self._token_bytes = token_bytes
        self._clock = clock

    # -----------------------------
    # Allocation and consumption
    # -----------------------------
    def allocate_next(self) -> Allocation:
        """
        AVAILABLE -> LEASED on the lowest available locker_id.

        Single shot: losing the race for the chosen locker raises ResourceExhausted rather than
        trying the next candidate.
        """
        now = self._clock()
        self.expire_stale()

        locker_id = self._locker_repo.first_id_in_state(LockerState.AVAILABLE)
        if locker_id is None:
            raise ResourceExhausted("No AVAILABLE locker")

        lease = Lease(
            token=secrets.token_hex(self._token_bytes),
            issued_at=now,
            expires_at=_truncate_to_ms(now + self._lease_ttl),
        )
        claimed = self._locker_repo.update_where(
            locker_id,
            LockerCondition(states=(LockerState.AVAILABLE,)),
            {"state": LockerState.LEASED, **lease.fields()},
        )
        if not claimed:
            logger.info("allocation_race_lost", extra={"locker_id": locker_id})
            raise ResourceExhausted(f"Locker {locker_id!r} was claimed concurrently")

        allocation = Allocation(locker_id=locker_id, token=lease.token, expires_at=lease.expires_at)
        logger.info("locker_leased", extra={"locker_id": locker_id, "expires_at": lease.expires_at.isoformat()})
        self._fanout.broadcast(
            BroadcastEvent.allocation_update(
                locker_id=locker_id,
                token=allocation.token,
                expires_at=allocation.expires_at,
                qr_content=allocation.qr_content,
            )
        )
        return allocation

    def consume(self, locker_id: str, token: str, context: Mapping[str, Any] | None = None) -> UnlockResult:
        """
        LEASED -> OCCUPIED when `token` matches the unexpired lease, then a best-effort UNLOCK.

        The transition stands even if the UNLOCK publish is not accepted.
        """
        now = self._clock()
        consumed = self._locker_repo.update_where(
            locker_id,
            LockerCondition(states=(LockerState.LEASED,), token=token, lease_valid_at=now),
            {"state": LockerState.OCCUPIED, "last_opened_at": now, **cleared_lease_fields()},
        )
        if not consumed:
            self._raise_consume_failure(locker_id, token, now)

        dispatched = self._dispatcher.send_unlock(locker_id, context)
        logger.info("lease_consumed", extra={"locker_id": locker_id, "dispatched": dispatched})
        self._broadcast_status(locker_id)
        return UnlockResult(locker_id=locker_id, state=LockerState.OCCUPIED, dispatched=dispatched)

    def lock(self, locker_id: str) -> bool:
        """Best-effort LOCK command; lease state is untouched."""
        self._require(locker_id)
        return self._dispatcher.send_lock(locker_id)

    # -----------------------------
    # Release and occupancy
    # -----------------------------
    def release(self, locker_id: str) -> Locker:
        """OCCUPIED/LEASED -> AVAILABLE. Releasing an AVAILABLE locker is a no-op."""
        locker = self._require(locker_id)
        if locker.state is LockerState.AVAILABLE:
            return locker
        if locker.state is LockerState.MAINTENANCE:
            raise InvalidLockerState(f"Locker {locker_id!r} is under maintenance")

        released = self._locker_repo.update_where(
            locker_id,
            LockerCondition(states=(LockerState.OCCUPIED, LockerState.LEASED)),
            {"state": LockerState.AVAILABLE, "occupant_ref": None, **cleared_lease_fields()},
        )
        current = self._require(locker_id)
        if not released:
            if current.state is LockerState.AVAILABLE:
                return current
            raise InvalidLockerState(f"Locker {locker_id!r} cannot be released from {current.state.value}")

        logger.info("locker_released", extra={"locker_id": locker_id})
        self._fanout.broadcast(BroadcastEvent.locker_status(current))
        return current

    def release_by_occupant(self, occupant_ref: str) -> Locker:
        locker = self._locker_repo.find_by_occupant(occupant_ref)
        if locker is None:
            raise OccupantNotFound(f"No locker holds occupant {occupant_ref!r}")
        return self.release(locker.locker_id)

    def assign_occupant(self, locker_id: str, occupant_ref: str) -> Locker:
        assigned = self._locker_repo.update_where(
            locker_id,
            LockerCondition(states=(LockerState.OCCUPIED,)),
            {"occupant_ref": occupant_ref},
        )
        current = self._require(locker_id)
        if not assigned:
            raise InvalidLockerState(f"Locker {locker_id!r} is {current.state.value}, not OCCUPIED")
        return current

    # -----------------------------
    # Administrative override
    # -----------------------------
    def enter_maintenance(self, locker_id: str) -> Locker:
        if not self._locker_repo.update_where(
            locker_id,
            LockerCondition(),
            {"state": LockerState.MAINTENANCE, **cleared_lease_fields()},
        ):
            raise LockerNotFound(f"Locker {locker_id!r} not found")
        logger.info("locker_maintenance_entered", extra={"locker_id": locker_id})
        return self._broadcast_status(locker_id)

    def exit_maintenance(self, locker_id: str) -> Locker:
        if not self._locker_repo.update_where(
            locker_id,
            LockerCondition(states=(LockerState.MAINTENANCE,)),
            {"state": LockerState.AVAILABLE, "occupant_ref": None, **cleared_lease_fields()},
        ):
            current = self._require(locker_id)
            raise InvalidLockerState(f"Locker {locker_id!r} is {current.state.value}, not MAINTENANCE")
        logger.info("locker_maintenance_exited", extra={"locker_id": locker_id})
        return self._broadcast_status(locker_id)

    # -----------------------------
    # Reads with lazy expiry
    # -----------------------------
    def get_locker(self, locker_id: str) -> Locker:
        locker = self._require(locker_id)
        if self._expire_lease(locker, self._clock()):
            return self._require(locker_id)
        return locker

    def list_lockers(self) -> list[Locker]:
        now = self._clock()
        lockers = self._locker_repo.list_all()
        expired = [self._expire_lease(locker, now) for locker in lockers]
        if any(expired):
            return self._locker_repo.list_all()
        return lockers

    def expire_stale(self) -> int:
        """Revert every lapsed, unconsumed lease to AVAILABLE. Returns the number reverted."""
        now = self._clock()
        return sum(
            1 for locker in self._locker_repo.list_all(state=LockerState.LEASED) if self._expire_lease(locker, now)
        )

    # -----------------------------
    # Internal helpers
    # -----------------------------
    def _require(self, locker_id: str) -> Locker:
        locker = self._locker_repo.get(locker_id)
        if locker is None:
            raise LockerNotFound(f"Locker {locker_id!r} not found")
        return locker

    def _expire_lease(self, locker: Locker, now: datetime) -> bool:
        if not locker.lease_lapsed(now):
            return False
        expired = self._locker_repo.update_where(
            locker.locker_id,
            LockerCondition(states=(LockerState.LEASED,), token=locker.lease.token, lease_expired_at=now),
            {"state": LockerState.AVAILABLE, **cleared_lease_fields()},
        )
        if expired:
            logger.info("lease_expired", extra={"locker_id": locker.locker_id})
            self._broadcast_status(locker.locker_id)
        return expired

    def _broadcast_status(self, locker_id: str) -> Locker:
        locker = self._require(locker_id)
        self._fanout.broadcast(BroadcastEvent.locker_status(locker))
        return locker

    def _raise_consume_failure(self, locker_id: str, token: str, now: datetime) -> NoReturn:
        locker = self._require(locker_id)
        if locker.state is not LockerState.LEASED or locker.lease is None:
            raise LeaseNotFound(f"Locker {locker_id!r} has no active lease")

        matches = secrets.compare_digest(locker.lease.token.encode(), token.encode())
        lapsed = locker.lease_lapsed(now)
        if lapsed:
            self._expire_lease(locker, now)
        if not matches:
            raise TokenMismatch(f"Token does not match the lease on locker {locker_id!r}")
        if lapsed:
            raise TokenExpired(f"Lease on locker {locker_id!r} expired at {locker.lease.expires_at.isoformat()}")
        # matched and still valid, so another caller consumed or replaced it between the two reads
        raise LeaseNotFound(f"Locker {locker_id!r} has no active lease")

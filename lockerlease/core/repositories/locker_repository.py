from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from lockerlease.core.entities.locker import Locker, LockerCondition, LockerState


class LockerRepository(ABC):
    """
    Repository interface for the durable Locker record.

    Every state change goes through `update_where`, which must evaluate the condition and apply the
    patch as one atomic write so concurrent callers (possibly in other processes) cannot both win.
    """

    @abstractmethod
    def get(self, locker_id: str) -> Locker | None:
        raise NotImplementedError

    @abstractmethod
    def list_all(self, *, state: LockerState | None = None) -> list[Locker]:
        """Return lockers ordered by locker_id, optionally filtered by state."""
        raise NotImplementedError

    @abstractmethod
    def first_id_in_state(self, state: LockerState) -> str | None:
        """Lowest locker_id (lexicographic) currently in `state`, or None."""
        raise NotImplementedError

    @abstractmethod
    def find_by_occupant(self, occupant_ref: str) -> Locker | None:
        raise NotImplementedError

    @abstractmethod
    def add_if_absent(self, locker: Locker) -> bool:
        """Return True if inserted, False if a record with the same locker_id exists."""
        raise NotImplementedError

    @abstractmethod
    def update_where(self, locker_id: str, condition: LockerCondition, patch: dict[str, Any]) -> bool:
        """Apply `patch` only if the record matches `condition` at write time. Return True if applied."""
        raise NotImplementedError

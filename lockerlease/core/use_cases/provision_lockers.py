from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from lockerlease.core.entities.locker import Locker, validate_locker_id
from lockerlease.core.repositories.locker_repository import LockerRepository


@dataclass(frozen=True, slots=True)
class ProvisionResult:
    created: tuple[str, ...]
    existing: tuple[str, ...]


class ProvisionLockersUseCase:
    """
    Create the fixed set of locker records. Existing records are left exactly as they are,
    so running it on every startup is safe.
    """

    def __init__(self, *, locker_repo: LockerRepository) -> None:
        self._locker_repo = locker_repo

    def execute(self, locker_ids: Iterable[str]) -> ProvisionResult:
        created: list[str] = []
        existing: list[str] = []
        for locker_id in locker_ids:
            validate_locker_id(locker_id)
            if self._locker_repo.add_if_absent(Locker(locker_id=locker_id)):
                created.append(locker_id)
            else:
                existing.append(locker_id)
        return ProvisionResult(created=tuple(created), existing=tuple(existing))

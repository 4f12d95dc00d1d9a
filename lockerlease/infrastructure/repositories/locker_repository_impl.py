from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from lockerlease.core.entities.locker import (
    PATCHABLE_FIELDS,
    Lease,
    Locker,
    LockerCondition,
    LockerState,
)
from lockerlease.core.errors import StoreUnavailable
from lockerlease.core.repositories.locker_repository import LockerRepository
from lockerlease.infrastructure.models.models import LockerModel


class LockerRepositoryImpl(LockerRepository):
    """
    SQLAlchemy implementation for the Locker record.

    `update_where` is one UPDATE statement whose WHERE clause carries the condition, so the
    database decides the winner when several callers race for the same row.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, locker_id: str) -> Locker | None:
        stmt = select(LockerModel).where(LockerModel.locker_id == locker_id)
        row = self._read(lambda: self._db.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none())
        return self._to_entity(row) if row is not None else None

    def list_all(self, *, state: LockerState | None = None) -> list[Locker]:
        stmt = select(LockerModel).order_by(LockerModel.locker_id)
        if state is not None:
            stmt = stmt.where(LockerModel.state == state)
        rows = self._read(lambda: self._db.execute(stmt.execution_options(populate_existing=True)).scalars().all())
        return [self._to_entity(row) for row in rows]

    def first_id_in_state(self, state: LockerState) -> str | None:
        stmt = (
            select(LockerModel.locker_id)
            .where(LockerModel.state == state)
            .order_by(LockerModel.locker_id)
            .limit(1)
        )
        return self._read(lambda: self._db.execute(stmt).scalar_one_or_none())

    def find_by_occupant(self, occupant_ref: str) -> Locker | None:
        stmt = (
            select(LockerModel)
            .where(LockerModel.occupant_ref == occupant_ref)
            .order_by(LockerModel.locker_id)
            .limit(1)
        )
        row = self._read(lambda: self._db.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none())
        return self._to_entity(row) if row is not None else None

    def add_if_absent(self, locker: Locker) -> bool:
        if self.get(locker.locker_id) is not None:
            return False

        self._db.add(
            LockerModel(
                locker_id=locker.locker_id,
                state=locker.state,
                occupant_ref=locker.occupant_ref,
                last_opened_at=locker.last_opened_at,
                **(locker.lease.fields() if locker.lease is not None else {}),
            )
        )
        try:
            self._db.commit()
        except IntegrityError:
            # provisioned by another process in the meantime
            self._db.rollback()
            return False
        except SQLAlchemyError as e:
            self._db.rollback()
            raise StoreUnavailable(f"Could not provision locker {locker.locker_id!r}") from e
        return True

    def update_where(self, locker_id: str, condition: LockerCondition, patch: dict[str, Any]) -> bool:
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch locker fields: {sorted(unknown)}")

        stmt = (
            update(LockerModel)
            .where(LockerModel.locker_id == locker_id, *self._predicates(condition))
            .values(**patch, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        try:
            result = self._db.execute(stmt)
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise StoreUnavailable(f"Could not update locker {locker_id!r}") from e
        return result.rowcount == 1

    # -----------------------------
    # Internal helpers
    # -----------------------------
    def _read(self, query):
        try:
            return query()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise StoreUnavailable("Could not read locker records") from e

    @staticmethod
    def _predicates(condition: LockerCondition) -> list:
        predicates = []
        if condition.states:
            predicates.append(LockerModel.state.in_(condition.states))
        if condition.token is not None:
            predicates.append(LockerModel.lease_token == condition.token)
        if condition.lease_valid_at is not None:
            predicates.append(LockerModel.lease_expires_at > condition.lease_valid_at)
        if condition.lease_expired_at is not None:
            predicates.append(LockerModel.lease_expires_at <= condition.lease_expired_at)
        return predicates

    @staticmethod
    def _to_entity(row: LockerModel) -> Locker:
        lease = None
        if row.lease_token is not None and row.lease_expires_at is not None:
            lease = Lease(
                token=row.lease_token,
                issued_at=row.lease_issued_at or row.lease_expires_at,
                expires_at=row.lease_expires_at,
            )

        return Locker(
            locker_id=row.locker_id,
            state=LockerState(row.state) if not isinstance(row.state, LockerState) else row.state,
            lease=lease,
            occupant_ref=row.occupant_ref,
            last_opened_at=row.last_opened_at,
        )

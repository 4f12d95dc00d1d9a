from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, String, TypeDecorator
from sqlalchemy.orm import Mapped, mapped_column

from lockerlease.core.entities.locker import LockerState
from lockerlease.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Stores naive UTC and hands back aware UTC datetimes, so comparisons against the lease
    deadline behave the same on SQLite and on servers with native timezone support.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes are not accepted; pass an aware UTC datetime")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class LockerModel(Base):
    __tablename__ = "lockers"

    locker_id: Mapped[str] = mapped_column(String, primary_key=True)
    state: Mapped[LockerState] = mapped_column(
        Enum(LockerState), nullable=False, default=LockerState.AVAILABLE, index=True
    )
    lease_token: Mapped[str | None] = mapped_column(String, nullable=True)
    lease_issued_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    occupant_ref: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    last_opened_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator

# every test session gets its own database file, configured before the engine is built
os.environ.setdefault(
    "LOCKERLEASE_DATABASE_URL",
    f"sqlite+pysqlite:///{Path(tempfile.mkdtemp(prefix='lockerlease-tests-')) / 'lockers.db'}",
)

import pytest
from sqlalchemy import delete
from sqlalchemy.orm import Session

from lockerlease.core.use_cases.command_dispatcher import CommandDispatcher
from lockerlease.core.use_cases.event_fanout import EventFanout
from lockerlease.core.use_cases.lease_manager import LeaseManager
from lockerlease.core.use_cases.provision_lockers import ProvisionLockersUseCase
from lockerlease.infrastructure.bus.in_memory_command_bus import InMemoryCommandBus
from lockerlease.infrastructure.database import Base, SessionLocal, engine
from lockerlease.infrastructure.models.models import LockerModel
from lockerlease.infrastructure.repositories.locker_repository_impl import LockerRepositoryImpl
from lockerlease.services.locker_service import get_command_bus, get_event_fanout


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _reset_lockers_and_bus_before_each_test() -> Iterator[None]:
    """
    Ensure tests don't leak lockers into each other via the shared test database.
    """
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        db.execute(delete(LockerModel))
        db.commit()
    finally:
        db.close()

    bus = get_command_bus()
    if isinstance(bus, InMemoryCommandBus):
        bus.reset()
    yield


@pytest.fixture()
def db() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def provision(db: Session) -> Callable[..., None]:
    def _provision(*locker_ids: str) -> None:
        ProvisionLockersUseCase(locker_repo=LockerRepositoryImpl(db)).execute(locker_ids)

    return _provision


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def bus() -> InMemoryCommandBus:
    return InMemoryCommandBus()


@pytest.fixture()
def fanout() -> EventFanout:
    return EventFanout(queue_size=8)


@pytest.fixture()
def manager(db: Session, bus: InMemoryCommandBus, fanout: EventFanout, clock: FakeClock) -> LeaseManager:
    return LeaseManager(
        locker_repo=LockerRepositoryImpl(db),
        dispatcher=CommandDispatcher(bus=bus, clock=clock),
        fanout=fanout,
        lease_ttl=timedelta(minutes=5),
        clock=clock,
    )


@pytest.fixture()
def shared_bus() -> InMemoryCommandBus:
    """The bus instance the HTTP app dispatches through."""
    bus = get_command_bus()
    assert isinstance(bus, InMemoryCommandBus)
    return bus


@pytest.fixture()
def shared_fanout() -> EventFanout:
    return get_event_fanout()

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import pytest

from lockerlease.core.entities.locker import LockerState
from lockerlease.core.errors import LeaseError, ResourceExhausted
from lockerlease.core.use_cases.command_dispatcher import CommandDispatcher
from lockerlease.core.use_cases.event_fanout import EventFanout
from lockerlease.core.use_cases.lease_manager import LeaseManager
from lockerlease.infrastructure.bus.in_memory_command_bus import InMemoryCommandBus
from lockerlease.infrastructure.database import SessionLocal, _engine_options
from lockerlease.infrastructure.repositories.locker_repository_impl import LockerRepositoryImpl

LOCKER_IDS = tuple(f"L{n:03d}" for n in range(1, 21))


def _new_manager(db) -> LeaseManager:
    return LeaseManager(
        locker_repo=LockerRepositoryImpl(db),
        dispatcher=CommandDispatcher(bus=InMemoryCommandBus()),
        fanout=EventFanout(),
    )


def _run_concurrently(workers: int, call: Callable[[LeaseManager], object]) -> list:
    """
    Every worker opens its own session on the application's SessionLocal, as concurrent requests do.
    """
    barrier = threading.Barrier(workers)

    def _worker(_: int):
        db = SessionLocal()
        try:
            manager = _new_manager(db)
            barrier.wait()
            try:
                return call(manager)
            except LeaseError as e:
                return e
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(_worker, range(workers)))


def _stored_leases() -> dict[str, str]:
    db = SessionLocal()
    try:
        return {
            locker.locker_id: locker.lease.token
            for locker in LockerRepositoryImpl(db).list_all(state=LockerState.LEASED)
        }
    finally:
        db.close()


@pytest.mark.parametrize("round_", range(3))
def test_concurrent_allocations_hand_out_only_stored_leases(provision, round_: int) -> None:
    provision(*LOCKER_IDS)

    results = _run_concurrently(30, lambda manager: manager.allocate_next())

    allocations = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]

    assert 1 <= len(allocations) <= len(LOCKER_IDS)
    assert len({a.locker_id for a in allocations}) == len(allocations)
    assert all(isinstance(f, ResourceExhausted) for f in failures)
    # every caller that got a token holds exactly the lease the store recorded
    assert _stored_leases() == {a.locker_id: a.token for a in allocations}


def test_allocations_stop_after_every_locker_is_leased(provision) -> None:
    provision(*LOCKER_IDS[:5])
    results = _run_concurrently(8, lambda manager: manager.allocate_next())
    claimed = {r.locker_id for r in results if not isinstance(r, Exception)}

    db = SessionLocal()
    try:
        manager = _new_manager(db)
        while True:
            try:
                allocation = manager.allocate_next()
            except ResourceExhausted:
                break
            assert allocation.locker_id not in claimed
            claimed.add(allocation.locker_id)
    finally:
        db.close()

    assert claimed == set(LOCKER_IDS[:5])


def test_concurrent_consume_with_same_token_succeeds_once(provision) -> None:
    provision("L001")
    db = SessionLocal()
    try:
        allocation = _new_manager(db).allocate_next()
    finally:
        db.close()

    results = _run_concurrently(6, lambda worker: worker.consume(allocation.locker_id, allocation.token))

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 5
    assert all(isinstance(f, LeaseError) for f in failures)


def test_in_memory_sqlite_is_rejected() -> None:
    with pytest.raises(ValueError):
        _engine_options("sqlite+pysqlite:///:memory:")
    with pytest.raises(ValueError):
        _engine_options("sqlite://")


def test_file_sqlite_gets_a_connection_per_session() -> None:
    options = _engine_options("sqlite+pysqlite:///./lockers.db")

    assert "poolclass" not in options
    assert options["connect_args"] == {"check_same_thread": False, "timeout": 30}

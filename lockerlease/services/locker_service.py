from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache
from typing import Any

from sqlalchemy.orm import Session

from lockerlease.core.entities.broadcast_event import BroadcastEvent
from lockerlease.core.entities.locker import Locker
from lockerlease.core.gateways.command_bus import CommandBus
from lockerlease.core.use_cases.command_dispatcher import CommandDispatcher
from lockerlease.core.use_cases.event_fanout import EventFanout
from lockerlease.core.use_cases.lease_manager import LeaseManager
from lockerlease.core.use_cases.provision_lockers import ProvisionLockersUseCase
from lockerlease.infrastructure.config import settings
from lockerlease.infrastructure.provisioning import load_locker_ids
from lockerlease.infrastructure.repositories.locker_repository_impl import LockerRepositoryImpl
from lockerlease.schemas.models import (
    Allocation,
    LockerStatus,
    LockResult,
    OccupantAssignment,
    UnlockRequest,
    UnlockResult,
)

logger = logging.getLogger(__name__)


@lru_cache
def get_command_bus() -> CommandBus:
    if settings.command_bus_backend == "mqtt":
        from lockerlease.infrastructure.bus.mqtt_command_bus import MqttCommandBus

        return MqttCommandBus(
            broker_url=settings.mqtt_broker_url,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
            qos=settings.mqtt_qos,
        )
    if settings.command_bus_backend == "memory":
        from lockerlease.infrastructure.bus.in_memory_command_bus import InMemoryCommandBus

        return InMemoryCommandBus()
    raise ValueError(f"Unsupported command bus backend: {settings.command_bus_backend!r}")


@lru_cache
def get_command_dispatcher() -> CommandDispatcher:
    return CommandDispatcher(bus=get_command_bus(), topic_prefix=settings.mqtt_topic_prefix)


@lru_cache
def get_event_fanout() -> EventFanout:
    return EventFanout(queue_size=settings.event_queue_size)


def _lease_manager(db: Session) -> LeaseManager:
    return LeaseManager(
        locker_repo=LockerRepositoryImpl(db),
        dispatcher=get_command_dispatcher(),
        fanout=get_event_fanout(),
        lease_ttl=timedelta(seconds=settings.lease_ttl_seconds),
        token_bytes=settings.token_bytes,
    )


def _to_status(locker: Locker) -> LockerStatus:
    return LockerStatus(
        locker_id=locker.locker_id,
        state=locker.state.value,
        lease_expires_at=locker.lease.expires_at if locker.lease is not None else None,
        occupant_ref=locker.occupant_ref,
        last_opened_at=locker.last_opened_at,
    )


def allocate_locker_service(db: Session) -> Allocation:
    allocation = _lease_manager(db).allocate_next()
    return Allocation(
        locker_id=allocation.locker_id,
        token=allocation.token,
        expires_at=allocation.expires_at,
        qr_content=allocation.qr_content,
    )


def unlock_locker_service(locker_id: str, body: UnlockRequest, db: Session) -> UnlockResult:
    result = _lease_manager(db).consume(locker_id, body.token, body.context)
    return UnlockResult(
        locker_id=result.locker_id,
        state=result.state.value,
        unlocked=True,
        dispatched=result.dispatched,
    )


def lock_locker_service(locker_id: str, db: Session) -> LockResult:
    return LockResult(locker_id=locker_id, dispatched=_lease_manager(db).lock(locker_id))


def release_locker_service(locker_id: str, db: Session) -> LockerStatus:
    return _to_status(_lease_manager(db).release(locker_id))


def release_occupant_service(occupant_ref: str, db: Session) -> LockerStatus:
    return _to_status(_lease_manager(db).release_by_occupant(occupant_ref))


def assign_occupant_service(locker_id: str, body: OccupantAssignment, db: Session) -> LockerStatus:
    return _to_status(_lease_manager(db).assign_occupant(locker_id, body.occupant_ref))


def enter_maintenance_service(locker_id: str, db: Session) -> LockerStatus:
    return _to_status(_lease_manager(db).enter_maintenance(locker_id))


def exit_maintenance_service(locker_id: str, db: Session) -> LockerStatus:
    return _to_status(_lease_manager(db).exit_maintenance(locker_id))


def get_locker_service(locker_id: str, db: Session) -> LockerStatus:
    return _to_status(_lease_manager(db).get_locker(locker_id))


def list_lockers_service(db: Session) -> list[LockerStatus]:
    return [_to_status(locker) for locker in _lease_manager(db).list_lockers()]


def expire_stale_leases_service(db: Session) -> int:
    return _lease_manager(db).expire_stale()


def provision_lockers_service(db: Session) -> dict[str, Any]:
    """
    Create the locker records listed in the provisioning file, leaving existing ones untouched
    """
    locker_ids = load_locker_ids(settings.provisioning_path)
    result = ProvisionLockersUseCase(locker_repo=LockerRepositoryImpl(db)).execute(locker_ids)
    logger.info("lockers_provisioned", extra={"created": list(result.created), "existing": list(result.existing)})
    return {"created": list(result.created), "existing": list(result.existing), "locker_ids": locker_ids}


def watch_device_status_service(locker_ids: list[str]) -> None:
    """
    Relay inbound device status reports to connected displays.
    """
    dispatcher = get_command_dispatcher()
    fanout = get_event_fanout()

    for locker_id in locker_ids:
        def _relay(topic: str, report: dict[str, Any], locker_id: str = locker_id) -> None:
            logger.info("device_status", extra={"locker_id": locker_id, "topic": topic})
            fanout.broadcast(BroadcastEvent.device_status(locker_id, report))

        dispatcher.subscribe_status(locker_id, _relay)

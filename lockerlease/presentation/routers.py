from __future__ import annotations

import json
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from lockerlease.core.entities.broadcast_event import BroadcastEvent
from lockerlease.core.errors import (
    InvalidLockerState,
    LeaseError,
    NotFoundError,
    ResourceExhausted,
    StoreUnavailable,
    TokenExpired,
    TokenMismatch,
)
from lockerlease.core.use_cases.event_fanout import EventFanout
from lockerlease.infrastructure.config import settings
from lockerlease.infrastructure.database import SessionLocal
from lockerlease.schemas.models import (
    Allocation,
    LockerStatus,
    LockResult,
    OccupantAssignment,
    UnlockRequest,
    UnlockResult,
)
from lockerlease.services.locker_service import (
    allocate_locker_service,
    assign_occupant_service,
    enter_maintenance_service,
    exit_maintenance_service,
    get_event_fanout,
    get_locker_service,
    list_lockers_service,
    lock_locker_service,
    release_locker_service,
    release_occupant_service,
    unlock_locker_service,
)

router = APIRouter()

_STATUS_CODES: list[tuple[type[Exception], int]] = [
    (NotFoundError, 404),
    (TokenMismatch, 403),
    (TokenExpired, 410),
    (ResourceExhausted, 409),
    (InvalidLockerState, 409),
    (StoreUnavailable, 503),
]


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _http_error(e: Exception) -> HTTPException:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(e, exc_type):
            return HTTPException(status_code=status_code, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


@router.post("/lockers/allocate", response_model=Allocation, status_code=201)
def post_lockers_allocate(db: Session = Depends(get_db)) -> Allocation:
    """
    Lease the next available locker

    Returns:
      - 201 with the token and QR payload
      - 409 if no locker is AVAILABLE
    """
    try:
        return allocate_locker_service(db)
    except (LeaseError, StoreUnavailable) as e:
        raise _http_error(e)


@router.post("/lockers/{locker_id}/unlock", response_model=UnlockResult)
def post_lockers_locker_id_unlock(locker_id: str, body: UnlockRequest, db: Session = Depends(get_db)) -> UnlockResult:
    """
    Consume the lease token and send a best-effort UNLOCK

    `dispatched` reports whether the command bus accepted the UNLOCK; the locker is OCCUPIED either way.
    """
    try:
        return unlock_locker_service(locker_id, body, db)
    except (LeaseError, StoreUnavailable) as e:
        raise _http_error(e)


@router.post("/lockers/{locker_id}/lock", response_model=LockResult, status_code=202)
def post_lockers_locker_id_lock(locker_id: str, db: Session = Depends(get_db)) -> LockResult:
    try:
        return lock_locker_service(locker_id, db)
    except (LeaseError, StoreUnavailable) as e:
        raise _http_error(e)


@router.post("/lockers/{locker_id}/release", response_model=LockerStatus)
def post_lockers_locker_id_release(locker_id: str, db: Session = Depends(get_db)) -> LockerStatus:
    """
    Return the locker to AVAILABLE (idempotent)
    """
    try:
        return release_locker_service(locker_id, db)
    except (LeaseError, StoreUnavailable) as e:
        raise _http_error(e)


@router.post("/occupants/{occupant_ref}/release", response_model=LockerStatus)
def post_occupants_occupant_ref_release(occupant_ref: str, db: Session = Depends(get_db)) -> LockerStatus:
    try:
        return release_occupant_service(occupant_ref, db)
    except (LeaseError, StoreUnavailable) as e:
        raise _http_error(e)


@router.put("/lockers/{locker_id}/occupant", response_model=LockerStatus)
def put_lockers_locker_id_occupant(
    locker_id: str,
    body: OccupantAssignment,
    db: Session = Depends(get_db),
) -> LockerStatus:
    try:
        return assign_occupant_service(locker_id, body, db)
    except (LeaseError, StoreUnavailable) as e:
        raise _http_error(e)


@router.post("/lockers/{locker_id}/maintenance", response_model=LockerStatus)
def post_lockers_locker_id_maintenance(locker_id: str, db: Session = Depends(get_db)) -> LockerStatus:
    try:
        return enter_maintenance_service(locker_id, db)
    except (LeaseError, StoreUnavailable) as e:
        raise _http_error(e)


@router.delete("/lockers/{locker_id}/maintenance", response_model=LockerStatus)
def delete_lockers_locker_id_maintenance(locker_id: str, db: Session = Depends(get_db)) -> LockerStatus:
    try:
        return exit_maintenance_service(locker_id, db)
    except (LeaseError, StoreUnavailable) as e:
        raise _http_error(e)


@router.get("/lockers", response_model=list[LockerStatus])
def get_lockers(db: Session = Depends(get_db)) -> list[LockerStatus]:
    try:
        return list_lockers_service(db)
    except StoreUnavailable as e:
        raise _http_error(e)


@router.get("/lockers/{locker_id}", response_model=LockerStatus)
def get_lockers_locker_id(locker_id: str, db: Session = Depends(get_db)) -> LockerStatus:
    try:
        return get_locker_service(locker_id, db)
    except (LeaseError, StoreUnavailable) as e:
        raise _http_error(e)


async def _event_stream(fanout: EventFanout) -> AsyncGenerator[dict[str, Any], None]:
    subscription = fanout.subscribe()
    try:
        connected = BroadcastEvent.connected(subscription.subscriber_id)
        yield {"event": connected.kind.value, "data": json.dumps(connected.to_record())}

        while True:
            event = await subscription.get()
            if event is None:
                break
            yield {"event": event.kind.value, "data": json.dumps(event.to_record())}
    finally:
        fanout.unsubscribe(subscription)


@router.get("/events/stream")
async def get_events_stream() -> Response:
    """
    Server-sent events for display clients. Only events fired while connected are delivered.
    """
    return EventSourceResponse(_event_stream(get_event_fanout()), ping=settings.sse_ping_seconds)


@router.get("/health")
def get_health() -> dict[str, str]:
    return {"status": "ok"}

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class State(Enum):
    AVAILABLE = 'AVAILABLE'
    LEASED = 'LEASED'
    OCCUPIED = 'OCCUPIED'
    MAINTENANCE = 'MAINTENANCE'


class Allocation(BaseModel):
    locker_id: str
    token: str
    expires_at: datetime
    qr_content: str


class UnlockRequest(BaseModel):
    token: str = Field(min_length=1)
    context: Dict[str, Any] | None = None


class UnlockResult(BaseModel):
    locker_id: str
    state: State
    unlocked: bool
    dispatched: bool


class LockResult(BaseModel):
    locker_id: str
    dispatched: bool


class OccupantAssignment(BaseModel):
    occupant_ref: str = Field(min_length=1)


class LockerStatus(BaseModel):
    locker_id: str
    state: State
    lease_expires_at: datetime | None
    occupant_ref: str | None
    last_opened_at: datetime | None

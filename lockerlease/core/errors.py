from __future__ import annotations


class LeaseError(Exception):
    """Base class for locker state machine failures returned to callers."""


class ResourceExhausted(LeaseError):
    """No AVAILABLE locker could be claimed. Map to HTTP 409."""


class NotFoundError(LeaseError):
    """Raise to map to HTTP 404."""


class LockerNotFound(NotFoundError):
    pass


class LeaseNotFound(NotFoundError):
    """The locker has no active lease (never issued, consumed or cleared)."""


class OccupantNotFound(NotFoundError):
    pass


class TokenMismatch(LeaseError):
    """Presented token differs from the active lease. Map to HTTP 403."""


class TokenExpired(LeaseError):
    """The lease deadline passed. Map to HTTP 410."""


class InvalidLockerState(LeaseError):
    """Raise to map to HTTP 409 (transition not allowed from the current state)."""


class BusUnavailable(Exception):
    """The command bus could not accept a publish."""


class StoreUnavailable(Exception):
    """The record store update failed. Map to HTTP 503."""

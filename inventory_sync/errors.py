from __future__ import annotations


class SyncError(Exception):
    """Base class for failures raised by the POS synchronization engine."""


class ExternalServiceError(SyncError):
    """The POS was unreachable, answered with a failure status or sent malformed data."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MissingCredentialsError(SyncError):
    """The tenant has no active POS credential, so no entity can be synced."""


class TenantResolutionError(SyncError):
    """An inbound webhook names a POS account that no active credential matches."""


class TransactionFailure(SyncError):
    """An unexpected error inside a syncer's mutation phase; the transaction was rolled back."""


class ValidationError(SyncError):
    """A webhook payload is missing required fields or failed signature verification."""


class AuthorizationError(SyncError):
    """A trigger endpoint was called without a valid session or cron secret."""

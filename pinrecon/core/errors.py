"""Error taxonomy for the reconciliation pipeline.

Every exception carries the ``ErrorKind`` it is reported under so the engine
can turn it into a record-local outcome without inspecting messages.
"""

from __future__ import annotations

from typing import Optional

from pinrecon.models import ErrorKind


class ReconcileError(RuntimeError):
    kind: ErrorKind = ErrorKind.PROVIDER_UNAVAILABLE


class GeocodeError(ReconcileError):
    """Base class for failures raised by the geocoding provider adapter."""


class InvalidAddress(GeocodeError):
    kind = ErrorKind.INVALID_ADDRESS


class ProviderRateLimited(GeocodeError):
    kind = ErrorKind.PROVIDER_RATE_LIMITED

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ProviderUnavailable(GeocodeError):
    kind = ErrorKind.PROVIDER_UNAVAILABLE


class MalformedResponse(GeocodeError):
    kind = ErrorKind.MALFORMED_RESPONSE


class StoreWriteFailed(ReconcileError):
    kind = ErrorKind.STORE_WRITE_FAILED


class RecordFetchError(ReconcileError):
    """The initial record list could not be read; the run cannot start."""


class RunCancelled(ReconcileError):
    """The run was cancelled or timed out before this record finished."""

    kind = ErrorKind.CANCELLED

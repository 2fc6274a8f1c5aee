"""Core data models shared by the reconciliation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional


class OutcomeStatus(str, Enum):
    APPLIED = "Applied"
    SKIPPED_NO_CANDIDATE = "SkippedNoCandidate"
    SKIPPED_LOW_CONFIDENCE = "SkippedLowConfidence"
    FAILED = "Failed"


class ErrorKind(str, Enum):
    INVALID_ADDRESS = "InvalidAddress"
    PROVIDER_RATE_LIMITED = "ProviderRateLimited"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"
    MALFORMED_RESPONSE = "MalformedResponse"
    STORE_WRITE_FAILED = "StoreWriteFailed"
    CANCELLED = "Cancelled"


class Coordinates(NamedTuple):
    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class LocationRecord:
    """A stored venue whose ``address_text`` is the source of truth for its pin."""

    id: str
    display_name: str
    address_text: str
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None

    @property
    def current_coordinates(self) -> Optional[Coordinates]:
        if self.current_latitude is None or self.current_longitude is None:
            return None
        return Coordinates(self.current_latitude, self.current_longitude)


@dataclass(frozen=True, slots=True)
class GeocodeCandidate:
    """One ranked match returned by the geocoding provider."""

    display_place_name: str
    longitude: float
    latitude: float
    relevance: float
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class OutcomeError:
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True, slots=True)
class ReconciliationOutcome:
    record_id: str
    record_name: str
    address_used: str
    request_descriptor: Optional[str]
    status: OutcomeStatus
    previous_coordinates: Optional[Coordinates] = None
    chosen_candidate: Optional[GeocodeCandidate] = None
    new_coordinates: Optional[Coordinates] = None
    error: Optional[OutcomeError] = None
    note: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.status is OutcomeStatus.FAILED) != (self.error is not None):
            raise ValueError("error must be set exactly when status is Failed")

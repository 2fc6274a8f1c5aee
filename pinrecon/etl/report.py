"""Utilities for turning reconciliation outcomes into the JSON report."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

from pinrecon.models import Coordinates, OutcomeStatus, ReconciliationOutcome

MAPS_SEARCH_URL = "https://www.google.com/maps/search/"
# Same unreserved set as JavaScript's encodeURIComponent.
_URI_COMPONENT_SAFE = "-_.!~*'()"


def verification_url(address: str) -> str:
    return MAPS_SEARCH_URL + quote(address, safe=_URI_COMPONENT_SAFE)


def format_coordinates(coordinates: Optional[Coordinates], places: int = 8) -> Optional[str]:
    if coordinates is None:
        return None
    return f"{coordinates.latitude:.{places}f}, {coordinates.longitude:.{places}f}"


def _error_text(outcome: ReconciliationOutcome) -> Optional[str]:
    if outcome.status is OutcomeStatus.APPLIED:
        return None
    if outcome.error is not None:
        return str(outcome.error)
    return outcome.note or outcome.status.value


def to_result_row(outcome: ReconciliationOutcome) -> Dict[str, Any]:
    """Shape one outcome as a report row.

    The pin fields (``latitude``, ``raw_response`` and so on) are only filled for
    applied outcomes. A candidate chosen but not written, as on a failed store
    write, is reported under the ``intended_*`` keys instead.
    """
    applied = outcome.status is OutcomeStatus.APPLIED
    candidate = outcome.chosen_candidate if applied else None
    new = outcome.new_coordinates if applied else None
    intended = None if applied else outcome.new_coordinates
    intended_raw = outcome.chosen_candidate.raw if intended and outcome.chosen_candidate else None
    old = outcome.previous_coordinates

    return {
        "id": outcome.record_id,
        "name": outcome.record_name,
        "location_name": outcome.address_used,
        "status": outcome.status.value,
        "geocode_request": outcome.request_descriptor,
        "raw_response": candidate.raw if candidate else None,
        "latitude": new.latitude if new else None,
        "longitude": new.longitude if new else None,
        "old_latitude": old.latitude if old else None,
        "old_longitude": old.longitude if old else None,
        "place_name": candidate.display_place_name if candidate else None,
        "relevance": candidate.relevance if candidate else None,
        "error": _error_text(outcome),
        "formatted_coordinates": format_coordinates(new),
        "formatted_old_coordinates": format_coordinates(old),
        "intended_latitude": intended.latitude if intended else None,
        "intended_longitude": intended.longitude if intended else None,
        "intended_raw_response": intended_raw,
        "verification_url": verification_url(outcome.address_used),
    }


def build_report(
    outcomes: Iterable[ReconciliationOutcome],
    final_coordinates: Optional[List[Dict[str, Any]]] = None,
    timestamp: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Assemble the success report, preserving the order outcomes are given in."""
    report: Dict[str, Any] = {
        "success": True,
        "results": [to_result_row(outcome) for outcome in outcomes],
    }
    if final_coordinates is not None:
        report["final_coordinates"] = final_coordinates
    report["timestamp"] = (timestamp or datetime.now(timezone.utc)).isoformat()
    return report


def build_error_report(error: Any) -> Dict[str, Any]:
    return {"success": False, "error": str(error)}

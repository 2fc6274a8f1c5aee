"""Client utilities for the Mapbox forward geocoding API."""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

import requests

from pinrecon.core.config import ConfigError, Settings
from pinrecon.core.errors import InvalidAddress, MalformedResponse, ProviderRateLimited, ProviderUnavailable
from pinrecon.models import GeocodeCandidate

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_PLACES_PATH = "/geocoding/v5/mapbox.places"
_REDACTED = "REDACTED"


class MapboxGeocoder:
    """Forward geocoder returning Mapbox features in the provider's own ranking.

    Every ``geocode`` call issues exactly one request. Nothing is cached: a
    re-run with an unchanged address queries Mapbox again.
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.mapbox.com",
        limit: int = 5,
        types: Optional[str] = None,
        country: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.limit = limit
        self.types = types
        self.country = country
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "MapboxGeocoder":
        if not settings.mapbox_access_token:
            raise ConfigError("MAPBOX_ACCESS_TOKEN is required")
        return cls(
            access_token=settings.mapbox_access_token,
            base_url=settings.mapbox_base_url,
            limit=settings.candidate_limit,
            types=settings.geocode_types,
            country=settings.geocode_country,
            timeout=settings.request_timeout,
        )

    def _endpoint(self, address_text: str) -> str:
        # The query is a path segment, so "/" must be escaped as well.
        try:
            segment = quote(address_text.strip(), safe="")
        except UnicodeEncodeError as exc:
            raise InvalidAddress(f"address cannot be encoded as UTF-8: {exc.reason}") from exc
        return f"{self.base_url}{_PLACES_PATH}/{segment}.json"

    def _params(self, access_token: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {"access_token": access_token, "limit": self.limit}
        if self.types:
            params["types"] = self.types
        if self.country:
            params["country"] = self.country
        return params

    def describe_request(self, address_text: str) -> str:
        """Return the URL ``geocode`` issues for this address, token redacted."""
        return f"{self._endpoint(address_text)}?{urlencode(self._params(_REDACTED))}"

    def geocode(self, address_text: str) -> List[GeocodeCandidate]:
        if not address_text or not address_text.strip():
            raise InvalidAddress("address is empty")

        try:
            response = _SESSION.get(
                self._endpoint(address_text),
                params=self._params(self.access_token),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("geocode transport failure: %s", exc)
            raise ProviderUnavailable(f"transport failure: {exc}") from exc

        if response.status_code == 429:
            raise ProviderRateLimited("Mapbox rate limit exceeded", retry_after=_retry_after(response))
        if not 200 <= response.status_code < 300:
            logger.error("geocode failed: status=%s body=%s", response.status_code, response.text[:200])
            raise ProviderUnavailable(f"Mapbox returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponse("response body is not JSON") from exc
        return parse_features(payload)


def parse_features(payload: Any) -> List[GeocodeCandidate]:
    """Map a Mapbox FeatureCollection onto candidates, keeping the provider order."""
    if not isinstance(payload, dict) or not isinstance(payload.get("features"), list):
        raise MalformedResponse("response has no features list")

    candidates: List[GeocodeCandidate] = []
    for index, feature in enumerate(payload["features"]):
        if not isinstance(feature, dict):
            raise MalformedResponse(f"feature {index} is not an object")

        center = feature.get("center")
        if not isinstance(center, list) or len(center) != 2 or not all(_is_number(v) for v in center):
            raise MalformedResponse(f"feature {index} has no usable center")
        relevance = feature.get("relevance")
        if not _is_number(relevance) or not 0.0 <= relevance <= 1.0:
            raise MalformedResponse(f"feature {index} has invalid relevance {relevance!r}")

        longitude, latitude = center
        candidates.append(
            GeocodeCandidate(
                display_place_name=str(feature.get("place_name") or ""),
                longitude=float(longitude),
                latitude=float(latitude),
                relevance=float(relevance),
                raw=feature,
            )
        )
    return candidates


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _retry_after(response) -> Optional[float]:
    raw = response.headers.get("Retry-After") if response.headers else None
    try:
        return float(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None

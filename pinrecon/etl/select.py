"""Candidate selection over a provider-ranked geocoding result."""

from typing import Iterable, Optional, Sequence

from pinrecon.models import GeocodeCandidate


def select_candidate(candidates: Iterable[GeocodeCandidate], min_relevance: float) -> Optional[GeocodeCandidate]:
    """Return the first candidate whose relevance clears ``min_relevance``.

    The provider's ordering is the only tie-breaker. Candidates are never
    re-ranked by type or by distance from previously stored coordinates,
    since the address string alone decides where a venue is.
    """
    for candidate in candidates:
        if candidate.relevance >= min_relevance:
            return candidate
    return None


def best_relevance(candidates: Sequence[GeocodeCandidate]) -> Optional[float]:
    if not candidates:
        return None
    return max(candidate.relevance for candidate in candidates)

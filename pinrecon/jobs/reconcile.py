"""Batch job that reconciles stored venue coordinates with their address text."""

from __future__ import annotations

import argparse
import json
import logging
import random
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from pinrecon.core.config import ConfigError, ReconcileConfig, Settings, get_settings
from pinrecon.core.db import VenueStore
from pinrecon.core.errors import (
    GeocodeError,
    InvalidAddress,
    ProviderRateLimited,
    ProviderUnavailable,
    RecordFetchError,
    RunCancelled,
    StoreWriteFailed,
)
from pinrecon.etl.report import build_report
from pinrecon.etl.select import best_relevance, select_candidate
from pinrecon.models import (
    ErrorKind,
    GeocodeCandidate,
    LocationRecord,
    OutcomeError,
    OutcomeStatus,
    ReconciliationOutcome,
)
from pinrecon.vendors.mapbox import MapboxGeocoder

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationRun:
    outcomes: List[ReconciliationOutcome]
    final_coordinates: Optional[List[Dict[str, Any]]] = None

    def report(self) -> Dict[str, Any]:
        return build_report(self.outcomes, final_coordinates=self.final_coordinates)


class ReconciliationEngine:
    """Geocodes each record's address and rewrites its stored pin.

    ``provider`` needs ``geocode(address)`` and ``describe_request(address)``;
    ``store`` needs ``write_coordinates(record_id, coordinates)``. Failures are
    confined to the record they happen on.
    """

    def __init__(self, provider, store) -> None:
        self.provider = provider
        self.store = store

    def run(
        self,
        records: Sequence[LocationRecord],
        config: ReconcileConfig,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ReconciliationOutcome]:
        records = list(records)
        if not records:
            return []

        cancel = cancel_event or threading.Event()
        workers = min(config.max_workers, len(records))
        logger.info("Reconciling %d records with %d workers", len(records), workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="geocode") as executor:
            futures = [executor.submit(self._process, record, config, cancel) for record in records]
            _, pending = wait(futures, timeout=config.run_timeout_seconds)
            if pending:
                logger.warning("Run timed out with %d records unfinished; cancelling", len(pending))
                cancel.set()
                for future in pending:
                    future.cancel()

        outcomes: List[ReconciliationOutcome] = []
        for record, future in zip(records, futures):
            if future.cancelled():
                outcomes.append(self._failed(record, None, RunCancelled("run cancelled before processing")))
            elif future.exception() is not None:
                exc = future.exception()
                logger.error("Worker crashed on %s: %s", record.id, exc)
                outcomes.append(self._failed(record, None, ProviderUnavailable(f"unexpected error: {exc}")))
            else:
                outcomes.append(future.result())
        return outcomes

    def _process(self, record: LocationRecord, config: ReconcileConfig, cancel: threading.Event) -> ReconciliationOutcome:
        address = record.address_text
        if not address or not address.strip():
            logger.warning("Record %s has no address text", record.id)
            return self._failed(record, None, InvalidAddress("address text is empty; no request issued"))

        try:
            descriptor = self.provider.describe_request(address)
        except GeocodeError as exc:
            logger.error("Cannot build a request for %s: %s", record.id, exc)
            return self._failed(record, None, exc)
        except (UnicodeError, ValueError) as exc:
            logger.error("Address for %s cannot be encoded: %s", record.id, exc)
            return self._failed(record, None, InvalidAddress(f"address cannot be encoded: {exc}"))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected provider error describing %s", record.id)
            return self._failed(record, None, ProviderUnavailable(f"unexpected error: {exc}"))

        if cancel.is_set():
            return self._failed(record, descriptor, RunCancelled("run cancelled before geocoding"))

        logger.info("Geocoding %s: %r", record.id, address)
        try:
            candidates = self._geocode_with_retries(record, config, cancel)
        except (GeocodeError, RunCancelled) as exc:
            logger.error("Geocoding failed for %s: %s", record.id, exc)
            return self._failed(record, descriptor, exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected provider error for %s", record.id)
            return self._failed(record, descriptor, ProviderUnavailable(f"unexpected error: {exc}"))

        chosen = select_candidate(candidates, config.min_relevance)
        if chosen is None:
            return self._skipped(record, descriptor, candidates, config.min_relevance)

        new_coordinates = chosen.coordinates
        try:
            self.store.write_coordinates(record.id, new_coordinates)
        except StoreWriteFailed as exc:
            logger.error("Write failed for %s: %s", record.id, exc)
            return self._failed(record, descriptor, exc, chosen=chosen)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected store error for %s", record.id)
            return self._failed(record, descriptor, StoreWriteFailed(f"unexpected error: {exc}"), chosen=chosen)

        logger.info(
            "Applied %s: %s -> %s (%s, relevance=%s)",
            record.id,
            record.current_coordinates,
            new_coordinates,
            chosen.display_place_name,
            chosen.relevance,
        )
        return ReconciliationOutcome(
            record_id=record.id,
            record_name=record.display_name,
            address_used=address,
            request_descriptor=descriptor,
            status=OutcomeStatus.APPLIED,
            previous_coordinates=record.current_coordinates,
            chosen_candidate=chosen,
            new_coordinates=new_coordinates,
        )

    def _geocode_with_retries(
        self, record: LocationRecord, config: ReconcileConfig, cancel: threading.Event
    ) -> List[GeocodeCandidate]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self.provider.geocode(record.address_text)
            except ProviderRateLimited as exc:
                if attempt > config.max_retries:
                    raise ProviderUnavailable(
                        f"rate limited on all {attempt} attempts, retries exhausted"
                    ) from exc
                delay = config.backoff_seconds * 2 ** (attempt - 1) + random.uniform(0, config.backoff_seconds)
                if exc.retry_after is not None:
                    delay = max(delay, exc.retry_after)
                logger.warning(
                    "Rate limited geocoding %s (attempt %s/%s); retrying in %.2fs",
                    record.id,
                    attempt,
                    config.max_retries + 1,
                    delay,
                )
                if cancel.wait(delay):
                    raise RunCancelled("run cancelled while backing off") from exc

    def _skipped(
        self,
        record: LocationRecord,
        descriptor: str,
        candidates: List[GeocodeCandidate],
        min_relevance: float,
    ) -> ReconciliationOutcome:
        if candidates:
            status = OutcomeStatus.SKIPPED_LOW_CONFIDENCE
            note = (
                f"{len(candidates)} candidates, best relevance {best_relevance(candidates):.2f} "
                f"below threshold {min_relevance:.2f}"
            )
        else:
            status = OutcomeStatus.SKIPPED_NO_CANDIDATE
            note = "No geocoding results found"
        logger.warning("Skipping %s: %s", record.id, note)
        return ReconciliationOutcome(
            record_id=record.id,
            record_name=record.display_name,
            address_used=record.address_text,
            request_descriptor=descriptor,
            status=status,
            previous_coordinates=record.current_coordinates,
            note=note,
        )

    def _failed(
        self,
        record: LocationRecord,
        descriptor: Optional[str],
        exc: Exception,
        chosen: Optional[GeocodeCandidate] = None,
    ) -> ReconciliationOutcome:
        kind = getattr(exc, "kind", ErrorKind.PROVIDER_UNAVAILABLE)
        return ReconciliationOutcome(
            record_id=record.id,
            record_name=record.display_name,
            address_used=record.address_text,
            request_descriptor=descriptor,
            status=OutcomeStatus.FAILED,
            previous_coordinates=record.current_coordinates,
            chosen_candidate=chosen,
            new_coordinates=chosen.coordinates if chosen else None,
            error=OutcomeError(kind=kind, message=str(exc)),
        )


def reconcile_from_store(
    provider,
    store,
    config: ReconcileConfig,
    ids: Optional[Sequence[str]] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ReconciliationRun:
    """Read the records to reconcile, run the engine and re-read the stored pins.

    Raises ``RecordFetchError`` when the record list cannot be read; nothing is
    processed in that case.
    """
    records = store.fetch_records(ids)
    outcomes = ReconciliationEngine(provider, store).run(records, config, cancel_event=cancel_event)

    final_coordinates = None
    if records:
        try:
            final_coordinates = [
                {
                    "id": record.id,
                    "name": record.display_name,
                    "location_name": record.address_text,
                    "latitude": record.current_latitude,
                    "longitude": record.current_longitude,
                }
                for record in store.fetch_records([record.id for record in records])
            ]
        except RecordFetchError as exc:
            logger.warning("Could not re-read stored coordinates after run: %s", exc)

    counts: Dict[str, int] = {}
    for outcome in outcomes:
        counts[outcome.status.value] = counts.get(outcome.status.value, 0) + 1
    logger.info("Completed run: %s", counts)
    return ReconciliationRun(outcomes=outcomes, final_coordinates=final_coordinates)


def build_components(settings: Settings):
    return MapboxGeocoder.from_settings(settings), VenueStore(settings.records_table)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Re-geocode venue addresses and fix their map pins")
    parser.add_argument("--id", dest="ids", action="append", help="Restrict the run to this record id (repeatable)")
    parser.add_argument("--min-relevance", dest="min_relevance", type=float, help="Relevance threshold override")
    parser.add_argument("--max-retries", dest="max_retries", type=int, help="Retries on provider rate limiting")
    parser.add_argument("--workers", dest="max_workers", type=int, help="Concurrent geocoding workers")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
        config = ReconcileConfig.from_settings(
            settings,
            min_relevance=args.min_relevance,
            max_retries=args.max_retries,
            max_workers=args.max_workers,
        )
        provider, store = build_components(settings)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    try:
        run = reconcile_from_store(provider, store, config, ids=args.ids)
    except RecordFetchError as exc:
        logger.error("Reconciliation could not start: %s", exc)
        return 1

    print(json.dumps(run.report(), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

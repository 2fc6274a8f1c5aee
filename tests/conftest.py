import sys
from collections import defaultdict
from pathlib import Path

# Ensure the `pinrecon` package is importable when running pytest from the repo root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from pinrecon.core import config
from pinrecon.core.errors import RecordFetchError, StoreWriteFailed
from pinrecon.models import GeocodeCandidate, LocationRecord


class FakeProvider:
    """Scripted provider: each address maps to a list of results consumed in order.

    A result is either a list of candidates or an exception instance to raise.
    The last scripted result repeats once the script is exhausted.
    """

    def __init__(self, script=None):
        self.script = script or {}
        self.calls = defaultdict(int)

    def describe_request(self, address):
        return f"fake://geocode/{address.strip()}"

    def geocode(self, address):
        self.calls[address] += 1
        results = self.script[address]
        index = min(self.calls[address], len(results)) - 1
        result = results[index]
        if isinstance(result, Exception):
            raise result
        return list(result)

    @property
    def total_calls(self):
        return sum(self.calls.values())


class FakeStore:
    def __init__(self, records=(), fail_writes_for=(), fail_fetch=False):
        self.rows = {record.id: record for record in records}
        self.order = [record.id for record in records]
        self.fail_writes_for = set(fail_writes_for)
        self.fail_fetch = fail_fetch
        self.writes = []
        self.fetches = []

    def fetch_records(self, ids=None):
        self.fetches.append(ids)
        if self.fail_fetch:
            raise RecordFetchError("unable to read records: connection refused")
        wanted = self.order if ids is None else [i for i in self.order if i in set(ids)]
        return [self.rows[i] for i in wanted]

    def write_coordinates(self, record_id, coordinates):
        if record_id in self.fail_writes_for:
            raise StoreWriteFailed(f"record {record_id} not found")
        self.writes.append((record_id, coordinates))
        old = self.rows[record_id]
        self.rows[record_id] = LocationRecord(
            id=old.id,
            display_name=old.display_name,
            address_text=old.address_text,
            current_latitude=coordinates.latitude,
            current_longitude=coordinates.longitude,
        )


def candidate(place, lon, lat, relevance):
    return GeocodeCandidate(
        display_place_name=place,
        longitude=lon,
        latitude=lat,
        relevance=relevance,
        raw={"place_name": place, "center": [lon, lat], "relevance": relevance},
    )


@pytest.fixture
def wembley():
    return LocationRecord(
        id="1",
        display_name="Wembley Cup",
        address_text="Wembley Stadium, London",
        current_latitude=51.0,
        current_longitude=-0.1,
    )


@pytest.fixture(autouse=True)
def clear_settings_cache():
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()

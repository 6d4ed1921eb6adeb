"""Shared test fixtures."""

import copy

import pytest

from reconciler.errors import StoreUnavailableError
from reconciler.store import MemoryStore
from reconciler.writer import build_archive


ZONES = [
    {'id': 'z1', 'name': 'North'},
    {'id': 'z2', 'name': 'South'},
]

CLUBS = [
    {'id': 'c1', 'name': 'Spring Club', 'zoneId': 'z1'},
    {'id': 'c2', 'name': 'Harbour Club', 'zoneId': 'z2'},
]

EVENT_TYPES = [
    {'id': 't1', 'name': 'Rally'},
    {'id': 't2', 'name': 'Trial'},
]

LIVE_EVENTS = [
    {'id': 'e1', 'name': 'Spring Rally', 'date': '2025-09-15', 'clubId': 'c1',
     'eventTypeId': 't1', 'status': 'approved'},
    {'id': 'e2', 'name': 'North Trial', 'date': '2025-10-01', 'clubId': 'c1',
     'eventTypeId': 't2', 'status': 'pending'},
    {'id': 'e3', 'name': 'Harbour Dressage', 'date': '2025-11-05', 'clubId': 'c2',
     'eventTypeId': 't1', 'status': 'approved'},
    {'id': 'e4', 'name': 'Winter Camp', 'date': '2026-01-10', 'clubId': 'c2',
     'status': 'approved'},
]

NEW_EVENTS = [
    {'id': 'n1', 'name': 'Summer Rally', 'date': '2025-07-01', 'clubId': 'c1',
     'eventTypeId': 't1', 'status': 'approved'},
    {'id': 'n2', 'name': 'Autumn Trial', 'date': '2025-10-20', 'clubId': 'c2',
     'eventTypeId': 't2', 'status': 'pending'},
]


class CountingStore(MemoryStore):
    """MemoryStore that records the size of every committed batch.

    ``fail_on_batch`` makes the n-th commit (1-based) raise
    StoreUnavailableError.
    """

    def __init__(self, data=None, max_batch_size=500, fail_on_batch=None):
        super().__init__(data, max_batch_size=max_batch_size)
        self.batch_sizes: list[int] = []
        self.fail_on_batch = fail_on_batch
        self.calls: list[str] = []

    def batch_write(self, ops):
        if self.fail_on_batch is not None and len(self.batch_sizes) + 1 == self.fail_on_batch:
            raise StoreUnavailableError('Verbindung verloren')
        self.batch_sizes.append(len(ops))
        self.calls.append('commit')
        return super().batch_write(ops)


def live_data() -> dict:
    return copy.deepcopy({
        'events': LIVE_EVENTS,
        'clubs': CLUBS,
        'zones': ZONES,
        'event-types': EVENT_TYPES,
    })


@pytest.fixture
def make_store():
    """Factory for CountingStores, seeded with the live fixture data by default."""
    def _make(data=None, **kwargs) -> CountingStore:
        return CountingStore(live_data() if data is None else data, **kwargs)
    return _make


@pytest.fixture
def store(make_store) -> CountingStore:
    return make_store()


@pytest.fixture
def make_archive():
    """Factory for archive bytes with the fixture reference data."""
    def _make(events=None, clubs=None, zones=None, event_types=None, **kwargs) -> bytes:
        return build_archive(
            copy.deepcopy(LIVE_EVENTS if events is None else events),
            copy.deepcopy(CLUBS if clubs is None else clubs),
            copy.deepcopy(ZONES if zones is None else zones),
            copy.deepcopy(EVENT_TYPES if event_types is None else event_types),
            **kwargs,
        )
    return _make

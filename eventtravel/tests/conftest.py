import datetime as _dt
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from eventtravel.models import FailureKind, LatLng, MatrixCell, RouteFailure, TravelLeg, TravelStep  # noqa: E402
from eventtravel.store import InMemoryStore  # noqa: E402


EVENT_START = _dt.datetime(2026, 11, 20, 18, 0, tzinfo=_dt.timezone.utc)
EVENT_END = _dt.datetime(2026, 11, 20, 21, 0, tzinfo=_dt.timezone.utc)
VENUE = LatLng(43.6532, -79.3832)


class FakeDirections:
    """Stands in for GoogleMapsService; records every call"""

    def __init__(self, duration_minutes=20):
        self.duration_minutes = duration_minutes
        self.route_calls = []
        self.matrix_calls = []
        self.failures = {}          # (origin, mode) -> RouteFailure for either direction
        self.invalid_modes = set()
        self.leg_times = {}         # 'arrive' / 'depart' -> (departure, arrival)
        self.matrix = None
        self.errors = {}            # origin -> exception raised from get_route_async

    async def get_route_async(self, origin, destination, mode, arrive_by=None, depart_at=None):
        self.route_calls.append({
            'origin': origin, 'destination': destination, 'mode': mode,
            'arrive_by': arrive_by, 'depart_at': depart_at,
        })
        if origin in self.errors:
            raise self.errors[origin]
        if mode in self.invalid_modes:
            return RouteFailure(FailureKind.INVALID_MODE, f"Unsupported transport mode: {mode}")
        endpoint = origin if arrive_by is not None else destination
        failure = self.failures.get((endpoint, mode))
        if failure is not None and (failure[1] is None or failure[1] == ('arrive' if arrive_by else 'depart')):
            return failure[0]
        departure, arrival = self.leg_times.get('arrive' if arrive_by else 'depart', (None, None))
        return TravelLeg(
            duration_minutes=self.duration_minutes,
            distance_text='12.3 km',
            departure_time=departure,
            arrival_time=arrival,
            steps=[TravelStep('Head north on Bay St', self.duration_minutes, '12.3 km', mode)],
        )

    def fail(self, origin, mode, kind=FailureKind.NO_ROUTE, direction=None):
        self.failures[(origin, mode)] = (RouteFailure(kind, 'fake failure'), direction)

    async def get_matrix_async(self, origins, destinations, mode='driving'):
        self.matrix_calls.append({'origins': origins, 'destinations': destinations, 'mode': mode})
        return self.matrix


def cell(minutes, status='OK'):
    if status != 'OK':
        return MatrixCell(None, None, status)
    return MatrixCell(minutes, f"{minutes} km", status)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + _dt.timedelta(**kwargs)


@pytest.fixture
def fake_directions():
    return FakeDirections()


@pytest.fixture
def clock():
    return Clock(_dt.datetime(2026, 11, 20, 12, 0, tzinfo=_dt.timezone.utc))


@pytest.fixture
def users():
    return InMemoryStore('users', [
        {'id': 'alice', 'name': 'Alice', 'lat': 43.6629, 'lng': -79.3957, 'transport_modes': ['transit', 'walking']},
        {'id': 'bob', 'name': 'Bob', 'lat': 43.2609, 'lng': -79.9192},
        {'id': 'carol', 'name': 'Carol'},
        {'id': 'dave', 'name': 'Dave', 'lat': 43.7000, 'lng': -79.4000, 'transport_modes': ['bicycling']},
    ])


@pytest.fixture
def events():
    return InMemoryStore('events', [{
        'id': 'evt1',
        'location': VENUE.to_dict(),
        'start': EVENT_START.isoformat(),
        'end': EVENT_END.isoformat(),
        'participant_ids': ['alice', 'bob', 'carol'],
        'origin_overrides': {},
        'version': '2026-11-01T09:00:00+00:00',
    }, {
        'id': 'empty',
        'location': VENUE.to_dict(),
        'start': EVENT_START.isoformat(),
        'end': EVENT_END.isoformat(),
        'participant_ids': [],
        'version': '2026-11-01T09:00:00+00:00',
    }])

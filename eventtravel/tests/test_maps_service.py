import asyncio
import datetime as _dt
import time
from unittest import mock

import pytest
from googlemaps import exceptions as gm_exceptions

from eventtravel import maps_service as ms
from eventtravel.models import FailureKind, LatLng, RouteFailure, TravelLeg


ORIGIN = LatLng(43.6629, -79.3957)
DEST = LatLng(43.6532, -79.3832)


def _leg(**extra):
    leg = {
        'duration': {'value': 1830, 'text': '31 mins'},
        'distance': {'value': 12300, 'text': '12.3 km'},
        'steps': [
            {
                'html_instructions': 'Head <b>north</b> on <div>Bay St</div>',
                'duration': {'value': 61},
                'distance': {'text': '0.4 km'},
                'travel_mode': 'WALKING',
            },
            {
                'html_instructions': 'Subway towards Finch',
                'duration': {'value': 900},
                'distance': {'text': '8 km'},
                'travel_mode': 'TRANSIT',
                'transit_details': {
                    'line': {'name': 'Line 1 Yonge-University', 'short_name': '1', 'vehicle': {'type': 'SUBWAY'}},
                    'headsign': 'Finch',
                    'num_stops': 6,
                    'departure_stop': {'name': 'Union'},
                    'arrival_stop': {'name': 'Bloor-Yonge'},
                },
            },
            {},
        ],
    }
    leg.update(extra)
    return leg


@pytest.fixture
def client():
    with mock.patch.object(ms.googlemaps, 'Client') as client_cls:
        yield client_cls.return_value


@pytest.fixture
def service(client):
    svc = ms.GoogleMapsService('AIza-test-key', timeout=5)
    yield svc
    svc.cleanup()


def test_rejects_placeholder_key():
    with pytest.raises(ValueError):
        ms.GoogleMapsService('your_api_key_here')


def test_get_route_normalizes_first_leg(service, client):
    client.directions.return_value = [{'legs': [_leg()]}]

    leg = service.get_route(ORIGIN, DEST, 'Transit')

    assert isinstance(leg, TravelLeg)
    assert leg.duration_minutes == 31
    assert leg.distance_text == '12.3 km'
    assert leg.departure_time is None and leg.arrival_time is None
    walk, subway, empty = leg.steps
    assert walk.instruction == 'Head north on Bay St'
    assert walk.duration_minutes == 2
    assert walk.travel_mode == 'walking'
    assert subway.transit_details['line_name'] == '1'
    assert subway.transit_details['arrival_stop'] == 'Bloor-Yonge'
    assert empty.instruction == 'Continue on route'
    assert empty.distance_text == 'Unknown distance'
    assert empty.travel_mode == 'unknown'
    kwargs = client.directions.call_args.kwargs
    assert kwargs['mode'] == 'transit'
    assert kwargs['origin'] == '43.6629,-79.3957'


def test_get_route_reads_provider_times_and_timing_constraint(service, client):
    client.directions.return_value = [{'legs': [_leg(
        departure_time={'value': 1795190400, 'text': '5:20pm'},
        arrival_time={'value': 1795192200, 'text': '5:50pm'},
    )]}]
    arrive_by = _dt.datetime(2026, 11, 20, 18, 0, tzinfo=_dt.timezone.utc)

    leg = service.get_route(ORIGIN, DEST, 'transit', arrive_by=arrive_by)

    assert leg.departure_time == _dt.datetime.fromtimestamp(1795190400, tz=_dt.timezone.utc)
    assert leg.arrival_time == _dt.datetime.fromtimestamp(1795192200, tz=_dt.timezone.utc)
    assert client.directions.call_args.kwargs['arrival_time'] == arrive_by
    assert client.directions.call_args.kwargs['departure_time'] is None


def test_get_route_rejects_both_timing_constraints(service):
    now = _dt.datetime.now(_dt.timezone.utc)
    with pytest.raises(ValueError):
        service.get_route(ORIGIN, DEST, 'driving', arrive_by=now, depart_at=now)


def test_unsupported_mode_is_invalid_mode_without_network(service, client):
    result = service.get_route(ORIGIN, DEST, 'teleport')

    assert isinstance(result, RouteFailure)
    assert result.kind is FailureKind.INVALID_MODE
    client.directions.assert_not_called()


@pytest.mark.parametrize('response, side_effect, kind', [
    ([], None, FailureKind.NO_ROUTE),
    (None, gm_exceptions.ApiError('NOT_FOUND'), FailureKind.NO_ROUTE),
    (None, gm_exceptions.ApiError('OVER_QUERY_LIMIT', 'slow down'), FailureKind.PROVIDER_ERROR),
    (None, gm_exceptions.Timeout(), FailureKind.PROVIDER_ERROR),
    (None, gm_exceptions.TransportError('connection reset'), FailureKind.PROVIDER_ERROR),
    ([{'legs': [{'duration': {'value': 60}, 'distance': {'text': '1 km'}}]}], None, FailureKind.PROVIDER_ERROR),
    ([{'legs': []}], None, FailureKind.PROVIDER_ERROR),
])
def test_get_route_failures_are_values(service, client, response, side_effect, kind):
    client.directions.return_value = response
    client.directions.side_effect = side_effect

    result = service.get_route(ORIGIN, DEST, 'driving')

    assert isinstance(result, RouteFailure)
    assert result.kind is kind


def test_get_matrix_preserves_input_order(service, client):
    a, b, c = LatLng(0, 0), LatLng(0, 2), LatLng(2, 0)
    client.distance_matrix.return_value = {
        'status': 'OK',
        'rows': [
            {'elements': [{'status': 'OK', 'duration': {'value': 600}, 'distance': {'text': '5 km'}}]},
            {'elements': [{'status': 'ZERO_RESULTS'}]},
            {'elements': [{'status': 'OK', 'duration': {'value': 1201}, 'distance': {'text': '9 km'}}]},
        ],
    }

    grid = service.get_matrix([a, b, c], [LatLng(0.5, 0.5)], 'driving')

    assert [row[0].duration_minutes for row in grid] == [10, None, 21]
    assert [row[0].status for row in grid] == ['OK', 'ZERO_RESULTS', 'OK']
    assert grid[0][0].distance_text == '5 km'
    assert not grid[1][0].ok


def test_get_matrix_chunks_destinations(service, client):
    destinations = [LatLng(0, i / 100) for i in range(30)]

    def fake_dm(origins, destinations, **kwargs):
        return {'rows': [{'elements': [
            {'status': 'OK', 'duration': {'value': 60 * (k + 1)}, 'distance': {'text': 'x'}}
            for k in range(len(destinations))
        ]}]}

    client.distance_matrix.side_effect = fake_dm

    grid = service.get_matrix([LatLng(1, 1)], destinations)

    assert client.distance_matrix.call_count == 2
    assert len(grid[0]) == 30
    assert grid[0][24].duration_minutes == 25
    assert grid[0][25].duration_minutes == 1


def test_get_matrix_whole_failure(service, client):
    client.distance_matrix.side_effect = gm_exceptions.ApiError('REQUEST_DENIED')

    result = service.get_matrix([LatLng(1, 1)], [LatLng(0, 0)])

    assert isinstance(result, RouteFailure)
    assert result.kind is FailureKind.PROVIDER_ERROR


def test_async_route_times_out_as_provider_error(client):
    svc = ms.GoogleMapsService('AIza-test-key', timeout=0.05)
    client.directions.side_effect = lambda **kwargs: time.sleep(0.3) or []
    try:
        result = asyncio.run(svc.get_route_async(ORIGIN, DEST, 'driving'))
    finally:
        svc.cleanup()

    assert isinstance(result, RouteFailure)
    assert result.kind is FailureKind.PROVIDER_ERROR

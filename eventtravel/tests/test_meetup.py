import pytest

from conftest import cell
from eventtravel.errors import ConfigurationError, InvalidCoordinates, ProviderError, UnsupportedTransportMode
from eventtravel.meetup import CentroidPlacement, MeetupPointFinder, get_placement
from eventtravel.models import FailureKind, LatLng, RouteFailure


PEOPLE = [
    {'id': 'a', 'name': 'Ana', 'lat': 0, 'lng': 0},
    {'id': 'b', 'name': 'Ben', 'lat': 0, 'lng': 2},
    {'id': 'c', 'name': 'Cy', 'lat': 2, 'lng': 0},
]


def test_candidate_is_arithmetic_mean(fake_directions):
    fake_directions.matrix = [[cell(10)], [cell(10)], [cell(10)]]

    result = MeetupPointFinder(fake_directions).find_meetup_point(PEOPLE)

    assert result.candidate_location.lat == pytest.approx(2 / 3)
    assert result.candidate_location.lng == pytest.approx(2 / 3)
    call = fake_directions.matrix_calls[0]
    assert call['origins'] == [LatLng(0, 0), LatLng(0, 2), LatLng(2, 0)]
    assert call['destinations'] == [result.candidate_location]
    assert call['mode'] == 'driving'


def test_constraint_evaluation(fake_directions):
    fake_directions.matrix = [[cell(30)], [cell(45)], [cell(90)]]

    result = MeetupPointFinder(fake_directions).find_meetup_point(PEOPLE, {'max_travel_time_minutes': 60})

    assert result.within_constraint is False
    assert result.max_duration_minutes == 90
    assert result.average_duration_minutes == 55.0


def test_default_constraint_is_sixty_minutes(fake_directions):
    fake_directions.matrix = [[cell(60)], [cell(15)], [cell(20)]]

    result = MeetupPointFinder(fake_directions).find_meetup_point(PEOPLE)

    assert result.max_travel_time_minutes == 60
    assert result.within_constraint is True


def test_partial_matrix_failure(fake_directions):
    fake_directions.matrix = [[cell(30)], [cell(None, 'ZERO_RESULTS')], [cell(45)]]

    result = MeetupPointFinder(fake_directions).find_meetup_point(PEOPLE)

    missing = [t for t in result.per_participant_travel_time if t.duration_minutes is None]
    assert [t.participant_id for t in missing] == ['b']
    assert missing[0].status == 'ZERO_RESULTS'
    assert result.max_duration_minutes == 45
    assert result.average_duration_minutes == 37.5
    assert [t.participant_id for t in result.per_participant_travel_time] == ['a', 'b', 'c']


def test_whole_matrix_failure_is_fatal(fake_directions):
    fake_directions.matrix = RouteFailure(FailureKind.PROVIDER_ERROR, 'timed out')

    with pytest.raises(ProviderError):
        MeetupPointFinder(fake_directions).find_meetup_point(PEOPLE)


def test_explicit_zero_limit_is_kept(fake_directions):
    fake_directions.matrix = [[cell(1)], [cell(1)], [cell(1)]]

    result = MeetupPointFinder(fake_directions).find_meetup_point(PEOPLE, {'max_travel_time_minutes': 0})

    assert result.max_travel_time_minutes == 0
    assert result.within_constraint is False


def test_camel_case_constraint_keys(fake_directions):
    fake_directions.matrix = [[cell(30)], [cell(45)], [cell(90)]]

    result = MeetupPointFinder(fake_directions).find_meetup_point(
        PEOPLE, {'maxTravelTimeMinutes': 120, 'searchRadiusMeters': 1}
    )

    assert result.max_travel_time_minutes == 120
    assert result.within_constraint is True
    assert result.within_search_radius is False


@pytest.mark.parametrize('constraints', [
    {'max_travel_time_minutes': -5},
    {'searchRadiusMeters': 'far'},
])
def test_malformed_constraints_rejected(fake_directions, constraints):
    with pytest.raises(ValueError):
        MeetupPointFinder(fake_directions).find_meetup_point(PEOPLE, constraints)


def test_unsupported_mode_rejected_before_matrix_call(fake_directions):
    with pytest.raises(UnsupportedTransportMode):
        MeetupPointFinder(fake_directions).find_meetup_point(PEOPLE, mode='hoverboard')
    assert fake_directions.matrix_calls == []


def test_matrix_invalid_mode_is_not_a_provider_error(fake_directions):
    fake_directions.matrix = RouteFailure(FailureKind.INVALID_MODE, 'Unsupported transport mode: transit')

    with pytest.raises(UnsupportedTransportMode):
        MeetupPointFinder(fake_directions).find_meetup_point(PEOPLE, mode='transit')


def test_all_cells_failing_is_fatal(fake_directions):
    fake_directions.matrix = [[cell(None, 'NOT_FOUND')]] * 3

    with pytest.raises(ProviderError):
        MeetupPointFinder(fake_directions).find_meetup_point(PEOPLE)


def test_search_radius_uses_geodesic_spread(fake_directions):
    fake_directions.matrix = [[cell(5)], [cell(5)]]
    close = [
        {'id': 'a', 'name': 'A', 'lat': 43.6500, 'lng': -79.3800},
        {'id': 'b', 'name': 'B', 'lat': 43.6600, 'lng': -79.3800},
    ]

    result = MeetupPointFinder(fake_directions).find_meetup_point(close, {'search_radius_meters': 500})

    assert result.spread_meters == pytest.approx(556, abs=5)
    assert result.within_search_radius is False


@pytest.mark.parametrize('participants', [
    [],
    [{'id': 'a', 'lat': 91, 'lng': 0}],
    [{'id': 'a', 'lat': 'north', 'lng': 0}],
    [{'id': 'a'}],
])
def test_invalid_input(fake_directions, participants):
    with pytest.raises(InvalidCoordinates):
        MeetupPointFinder(fake_directions).find_meetup_point(participants)
    assert fake_directions.matrix_calls == []


def test_placement_registry():
    assert isinstance(get_placement('centroid'), CentroidPlacement)
    with pytest.raises(ConfigurationError):
        get_placement('smartest')


def test_placement_is_swappable(fake_directions):
    class FirstPerson:
        name = 'first-person'

        def place(self, points):
            return points[0]

    fake_directions.matrix = [[cell(0)], [cell(20)], [cell(25)]]

    result = MeetupPointFinder(fake_directions, placement=FirstPerson()).find_meetup_point(PEOPLE)

    assert result.candidate_location == LatLng(0, 0)
    assert result.placement == 'first-person'
    assert result.max_duration_minutes == 25

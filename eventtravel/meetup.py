from geopy.distance import geodesic
from typing import Dict, List, Optional
import asyncio
import logging

from .errors import ConfigurationError, InvalidCoordinates, ProviderError, UnsupportedTransportMode
from .maps_service import SUPPORTED_MODES
from .models import FailureKind, LatLng, MeetupResult, ParticipantTravelTime, RouteFailure


logger = logging.getLogger(__name__)

# --- Module-level constants ---
DEFAULT_MAX_TRAVEL_TIME_MINUTES = 60
DEFAULT_SEARCH_RADIUS_METERS = 10000
DEFAULT_MEETUP_MODE = 'driving'


class CentroidPlacement:
    """Candidate is the plain arithmetic mean of all participant coordinates.

    Ignores road networks, water and venue availability.
    """
    name = 'centroid'

    def place(self, points: List[LatLng]) -> LatLng:
        lat = sum(p.lat for p in points) / len(points)
        lng = sum(p.lng for p in points) / len(points)
        return LatLng(lat, lng)


PLACEMENT_STRATEGIES = {
    CentroidPlacement.name: CentroidPlacement,
}


def get_placement(name: str):
    try:
        return PLACEMENT_STRATEGIES[name]()
    except KeyError:
        raise ConfigurationError(f"Unknown meetup placement strategy: {name}")


def _constraint(constraints: Dict, key: str, alias: str, default):
    value = constraints.get(key)
    if value is None:
        value = constraints.get(alias)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"{key} must be a non-negative number, got {value!r}")
    return value


class MeetupPointFinder:
    """Suggests a meeting location for a group and checks it against a travel-time limit"""

    def __init__(self, maps_service, placement=None):
        self.maps_service = maps_service
        self.placement = placement or CentroidPlacement()

    def find_meetup_point(self, participants: List[Dict], constraints: Optional[Dict] = None,
                          mode: str = DEFAULT_MEETUP_MODE) -> MeetupResult:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(self.find_meetup_point_async(participants, constraints, mode))
        finally:
            loop.close()

    async def find_meetup_point_async(self, participants: List[Dict], constraints: Optional[Dict] = None,
                                      mode: str = DEFAULT_MEETUP_MODE) -> MeetupResult:
        """
        participants: [{"id", "name", "lat", "lng"}, ...]
        constraints: {"max_travel_time_minutes": 60, "search_radius_meters": 10000}
            (camelCase maxTravelTimeMinutes / searchRadiusMeters also accepted)
        Raises ProviderError when the matrix call fails or no participant can be routed.
        """
        constraints = constraints or {}
        max_travel = int(_constraint(constraints, 'max_travel_time_minutes', 'maxTravelTimeMinutes',
                                     DEFAULT_MAX_TRAVEL_TIME_MINUTES))
        search_radius = float(_constraint(constraints, 'search_radius_meters', 'searchRadiusMeters',
                                          DEFAULT_SEARCH_RADIUS_METERS))
        mode = (mode or '').lower()
        if mode not in SUPPORTED_MODES:
            raise UnsupportedTransportMode(f"Unsupported transport mode: {mode}")

        if not participants:
            raise InvalidCoordinates('At least one participant is required')
        points = [LatLng.from_dict(p) for p in participants]

        candidate = self.placement.place(points)
        logger.info(f"Meetup candidate ({self.placement.name}) for {len(points)} participants: {candidate.as_param()}")

        grid = await self.maps_service.get_matrix_async(points, [candidate], mode)
        if isinstance(grid, RouteFailure):
            if grid.kind is FailureKind.INVALID_MODE:
                raise UnsupportedTransportMode(grid.message)
            raise ProviderError(f"Distance matrix failed: {grid.kind.value} {grid.message}".strip())
        if len(grid) != len(points) or any(len(row) != 1 for row in grid):
            raise ProviderError('Distance matrix shape does not match the request')

        travel_times: List[ParticipantTravelTime] = []
        for p, row in zip(participants, grid):
            cell = row[0]
            travel_times.append(ParticipantTravelTime(
                participant_id=str(p.get('id', '')),
                participant_name=p.get('name') or str(p.get('id', '')),
                duration_minutes=cell.duration_minutes if cell.ok else None,
                distance_text=cell.distance_text if cell.ok else None,
                status=cell.status,
            ))

        durations = [t.duration_minutes for t in travel_times if t.duration_minutes is not None]
        if not durations:
            raise ProviderError('No participant could be routed to the candidate location')
        failed = len(travel_times) - len(durations)
        if failed:
            logger.warning(f"{failed} of {len(travel_times)} participants have no route to the candidate")

        max_duration = max(durations)
        spread = max(geodesic((p.lat, p.lng), (candidate.lat, candidate.lng)).meters for p in points)
        return MeetupResult(
            candidate_location=candidate,
            per_participant_travel_time=travel_times,
            max_duration_minutes=max_duration,
            average_duration_minutes=round(sum(durations) / len(durations), 1),
            within_constraint=max_duration <= max_travel,
            max_travel_time_minutes=max_travel,
            spread_meters=spread,
            within_search_radius=spread <= search_radius,
            placement=self.placement.name,
        )

import googlemaps
from googlemaps import exceptions as gm_exceptions
from typing import Dict, List, Optional, Union
import datetime as _dt
import asyncio
import concurrent.futures
import logging
import math
import re

from .models import (
    FailureKind,
    LatLng,
    MatrixCell,
    RouteFailure,
    RouteResult,
    TravelLeg,
    TravelStep,
)


logger = logging.getLogger(__name__)

# --- Module-level constants ---
SUPPORTED_MODES = ('driving', 'walking', 'bicycling', 'transit')
DISTANCE_MATRIX_MAX_DEST = 25   # conservative chunk size for DM requests
NO_ROUTE_STATUSES = ('NOT_FOUND', 'ZERO_RESULTS')
_HTML_TAG = re.compile(r'<[^>]*>')

MatrixResult = Union[List[List[MatrixCell]], RouteFailure]


def _ceil_minutes(seconds) -> int:
    return int(math.ceil((seconds or 0) / 60))


def _epoch(value: Optional[Dict]) -> Optional[_dt.datetime]:
    if not value or value.get('value') is None:
        return None
    return _dt.datetime.fromtimestamp(value['value'], tz=_dt.timezone.utc)


def strip_html(text: str) -> str:
    return _HTML_TAG.sub('', text)


def normalize_step(step: Dict) -> TravelStep:
    instruction = step.get('instructions') or step.get('html_instructions') or 'Continue on route'
    transit = step.get('transit_details')
    details = None
    if transit:
        line = transit.get('line', {})
        details = {
            'line_name': line.get('short_name') or line.get('name'),
            'vehicle_type': line.get('vehicle', {}).get('type'),
            'headsign': transit.get('headsign'),
            'departure_stop': transit.get('departure_stop', {}).get('name'),
            'arrival_stop': transit.get('arrival_stop', {}).get('name'),
            'num_stops': transit.get('num_stops'),
        }
    return TravelStep(
        instruction=strip_html(instruction),
        duration_minutes=_ceil_minutes(step.get('duration', {}).get('value')),
        distance_text=step.get('distance', {}).get('text') or 'Unknown distance',
        travel_mode=(step.get('travel_mode') or 'unknown').lower(),
        transit_details=details,
    )


def normalize_leg(leg: Dict) -> Optional[TravelLeg]:
    """
    Convert the first leg of a provider route into a TravelLeg.
    Returns None when the leg lacks duration, distance or steps.
    """
    if not leg or 'duration' not in leg or 'distance' not in leg or 'steps' not in leg:
        return None
    return TravelLeg(
        duration_minutes=_ceil_minutes(leg['duration'].get('value')),
        distance_text=leg['distance'].get('text', ''),
        departure_time=_epoch(leg.get('departure_time')),
        arrival_time=_epoch(leg.get('arrival_time')),
        steps=[normalize_step(s) for s in leg['steps']],
    )


class GoogleMapsService:
    """Directions and distance-matrix access to the Google Maps APIs"""

    def __init__(self, api_key: str, timeout: float = 10.0, max_workers: int = 10):
        if not api_key or api_key == "your_api_key_here":
            raise ValueError("Valid Google Maps API key is required")
        self.timeout = timeout
        self.client = googlemaps.Client(key=api_key, timeout=timeout, retry_timeout=max(1, int(timeout)))
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers)

    def cleanup(self):
        """Clean up resources"""
        if hasattr(self, 'executor'):
            self.executor.shutdown(wait=True)

    def get_route(self, origin: LatLng, destination: LatLng, mode: str,
                  arrive_by: Optional[_dt.datetime] = None,
                  depart_at: Optional[_dt.datetime] = None) -> RouteResult:
        """
        Fetch the first route between two points and normalize its first leg.
        At most one of arrive_by / depart_at may be given.
        Failures come back as RouteFailure values.
        """
        if arrive_by is not None and depart_at is not None:
            raise ValueError("arrive_by and depart_at are mutually exclusive")
        mode = (mode or '').lower()
        if mode not in SUPPORTED_MODES:
            return RouteFailure(FailureKind.INVALID_MODE, f"Unsupported transport mode: {mode}")

        try:
            directions_result = self.client.directions(
                origin=origin.as_param(),
                destination=destination.as_param(),
                mode=mode,
                arrival_time=arrive_by,
                departure_time=depart_at,
                alternatives=False
            )
        except gm_exceptions.ApiError as e:
            if e.status in NO_ROUTE_STATUSES:
                return RouteFailure(FailureKind.NO_ROUTE, f"No {mode} route: {e.status}")
            logger.error(f"Directions API error: {e}")
            return RouteFailure(FailureKind.PROVIDER_ERROR, str(e))
        except ValueError as e:
            return RouteFailure(FailureKind.INVALID_MODE, str(e))
        except (gm_exceptions.Timeout, gm_exceptions.TransportError) as e:
            logger.error(f"Directions transport error: {e!r}")
            return RouteFailure(FailureKind.PROVIDER_ERROR, repr(e))

        if not directions_result:
            return RouteFailure(FailureKind.NO_ROUTE, f"No {mode} route found")

        legs = directions_result[0].get('legs') or []
        leg = normalize_leg(legs[0]) if legs else None
        if leg is None:
            logger.warning(f"Invalid route data structure: {legs[:1]}")
            return RouteFailure(FailureKind.PROVIDER_ERROR, "Malformed route in provider response")
        return leg

    def get_matrix(self, origins: List[LatLng], destinations: List[LatLng], mode: str = 'driving') -> MatrixResult:
        """Batch durations using Distance Matrix API. Returns a rows x cols grid
        where rows = len(origins) and cols = len(destinations), in input order.
        Chunks destinations to respect API limits; any failed request fails the whole grid.
        """
        mode = (mode or '').lower()
        if mode not in SUPPORTED_MODES:
            return RouteFailure(FailureKind.INVALID_MODE, f"Unsupported transport mode: {mode}")
        if not origins or not destinations:
            return []

        origin_strs = [o.as_param() for o in origins]
        rows = len(origins)
        cols = len(destinations)
        missing = MatrixCell(None, None, 'MISSING')
        matrix: List[List[MatrixCell]] = [[missing for _ in range(cols)] for _ in range(rows)]

        for start in range(0, cols, DISTANCE_MATRIX_MAX_DEST):
            end = min(start + DISTANCE_MATRIX_MAX_DEST, cols)
            dest_strs = [d.as_param() for d in destinations[start:end]]
            try:
                dm = self.client.distance_matrix(
                    origins=origin_strs,
                    destinations=dest_strs,
                    mode=mode,
                    units='metric',
                )
            except gm_exceptions.ApiError as e:
                logger.error(f"Distance Matrix error: {e}")
                return RouteFailure(FailureKind.PROVIDER_ERROR, str(e))
            except (gm_exceptions.Timeout, gm_exceptions.TransportError) as e:
                logger.error(f"Distance Matrix transport error: {e!r}")
                return RouteFailure(FailureKind.PROVIDER_ERROR, repr(e))

            if not dm or 'rows' not in dm:
                return RouteFailure(FailureKind.PROVIDER_ERROR, "Malformed distance matrix response")
            for i, row in enumerate(dm['rows'][:rows]):
                for j, el in enumerate(row.get('elements', [])[:end - start]):
                    status = el.get('status', 'UNKNOWN_ERROR')
                    seconds = el.get('duration', {}).get('value')
                    if status == 'OK' and seconds is not None:
                        matrix[i][start + j] = MatrixCell(
                            _ceil_minutes(seconds), el.get('distance', {}).get('text'), status
                        )
                    else:
                        matrix[i][start + j] = MatrixCell(None, None, status)
        return matrix

    # Async wrappers for parallel execution
    async def get_route_async(self, origin: LatLng, destination: LatLng, mode: str,
                              arrive_by: Optional[_dt.datetime] = None,
                              depart_at: Optional[_dt.datetime] = None) -> RouteResult:
        """Async wrapper for get_route bounded by the provider timeout"""
        loop = asyncio.get_running_loop()
        call = loop.run_in_executor(self.executor, self.get_route, origin, destination, mode, arrive_by, depart_at)
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Directions call timed out after {self.timeout}s")
            return RouteFailure(FailureKind.PROVIDER_ERROR, "Directions call timed out")

    async def get_matrix_async(self, origins: List[LatLng], destinations: List[LatLng],
                               mode: str = 'driving') -> MatrixResult:
        """Async wrapper for get_matrix bounded by the provider timeout"""
        loop = asyncio.get_running_loop()
        call = loop.run_in_executor(self.executor, self.get_matrix, origins, destinations, mode)
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Distance Matrix call timed out after {self.timeout}s")
            return RouteFailure(FailureKind.PROVIDER_ERROR, "Distance Matrix call timed out")

import datetime as _dt
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Union

from .errors import InvalidCoordinates


def parse_timestamp(value) -> _dt.datetime:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime."""
    if isinstance(value, _dt.datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = _dt.datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_dt.timezone.utc)
    return parsed.astimezone(_dt.timezone.utc)


def format_timestamp(value: Optional[_dt.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float

    @classmethod
    def from_dict(cls, data) -> 'LatLng':
        """Build a point from a {lat, lng} mapping, rejecting anything off the globe"""
        if not isinstance(data, dict) or 'lat' not in data or 'lng' not in data:
            raise InvalidCoordinates('Location must have lat and lng properties')
        try:
            lat = float(data['lat'])
            lng = float(data['lng'])
        except (TypeError, ValueError):
            raise InvalidCoordinates(f"Non-numeric coordinates: {data!r}")
        if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lng <= 180.0):
            raise InvalidCoordinates(f"Coordinates out of range: lat={lat}, lng={lng}")
        return cls(lat, lng)

    def as_param(self) -> str:
        return f"{self.lat},{self.lng}"

    def to_dict(self) -> Dict:
        return {'lat': self.lat, 'lng': self.lng}


@dataclass(frozen=True)
class OriginOverride:
    location: LatLng
    description: str = ''

    @classmethod
    def from_dict(cls, data: Dict) -> 'OriginOverride':
        return cls(LatLng.from_dict(data), str(data.get('description') or ''))

    def to_dict(self) -> Dict:
        return {**self.location.to_dict(), 'description': self.description}


@dataclass(frozen=True)
class Participant:
    id: str
    name: str
    default_location: Optional[LatLng]
    transport_modes: List[str] = field(default_factory=list)
    picture: Optional[str] = None


@dataclass(frozen=True)
class Event:
    id: str
    location: LatLng
    start: _dt.datetime
    end: _dt.datetime
    participant_ids: List[str]
    origin_overrides: Dict[str, OriginOverride]
    version: _dt.datetime
    travel_schedule_cache: Optional[Dict] = None

    @classmethod
    def from_record(cls, record: Dict) -> 'Event':
        overrides = {
            pid: OriginOverride.from_dict(raw)
            for pid, raw in (record.get('origin_overrides') or {}).items()
        }
        start = parse_timestamp(record['start'])
        return cls(
            id=record['id'],
            location=LatLng.from_dict(record['location']),
            start=start,
            end=parse_timestamp(record['end']),
            participant_ids=list(record.get('participant_ids') or []),
            origin_overrides=overrides,
            version=parse_timestamp(record.get('version') or start),
            travel_schedule_cache=record.get('travel_schedule_cache'),
        )


@dataclass(frozen=True)
class TravelStep:
    instruction: str
    duration_minutes: int
    distance_text: str
    travel_mode: str
    transit_details: Optional[Dict] = None

    def to_dict(self) -> Dict:
        data = {
            'instruction': self.instruction,
            'duration_minutes': self.duration_minutes,
            'distance': self.distance_text,
            'travel_mode': self.travel_mode,
        }
        if self.transit_details:
            data['transit_details'] = self.transit_details
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'TravelStep':
        return cls(
            instruction=data['instruction'],
            duration_minutes=int(data['duration_minutes']),
            distance_text=data['distance'],
            travel_mode=data['travel_mode'],
            transit_details=data.get('transit_details'),
        )


@dataclass(frozen=True)
class TravelLeg:
    duration_minutes: int
    distance_text: str
    departure_time: Optional[_dt.datetime] = None
    arrival_time: Optional[_dt.datetime] = None
    steps: List[TravelStep] = field(default_factory=list)

    def with_times(self, departure_time: _dt.datetime, arrival_time: _dt.datetime) -> 'TravelLeg':
        return replace(self, departure_time=departure_time, arrival_time=arrival_time)

    def to_dict(self) -> Dict:
        return {
            'departure_time': format_timestamp(self.departure_time),
            'arrival_time': format_timestamp(self.arrival_time),
            'duration_minutes': self.duration_minutes,
            'distance': self.distance_text,
            'steps': [step.to_dict() for step in self.steps],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'TravelLeg':
        return cls(
            duration_minutes=int(data['duration_minutes']),
            distance_text=data['distance'],
            departure_time=parse_timestamp(data['departure_time']) if data.get('departure_time') else None,
            arrival_time=parse_timestamp(data['arrival_time']) if data.get('arrival_time') else None,
            steps=[TravelStep.from_dict(s) for s in data.get('steps', [])],
        )


@dataclass(frozen=True)
class TravelSchedule:
    participant_id: str
    participant_name: str
    transport_mode: str
    outbound: TravelLeg
    return_leg: TravelLeg
    participant_picture: Optional[str] = None
    origin_description: str = 'Home'

    def to_dict(self) -> Dict:
        return {
            'participant_id': self.participant_id,
            'participant_name': self.participant_name,
            'participant_picture': self.participant_picture,
            'transport_mode': self.transport_mode,
            'origin_description': self.origin_description,
            'outbound': self.outbound.to_dict(),
            'return': self.return_leg.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'TravelSchedule':
        return cls(
            participant_id=data['participant_id'],
            participant_name=data['participant_name'],
            transport_mode=data['transport_mode'],
            outbound=TravelLeg.from_dict(data['outbound']),
            return_leg=TravelLeg.from_dict(data['return']),
            participant_picture=data.get('participant_picture'),
            origin_description=data.get('origin_description') or 'Home',
        )


@dataclass(frozen=True)
class CacheEntry:
    schedules: List[TravelSchedule]
    generated_at: _dt.datetime
    event_version: _dt.datetime
    participant_ids: FrozenSet[str]

    def is_fresh(self, now: _dt.datetime, ttl: _dt.timedelta) -> bool:
        return now - self.generated_at < ttl

    def to_dict(self) -> Dict:
        return {
            'schedules': [s.to_dict() for s in self.schedules],
            'generated_at': format_timestamp(self.generated_at),
            'event_version': format_timestamp(self.event_version),
            'participant_ids': sorted(self.participant_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'CacheEntry':
        return cls(
            schedules=[TravelSchedule.from_dict(s) for s in data.get('schedules', [])],
            generated_at=parse_timestamp(data['generated_at']),
            event_version=parse_timestamp(data['event_version']),
            participant_ids=frozenset(data.get('participant_ids', [])),
        )


class FailureKind(Enum):
    NO_ROUTE = 'NoRoute'
    PROVIDER_ERROR = 'ProviderError'
    INVALID_MODE = 'InvalidMode'


@dataclass(frozen=True)
class RouteFailure:
    kind: FailureKind
    message: str = ''


RouteResult = Union[TravelLeg, RouteFailure]


@dataclass(frozen=True)
class MatrixCell:
    duration_minutes: Optional[int]
    distance_text: Optional[str]
    status: str

    @property
    def ok(self) -> bool:
        return self.status == 'OK' and self.duration_minutes is not None


@dataclass(frozen=True)
class ParticipantTravelTime:
    participant_id: str
    participant_name: str
    duration_minutes: Optional[int]
    distance_text: Optional[str]
    status: str

    def to_dict(self) -> Dict:
        return {
            'participant_id': self.participant_id,
            'participant_name': self.participant_name,
            'duration_minutes': self.duration_minutes,
            'distance': self.distance_text,
            'status': self.status,
        }


@dataclass(frozen=True)
class MeetupResult:
    candidate_location: LatLng
    per_participant_travel_time: List[ParticipantTravelTime]
    max_duration_minutes: int
    average_duration_minutes: float
    within_constraint: bool
    max_travel_time_minutes: int
    spread_meters: float
    within_search_radius: bool
    placement: str

    def to_dict(self) -> Dict:
        return {
            'candidate_location': self.candidate_location.to_dict(),
            'placement': self.placement,
            'per_participant_travel_time': [t.to_dict() for t in self.per_participant_travel_time],
            'max_duration_minutes': self.max_duration_minutes,
            'average_duration_minutes': self.average_duration_minutes,
            'max_travel_time_minutes': self.max_travel_time_minutes,
            'within_constraint': self.within_constraint,
            'spread_meters': round(self.spread_meters, 1),
            'within_search_radius': self.within_search_radius,
        }


@dataclass(frozen=True)
class ScheduleResponse:
    schedules: List[TravelSchedule]
    cached: bool
    generated_at: _dt.datetime
    participants_total: int
    participants_scheduled: int

    def to_dict(self) -> Dict:
        return {
            'schedules': [s.to_dict() for s in self.schedules],
            'cached': self.cached,
            'generated_at': format_timestamp(self.generated_at),
            'summary': {
                'participants_total': self.participants_total,
                'participants_scheduled': self.participants_scheduled,
            },
        }

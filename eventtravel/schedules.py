import asyncio
import datetime as _dt
import logging
from typing import Callable, List, Optional, Tuple

from .errors import EmptyParticipantSet, EventNotFound
from .models import (
    CacheEntry,
    Event,
    FailureKind,
    OriginOverride,
    Participant,
    RouteFailure,
    ScheduleResponse,
    TravelLeg,
    TravelSchedule,
    utcnow,
)
from .participants import ParticipantResolver
from .schedule_cache import KeyedLocks, ScheduleCache
from .store import KeyValueStore


logger = logging.getLogger(__name__)

# --- Module-level constants ---
ARRIVAL_BUFFER_MINUTES = 5
SCHEDULE_CACHE_TTL_MINUTES = 30
DEFAULT_TRANSPORT_MODE = 'driving'
MAX_CONCURRENT_SCHEDULES = 8


def reconcile_timing(outbound: TravelLeg, return_leg: TravelLeg, event: Event,
                     buffer_minutes: int = ARRIVAL_BUFFER_MINUTES) -> Tuple[TravelLeg, TravelLeg]:
    """
    Fill in departure/arrival times the provider did not return.
    Outbound arrives buffer_minutes before the start and leaves its own duration
    earlier; the return leaves at the end and arrives its own duration later.
    """
    buffer = _dt.timedelta(minutes=buffer_minutes)
    outbound_arrival = outbound.arrival_time or (event.start - buffer)
    outbound_departure = outbound.departure_time or (
        event.start - _dt.timedelta(minutes=outbound.duration_minutes) - buffer
    )
    return_departure = return_leg.departure_time or event.end
    return_arrival = return_leg.arrival_time or (
        return_departure + _dt.timedelta(minutes=return_leg.duration_minutes)
    )
    return (
        outbound.with_times(outbound_departure, outbound_arrival),
        return_leg.with_times(return_departure, return_arrival),
    )


class ScheduleGenerator:
    """Builds the round trip of one participant to one event"""

    def __init__(self, directions, arrival_buffer_minutes: int = ARRIVAL_BUFFER_MINUTES,
                 default_mode: str = DEFAULT_TRANSPORT_MODE):
        self.directions = directions
        self.arrival_buffer_minutes = arrival_buffer_minutes
        self.default_mode = default_mode

    def generate(self, participant: Participant, event: Event,
                 origin_override: Optional[OriginOverride] = None) -> Optional[TravelSchedule]:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(self.generate_async(participant, event, origin_override))
        finally:
            loop.close()

    async def generate_async(self, participant: Participant, event: Event,
                             origin_override: Optional[OriginOverride] = None) -> Optional[TravelSchedule]:
        """
        Returns the schedule, or None when either leg cannot be routed.
        An unsupported mode falls through to the participant's next preferred mode.
        """
        origin = origin_override.location if origin_override else participant.default_location
        if origin is None:
            logger.warning(f"Omitting {participant.id}: no origin location")
            return None

        modes = participant.transport_modes or [self.default_mode]
        for mode in modes:
            outbound = await self.directions.get_route_async(
                origin, event.location, mode, arrive_by=event.start
            )
            if isinstance(outbound, RouteFailure):
                if outbound.kind is FailureKind.INVALID_MODE:
                    logger.info(f"Mode {mode} rejected for {participant.id}, trying next preference")
                    continue
                logger.warning(f"Omitting {participant.id}: outbound {outbound.kind.value} ({outbound.message})")
                return None

            return_leg = await self.directions.get_route_async(
                event.location, origin, mode, depart_at=event.end
            )
            if isinstance(return_leg, RouteFailure):
                if return_leg.kind is FailureKind.INVALID_MODE:
                    continue
                logger.warning(f"Omitting {participant.id}: return {return_leg.kind.value} ({return_leg.message})")
                return None

            outbound, return_leg = reconcile_timing(outbound, return_leg, event, self.arrival_buffer_minutes)
            return TravelSchedule(
                participant_id=participant.id,
                participant_name=participant.name,
                transport_mode=mode,
                outbound=outbound,
                return_leg=return_leg,
                participant_picture=participant.picture,
                origin_description=(origin_override.description or 'Custom starting location')
                if origin_override else 'Home',
            )

        logger.warning(f"Omitting {participant.id}: none of the modes {modes} is supported")
        return None


class TravelSchedulesService:
    """Serves per-event travel schedules out of the schedule cache, regenerating when needed"""

    def __init__(self, events: KeyValueStore, resolver: ParticipantResolver, generator: ScheduleGenerator,
                 cache: ScheduleCache, ttl_minutes: int = SCHEDULE_CACHE_TTL_MINUTES,
                 max_concurrency: int = MAX_CONCURRENT_SCHEDULES,
                 clock: Callable[[], _dt.datetime] = utcnow):
        self.events = events
        self.resolver = resolver
        self.generator = generator
        self.cache = cache
        self.ttl = _dt.timedelta(minutes=ttl_minutes)
        self.max_concurrency = max(1, max_concurrency)
        self.clock = clock
        self._locks = KeyedLocks()

    def _load_event(self, event_id: str) -> Event:
        record = self.events.get(event_id)
        if record is None:
            raise EventNotFound(event_id)
        return Event.from_record(record)

    def get_or_regenerate_schedules(self, event_id: str, requesting_participant_id: Optional[str] = None,
                                    force_regenerate: bool = False) -> ScheduleResponse:
        """
        Return the cached schedules for an event when they are still fresh,
        otherwise regenerate them for every participant (plus the requester).
        A regeneration that produces nothing leaves the previous entry in place.
        """
        with self._locks.hold(event_id):
            event = self._load_event(event_id)
            participant_ids = list(event.participant_ids)
            if requesting_participant_id and requesting_participant_id not in participant_ids:
                participant_ids.append(requesting_participant_id)
            if not participant_ids:
                raise EmptyParticipantSet(event_id)

            now = self.clock()
            entry = self.cache.get(event_id)
            reason = self._miss_reason(entry, event, participant_ids, now, force_regenerate)
            if reason is None:
                logger.info(f"Serving cached schedules for event {event_id} (generated {entry.generated_at.isoformat()})")
                return ScheduleResponse(
                    schedules=list(entry.schedules),
                    cached=True,
                    generated_at=entry.generated_at,
                    participants_total=len(entry.participant_ids),
                    participants_scheduled=len(entry.schedules),
                )

            logger.info(f"Regenerating schedules for event {event_id}: {reason}")
            schedules = self._run(self.generate_for_event(event, participant_ids))
            if schedules:
                self.cache.put(event_id, CacheEntry(
                    schedules=schedules,
                    generated_at=now,
                    event_version=event.version,
                    participant_ids=frozenset(participant_ids),
                ))
            else:
                logger.warning(f"No schedules generated for event {event_id}; previous cache entry left untouched")
            return ScheduleResponse(
                schedules=schedules,
                cached=False,
                generated_at=now,
                participants_total=len(participant_ids),
                participants_scheduled=len(schedules),
            )

    def invalidate_schedules(self, event_id: str) -> None:
        with self._locks.hold(event_id):
            if self.events.get(event_id) is None:
                raise EventNotFound(event_id)
            self.cache.invalidate(event_id)

    def _miss_reason(self, entry: Optional[CacheEntry], event: Event, participant_ids: List[str],
                     now: _dt.datetime, force: bool) -> Optional[str]:
        if force:
            return 'forced'
        if entry is None:
            return 'no cache entry'
        if not entry.is_fresh(now, self.ttl):
            return 'expired'
        if entry.event_version != event.version:
            return 'event changed since generation'
        if not set(participant_ids) <= entry.participant_ids:
            return 'participant not covered by cache'
        return None

    async def generate_for_event(self, event: Event, participant_ids: List[str]) -> List[TravelSchedule]:
        """Fan out one task per participant; failures only drop that participant."""
        participants = self.resolver.resolve(participant_ids, overridden_ids=event.origin_overrides.keys())
        if not participants:
            logger.warning(f"No resolvable participants for event {event.id}")
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def one(participant: Participant) -> Optional[TravelSchedule]:
            async with semaphore:
                return await self.generator.generate_async(
                    participant, event, event.origin_overrides.get(participant.id)
                )

        results = await asyncio.gather(*(one(p) for p in participants), return_exceptions=True)
        schedules: List[TravelSchedule] = []
        for participant, result in zip(participants, results):
            if isinstance(result, BaseException):
                logger.error(f"Error generating schedule for {participant.id}: {result!r}")
            elif result is not None:
                schedules.append(result)

        logger.info(f"Schedules generated for event {event.id}: {len(schedules)} of {len(participant_ids)} participants")
        schedules.sort(key=lambda s: s.participant_id)
        return schedules

    @staticmethod
    def _run(coro):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(coro)
        finally:
            loop.close()

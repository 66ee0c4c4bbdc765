import logging
from typing import Dict, Iterable, List, Optional

from .errors import EventNotFound
from .models import LatLng, OriginOverride, format_timestamp, parse_timestamp, utcnow
from .schedule_cache import CACHE_FIELD
from .store import KeyValueStore


logger = logging.getLogger(__name__)


class EventService:
    """Mutations of the fields travel schedules depend on.

    Every mutation bumps the event version and drops the cached schedules in
    the same store update.
    """

    def __init__(self, events: KeyValueStore, clock=utcnow):
        self.events = events
        self.clock = clock

    def _require(self, event_id: str) -> Dict:
        record = self.events.get(event_id)
        if record is None:
            raise EventNotFound(event_id)
        return record

    def _mutate(self, event_id: str, changes: Dict) -> Dict:
        changes = {**changes, 'version': format_timestamp(self.clock())}
        updated = self.events.update(event_id, set_fields=changes, remove_fields=[CACHE_FIELD])
        if updated is None:
            raise EventNotFound(event_id)
        logger.info(f"Event {event_id} updated ({', '.join(sorted(changes))}); travel schedules invalidated")
        return updated

    def update_event(self, event_id: str, location: Optional[Dict] = None, start=None, end=None,
                     participant_ids: Optional[Iterable[str]] = None) -> Dict:
        record = self._require(event_id)
        changes: Dict = {}
        if location is not None:
            changes['location'] = LatLng.from_dict(location).to_dict()
        if start is not None:
            changes['start'] = format_timestamp(parse_timestamp(start))
        if end is not None:
            changes['end'] = format_timestamp(parse_timestamp(end))
        if participant_ids is not None:
            changes['participant_ids'] = _unique(participant_ids)
        if not changes:
            raise ValueError('No valid fields to update')

        new_start = parse_timestamp(changes.get('start', record['start']))
        new_end = parse_timestamp(changes.get('end', record['end']))
        if new_end <= new_start:
            raise ValueError('Event end must be after its start')
        return self._mutate(event_id, changes)

    def add_participants(self, event_id: str, participant_ids: Iterable[str]) -> Dict:
        record = self._require(event_id)
        merged = _unique(list(record.get('participant_ids') or []) + list(participant_ids))
        return self._mutate(event_id, {'participant_ids': merged})

    def remove_participant(self, event_id: str, participant_id: str) -> Dict:
        record = self._require(event_id)
        remaining = [p for p in record.get('participant_ids') or [] if p != participant_id]
        overrides = dict(record.get('origin_overrides') or {})
        overrides.pop(participant_id, None)
        return self._mutate(event_id, {'participant_ids': remaining, 'origin_overrides': overrides})

    def set_origin_override(self, event_id: str, participant_id: str, override: Dict) -> Dict:
        record = self._require(event_id)
        overrides = dict(record.get('origin_overrides') or {})
        overrides[participant_id] = OriginOverride.from_dict(override).to_dict()
        return self._mutate(event_id, {'origin_overrides': overrides})

    def clear_origin_override(self, event_id: str, participant_id: str) -> Dict:
        record = self._require(event_id)
        overrides = dict(record.get('origin_overrides') or {})
        overrides.pop(participant_id, None)
        return self._mutate(event_id, {'origin_overrides': overrides})


def _unique(ids: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for pid in ids:
        if pid not in seen:
            seen.add(pid)
            ordered.append(pid)
    return ordered

import logging
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from .models import CacheEntry
from .store import KeyValueStore


logger = logging.getLogger(__name__)

CACHE_FIELD = 'travel_schedule_cache'


class ScheduleCache:
    """Per-event holder of the latest generated schedules"""

    def get(self, event_id: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def put(self, event_id: str, entry: CacheEntry) -> None:
        raise NotImplementedError

    def invalidate(self, event_id: str) -> None:
        raise NotImplementedError


class EventRecordScheduleCache(ScheduleCache):
    """Keeps the cache entry as a field of the event record itself.

    The entry is written and removed with a single store update, so readers see
    either the previous entry, the new one, or none.
    """

    def __init__(self, events: KeyValueStore):
        self.events = events

    @staticmethod
    def entry_from_record(record: Optional[Dict]) -> Optional[CacheEntry]:
        raw = (record or {}).get(CACHE_FIELD)
        if not raw:
            return None
        try:
            return CacheEntry.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable schedule cache on event {record.get('id')}: {e!r}")
            return None

    def get(self, event_id: str) -> Optional[CacheEntry]:
        return self.entry_from_record(self.events.get(event_id))

    def put(self, event_id: str, entry: CacheEntry) -> None:
        updated = self.events.update(event_id, set_fields={CACHE_FIELD: entry.to_dict()})
        if updated is None:
            logger.warning(f"Event {event_id} vanished before its schedules could be cached")
            return
        logger.info(f"Cached {len(entry.schedules)} schedules for event {event_id}")

    def invalidate(self, event_id: str) -> None:
        self.events.update(event_id, remove_fields=[CACHE_FIELD])
        logger.info(f"Invalidated schedule cache for event {event_id}")


class KeyedLocks:
    """Hands out one lock per key so work on the same event is serialized.

    A key's lock lives only while someone holds or waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # key -> [lock, holders]

    def __len__(self):
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            slot = self._locks.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[key]

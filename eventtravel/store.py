import copy
import json
import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional


logger = logging.getLogger(__name__)


class KeyValueStore:
    """
    Contract of the record store holding users and events.
    Records are dicts keyed by their 'id' field.
    """

    def get(self, key: str) -> Optional[Dict]:
        raise NotImplementedError

    def put(self, record: Dict) -> None:
        raise NotImplementedError

    def update(self, key: str, set_fields: Optional[Dict] = None,
               remove_fields: Iterable[str] = ()) -> Optional[Dict]:
        """Set and remove fields of one record in a single step. Returns the updated record
        or None if the record does not exist."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def scan(self, predicate: Optional[Callable[[Dict], bool]] = None) -> List[Dict]:
        raise NotImplementedError


class InMemoryStore(KeyValueStore):
    """Thread-safe store kept in process memory; records are copied in and out"""

    def __init__(self, table_name: str, records: Iterable[Dict] = ()):
        self.table_name = table_name
        self._records: Dict[str, Dict] = {}
        self._lock = threading.Lock()
        for record in records:
            self.put(record)

    def get(self, key: str) -> Optional[Dict]:
        with self._lock:
            record = self._records.get(key)
            return copy.deepcopy(record) if record is not None else None

    def put(self, record: Dict) -> None:
        if 'id' not in record:
            raise ValueError(f"Record for {self.table_name} is missing an id")
        with self._lock:
            self._records[record['id']] = copy.deepcopy(record)
        logger.debug(f"Stored {record['id']} in {self.table_name}")

    def update(self, key: str, set_fields: Optional[Dict] = None,
               remove_fields: Iterable[str] = ()) -> Optional[Dict]:
        with self._lock:
            current = self._records.get(key)
            if current is None:
                return None
            updated = copy.deepcopy(current)
            updated.update(copy.deepcopy(set_fields or {}))
            for name in remove_fields:
                updated.pop(name, None)
            self._records[key] = updated
            return copy.deepcopy(updated)

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def scan(self, predicate: Optional[Callable[[Dict], bool]] = None) -> List[Dict]:
        with self._lock:
            records = [copy.deepcopy(r) for r in self._records.values()]
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]


def load_seed_data(path: str, users: KeyValueStore, events: KeyValueStore) -> None:
    """Populate the stores from a JSON file of the form {"users": [...], "events": [...]}"""
    with open(path, encoding='utf-8') as fh:
        data = json.load(fh)
    for user in data.get('users', []):
        users.put(user)
    for event in data.get('events', []):
        events.put(event)
    logger.info(f"Seeded {len(data.get('users', []))} users and {len(data.get('events', []))} events from {path}")

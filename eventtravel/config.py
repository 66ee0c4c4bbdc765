import os
import logging
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

PLACEHOLDER_API_KEY = "your_api_key_here"


@dataclass(frozen=True)
class Settings:
    """Runtime settings read from the environment (and .env if present)"""
    google_maps_api_key: Optional[str] = None
    schedule_cache_ttl_minutes: int = 30
    arrival_buffer_minutes: int = 5
    provider_timeout_seconds: float = 10.0
    max_concurrent_schedules: int = 8
    default_transport_mode: str = 'driving'
    meetup_placement: str = 'centroid'
    users_table: str = 'snapevent-users'
    events_table: str = 'snapevent-events'
    seed_data_file: Optional[str] = None

    @property
    def has_maps_key(self) -> bool:
        return bool(self.google_maps_api_key) and self.google_maps_api_key != PLACEHOLDER_API_KEY


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Ignoring malformed {name}={raw!r}, using default {default}")
        return default
    if value <= 0:
        logger.warning(f"Ignoring non-positive {name}={raw!r}, using default {default}")
        return default
    return value


def load_settings(dotenv_path: Optional[str] = None) -> Settings:
    """
    Build Settings from the process environment.
    A .env file is loaded first without overriding variables already set.
    """
    load_dotenv(dotenv_path=dotenv_path)
    defaults = Settings()
    return Settings(
        google_maps_api_key=os.getenv('GOOGLE_MAPS_API_KEY'),
        schedule_cache_ttl_minutes=_env_number('SCHEDULE_CACHE_TTL_MINUTES', defaults.schedule_cache_ttl_minutes, int),
        arrival_buffer_minutes=_env_number('ARRIVAL_BUFFER_MINUTES', defaults.arrival_buffer_minutes, int),
        provider_timeout_seconds=_env_number('PROVIDER_TIMEOUT_SECONDS', defaults.provider_timeout_seconds, float),
        max_concurrent_schedules=_env_number('MAX_CONCURRENT_SCHEDULES', defaults.max_concurrent_schedules, int),
        default_transport_mode=os.getenv('DEFAULT_TRANSPORT_MODE', defaults.default_transport_mode).lower(),
        meetup_placement=os.getenv('MEETUP_PLACEMENT', defaults.meetup_placement).lower(),
        users_table=os.getenv('USERS_TABLE', defaults.users_table),
        events_table=os.getenv('EVENTS_TABLE', defaults.events_table),
        seed_data_file=os.getenv('SEED_DATA_FILE') or None,
    )

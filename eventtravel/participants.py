import logging
from typing import Collection, List, Optional

from .errors import InvalidCoordinates
from .models import LatLng, Participant
from .store import KeyValueStore


logger = logging.getLogger(__name__)


class ParticipantResolver:
    """Loads participant profiles from the users table"""

    def __init__(self, users: KeyValueStore, default_mode: str = 'driving'):
        self.users = users
        self.default_mode = default_mode

    def resolve(self, participant_ids: List[str], overridden_ids: Collection[str] = ()) -> List[Participant]:
        """
        Resolve ids into Participants, preserving input order.
        Missing profiles, failed fetches, duplicates and profiles without a usable
        location are dropped (and logged); a participant with an origin override
        in overridden_ids is kept even without a profile location.
        """
        resolved: List[Participant] = []
        seen = set()
        for user_id in participant_ids:
            if user_id in seen:
                logger.warning(f"Dropping participant {user_id}: duplicate id")
                continue
            seen.add(user_id)

            try:
                user = self.users.get(user_id)
            except Exception as e:
                logger.warning(f"Dropping participant {user_id}: profile fetch failed ({e!r})")
                continue
            if not user:
                logger.warning(f"Dropping participant {user_id}: profile not found")
                continue

            location = self._profile_location(user)
            if location is None and user_id not in overridden_ids:
                logger.warning(f"Dropping participant {user_id}: no usable location")
                continue

            modes = [str(m).lower() for m in (user.get('transport_modes') or [])] or [self.default_mode]
            participant = Participant(
                id=user_id,
                name=user.get('name') or user_id,
                default_location=location,
                transport_modes=modes,
                picture=user.get('picture'),
            )
            resolved.append(participant)
            logger.info(
                "Resolved participant %s (%s) modes=%s location=%s",
                participant.id, participant.name, modes,
                'profile' if location is not None else 'override only',
            )

        logger.info(f"Resolved {len(resolved)} of {len(participant_ids)} participants")
        return resolved

    @staticmethod
    def _profile_location(user) -> Optional[LatLng]:
        if user.get('lat') is None or user.get('lng') is None:
            return None
        try:
            return LatLng.from_dict({'lat': user['lat'], 'lng': user['lng']})
        except InvalidCoordinates:
            return None

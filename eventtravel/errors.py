class TravelPlannerError(Exception):
    """Base class for errors surfaced to callers of the planning services"""
    status_code = 500


class EventNotFound(TravelPlannerError):
    status_code = 404

    def __init__(self, event_id: str):
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class EmptyParticipantSet(TravelPlannerError):
    """The event has nobody to plan for (as opposed to planning failing for everyone)"""
    status_code = 422

    def __init__(self, event_id: str):
        super().__init__(f"Event {event_id} has no participants")
        self.event_id = event_id


class ProviderError(TravelPlannerError):
    status_code = 502


class InvalidCoordinates(TravelPlannerError):
    status_code = 400


class ConfigurationError(TravelPlannerError):
    status_code = 500


class UnsupportedTransportMode(TravelPlannerError):
    status_code = 400

from flask import Flask, current_app, request, jsonify, g
from flask_cors import CORS
import atexit
import os
import logging
from time import perf_counter

from .config import Settings, load_settings
from .errors import TravelPlannerError
from .events import EventService
from .maps_service import GoogleMapsService
from .meetup import MeetupPointFinder, get_placement
from .participants import ParticipantResolver
from .schedule_cache import EventRecordScheduleCache
from .schedules import ScheduleGenerator, TravelSchedulesService
from .store import InMemoryStore, load_seed_data


# Configure logging
_handlers = [logging.StreamHandler()]
if os.getenv('LOG_FILE'):
    _handlers.append(logging.FileHandler(os.getenv('LOG_FILE')))
logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=_handlers
)
logger = logging.getLogger(__name__)

TRUTHY = ('1', 'true', 'yes', 'on')


def _services():
    return current_app.extensions['eventtravel']


def _query_arg(*names) -> str:
    for name in names:
        value = request.args.get(name)
        if value is not None:
            return value
    return ''


def _require_maps():
    if _services()['maps_service'] is None:
        return jsonify({'success': False, 'error': 'Google Maps API key not configured'}), 500
    return None


def create_app(settings: Settings = None, maps_service=None, users=None, events=None) -> Flask:
    """
    Build the API app. Collaborators may be injected; otherwise they are
    created from settings (in-memory stores, Google Maps when a key is set).
    """
    settings = settings or load_settings()
    users = users if users is not None else InMemoryStore(settings.users_table)
    events = events if events is not None else InMemoryStore(settings.events_table)
    if settings.seed_data_file:
        load_seed_data(settings.seed_data_file, users, events)

    logger.info(f"API Key found: {'Yes' if settings.has_maps_key else 'No'}")
    if maps_service is None and settings.has_maps_key:
        try:
            logger.info("Initializing Google Maps service...")
            maps_service = GoogleMapsService(
                settings.google_maps_api_key,
                timeout=settings.provider_timeout_seconds,
                # timed-out calls still hold their worker until the HTTP call returns
                max_workers=max(10, 2 * settings.max_concurrent_schedules),
            )
            atexit.register(maps_service.cleanup)
            logger.info("Google Maps service initialized successfully")
        except ValueError as e:
            logger.error(f"Error initializing Google Maps service: {e}")
            maps_service = None
    elif maps_service is None:
        logger.warning("GOOGLE_MAPS_API_KEY not found or not configured in environment variables")

    # Routing-backed endpoints refuse to run while maps_service is None
    generator = ScheduleGenerator(
        maps_service,
        arrival_buffer_minutes=settings.arrival_buffer_minutes,
        default_mode=settings.default_transport_mode,
    )
    schedules_service = TravelSchedulesService(
        events,
        ParticipantResolver(users, default_mode=settings.default_transport_mode),
        generator,
        EventRecordScheduleCache(events),
        ttl_minutes=settings.schedule_cache_ttl_minutes,
        max_concurrency=settings.max_concurrent_schedules,
    )
    meetup_finder = MeetupPointFinder(maps_service, placement=get_placement(settings.meetup_placement))
    logger.info(f"Using {settings.meetup_placement} meetup placement")

    app = Flask(__name__)
    CORS(app)  # Enable CORS for all routes
    app.extensions['eventtravel'] = {
        'settings': settings,
        'maps_service': maps_service,
        'users': users,
        'events': events,
        'event_service': EventService(events),
        'schedules_service': schedules_service,
        'meetup_finder': meetup_finder,
    }
    _register(app)
    return app


def _register(app: Flask):

    # Per-request timing: record start time and log duration on completion
    @app.before_request
    def _start_timer():
        g._start_time = perf_counter()

    @app.after_request
    def _log_request_duration(response):
        start = getattr(g, '_start_time', None)
        if start is not None:
            duration_ms = (perf_counter() - start) * 1000.0
            response.headers['X-Process-Time-ms'] = f"{duration_ms:.1f}"
            logger.info(
                "request completed: method=%s path=%s status=%s duration_ms=%.1f remote_addr=%s",
                request.method,
                request.full_path if request.query_string else request.path,
                response.status_code,
                duration_ms,
                request.remote_addr,
            )
        return response

    @app.errorhandler(TravelPlannerError)
    def _planner_error(error):
        if error.status_code >= 500:
            logger.error(f"{type(error).__name__}: {error}")
        return jsonify({'success': False, 'error': str(error), 'kind': type(error).__name__}), error.status_code

    @app.errorhandler(ValueError)
    def _bad_request(error):
        return jsonify({'success': False, 'error': str(error)}), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Endpoint not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'error': 'Internal server error'}), 500

    @app.route('/', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return jsonify({
            'message': 'Event travel planner API is running!',
            'endpoints': {
                'travel_schedules': '/api/events/<event_id>/travel-schedules',
                'update_event': '/api/events/<event_id>',
                'starting_locations': '/api/events/<event_id>/starting-locations/<participant_id>',
                'meetup_point': '/api/meetup-point',
                'health': '/'
            },
            'maps_configured': _services()['maps_service'] is not None,
            'status': 'healthy'
        })

    @app.route('/api/events/<event_id>/travel-schedules', methods=['GET'])
    def get_travel_schedules(event_id):
        """
        Query: ?participantId=<requesting participant>&forceRegenerate=true
        (participant_id / force_regenerate are accepted too)
        """
        missing = _require_maps()
        if missing:
            return missing
        force = _query_arg('forceRegenerate', 'force_regenerate').lower() in TRUTHY
        response = _services()['schedules_service'].get_or_regenerate_schedules(
            event_id,
            requesting_participant_id=_query_arg('participantId', 'participant_id') or None,
            force_regenerate=force,
        )
        logger.info(
            f"Event {event_id}: {response.participants_scheduled} of {response.participants_total} "
            f"participants scheduled (cached={response.cached})"
        )
        return jsonify({'success': True, 'data': response.to_dict()})

    @app.route('/api/events/<event_id>/travel-schedules', methods=['DELETE'])
    def invalidate_travel_schedules(event_id):
        _services()['schedules_service'].invalidate_schedules(event_id)
        return jsonify({'success': True, 'message': 'Travel schedules invalidated'})

    @app.route('/api/events/<event_id>', methods=['PATCH'])
    def update_event(event_id):
        """
        Expected JSON: {"location": {"lat", "lng"}, "start": iso, "end": iso, "participant_ids": [...]}
        (any subset)
        """
        data = request.get_json(silent=True)
        if not data:
            return jsonify({'success': False, 'error': 'JSON data is required'}), 400
        updated = _services()['event_service'].update_event(
            event_id,
            location=data.get('location'),
            start=data.get('start'),
            end=data.get('end'),
            participant_ids=data.get('participant_ids'),
        )
        return jsonify({'success': True, 'data': updated, 'message': 'Event updated successfully'})

    @app.route('/api/events/<event_id>/starting-locations/<participant_id>', methods=['PUT'])
    def set_starting_location(event_id, participant_id):
        """
        Expected JSON: {"lat": 43.66, "lng": -79.39, "description": "Office"}
        """
        data = request.get_json(silent=True)
        if not data:
            return jsonify({'success': False, 'error': 'JSON data is required'}), 400
        updated = _services()['event_service'].set_origin_override(event_id, participant_id, data)
        return jsonify({'success': True, 'data': updated, 'message': 'Starting location updated'})

    @app.route('/api/events/<event_id>/starting-locations/<participant_id>', methods=['DELETE'])
    def clear_starting_location(event_id, participant_id):
        updated = _services()['event_service'].clear_origin_override(event_id, participant_id)
        return jsonify({'success': True, 'data': updated, 'message': 'Starting location removed'})

    @app.route('/api/meetup-point', methods=['POST'])
    def find_meetup_point():
        """
        Expected JSON: {
            "participants": [{"id": "u1", "name": "Alex", "lat": 43.66, "lng": -79.39}, ...],
            "constraints": {"max_travel_time_minutes": 60, "search_radius_meters": 10000},
            "mode": "driving"
        }
        """
        missing = _require_maps()
        if missing:
            return missing
        data = request.get_json(silent=True)
        if not data or not isinstance(data.get('participants'), list):
            return jsonify({'success': False, 'error': 'participants must be a list'}), 400

        _compute_start = perf_counter()
        result = _services()['meetup_finder'].find_meetup_point(
            data['participants'],
            constraints=data.get('constraints'),
            mode=data.get('mode') or 'driving',
        )
        _compute_ms = (perf_counter() - _compute_start) * 1000.0
        logger.info("Time to find meetup point = %.1f ms", _compute_ms)

        response = jsonify({'success': True, 'data': result.to_dict()})
        response.headers['X-Compute-Time-ms'] = f"{_compute_ms:.1f}"
        return response


app = create_app()


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', '5000')), debug=True)

"""Travel schedules and meetup points for group events"""

__version__ = "0.1.0"

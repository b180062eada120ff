from .config import Config
from .event_bus import EventBus, Event, EventType, LoggingEventSink

__all__ = ['Config', 'EventBus', 'Event', 'EventType', 'LoggingEventSink']

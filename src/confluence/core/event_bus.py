# event_bus.py

import logging
import time
from typing import Dict, List, Any, Optional, Callable, Union
from dataclasses import dataclass, field
from enum import Enum
from collections import defaultdict, deque

logger = logging.getLogger(__name__)

class EventType(Enum):
    """Typed events emitted by the fusion engine"""
    # Ingestion Events
    SIGNATURE_INGESTED = "signature_ingested"
    CORRELATIONS_UPDATED = "correlations_updated"

    # Detection Events
    CONVERGENCE_DETECTED = "convergence_detected"
    PHASE_LOCK_DETECTED = "phase_lock_detected"

    # Prediction Events
    PREDICTION_GENERATED = "prediction_generated"
    DIRECTION_OVERRIDDEN = "direction_overridden"
    OUTCOME_RECORDED = "outcome_recorded"

    # Learning Events
    ENGINE_CALIBRATED = "engine_calibrated"

    # Failure Events
    ADAPTER_FAILED = "adapter_failed"
    MODIFIER_FAILED = "modifier_failed"

@dataclass
class Event:
    """Event data structure"""
    event_type: EventType
    timestamp: float
    source: str
    data: Dict[str, Any] = field(default_factory=dict)
    priority: int = 0  # Higher values = higher priority
    correlation_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)

@dataclass
class EventHandler:
    """Event handler registration"""
    handler_id: str
    handler_func: Callable[[Event], Any]
    event_types: List[EventType]
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None

class EventBus:
    """
    Synchronous typed event bus for the fusion engine.

    The engine mutates state on a single logical owner, so handlers run inline
    during publish. A failing handler is logged and counted; it never reaches
    the publisher.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}

        self.handlers: Dict[EventType, List[EventHandler]] = defaultdict(list)
        self.global_handlers: List[EventHandler] = []

        # Event statistics
        self.event_stats = {
            'total_events': 0,
            'events_by_type': defaultdict(int),
            'events_by_source': defaultdict(int),
            'processing_times': deque(maxlen=1000),
            'handler_errors': 0
        }

        # Event history for debugging
        self.event_history = deque(maxlen=config.get('event_history_size', 1000))

    def subscribe(self, handler_id: str, handler_func: Callable[[Event], Any],
                  event_types: Union[EventType, List[EventType], None] = None,
                  priority: int = 0,
                  filter_func: Optional[Callable[[Event], bool]] = None) -> str:
        """
        Register an event handler

        Args:
            handler_id: Unique identifier for the handler
            handler_func: Function to handle events
            event_types: Event type(s) to handle, None for every event
            priority: Handler priority (higher = earlier execution)
            filter_func: Optional filter function
        """
        if isinstance(event_types, EventType):
            event_types = [event_types]

        handler = EventHandler(
            handler_id=handler_id,
            handler_func=handler_func,
            event_types=list(event_types or []),
            priority=priority,
            filter_func=filter_func
        )

        if not handler.event_types:
            self.global_handlers.append(handler)
            self.global_handlers.sort(key=lambda h: h.priority, reverse=True)
        else:
            for event_type in handler.event_types:
                self.handlers[event_type].append(handler)
                self.handlers[event_type].sort(key=lambda h: h.priority, reverse=True)

        logger.debug(f"Registered handler '{handler_id}' for events: "
                     f"{[et.value for et in handler.event_types] or 'all'}")
        return handler_id

    def unsubscribe(self, handler_id: str):
        """Unregister a handler by ID"""
        for event_type, handlers in self.handlers.items():
            self.handlers[event_type] = [h for h in handlers if h.handler_id != handler_id]
        self.global_handlers = [h for h in self.global_handlers if h.handler_id != handler_id]
        logger.debug(f"Unregistered handler '{handler_id}'")

    def publish(self, event: Event):
        """Publish an event and dispatch it to matching handlers"""
        start_time = time.time()
        if event.timestamp == 0:
            event.timestamp = start_time

        self.event_stats['total_events'] += 1
        self.event_stats['events_by_type'][event.event_type] += 1
        self.event_stats['events_by_source'][event.source] += 1
        self.event_history.append(event)

        handlers = list(self.handlers.get(event.event_type, [])) + list(self.global_handlers)
        handlers.sort(key=lambda h: h.priority, reverse=True)

        for handler in handlers:
            try:
                if handler.filter_func and not handler.filter_func(event):
                    continue
                handler.handler_func(event)
            except Exception as e:
                logger.error(f"Error in handler '{handler.handler_id}': {e}")
                self.event_stats['handler_errors'] += 1

        self.event_stats['processing_times'].append(time.time() - start_time)

    def emit(self, event_type: EventType, source: str, data: Dict[str, Any] = None,
             priority: int = 0, correlation_id: Optional[str] = None,
             timestamp: Optional[float] = None, tags: List[str] = None) -> Event:
        """Create and publish an event in one step"""
        event = Event(
            event_type=event_type,
            timestamp=timestamp if timestamp is not None else time.time(),
            source=source,
            data=data or {},
            priority=priority,
            correlation_id=correlation_id,
            tags=tags or []
        )
        self.publish(event)
        return event

    def get_event_statistics(self) -> Dict[str, Any]:
        """Get event processing statistics"""
        processing_times = list(self.event_stats['processing_times'])
        stats = {
            'total_events': self.event_stats['total_events'],
            'handler_errors': self.event_stats['handler_errors'],
            'events_by_type': {k.value: v for k, v in self.event_stats['events_by_type'].items()},
            'events_by_source': dict(self.event_stats['events_by_source']),
            'registered_handlers': sum(len(handlers) for handlers in self.handlers.values()),
            'global_handlers': len(self.global_handlers)
        }
        if processing_times:
            stats['avg_processing_time'] = sum(processing_times) / len(processing_times)
            stats['max_processing_time'] = max(processing_times)
        return stats

    def get_recent_events(self, limit: int = 100,
                          event_type: Optional[EventType] = None) -> List[Event]:
        """Get recent events"""
        events = list(self.event_history)
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        return events[-limit:]


class LoggingEventSink:
    """Renders typed engine events through the standard logger"""

    LEVELS = {
        EventType.ADAPTER_FAILED: logging.WARNING,
        EventType.MODIFIER_FAILED: logging.WARNING,
        EventType.CONVERGENCE_DETECTED: logging.INFO,
        EventType.PHASE_LOCK_DETECTED: logging.INFO,
        EventType.ENGINE_CALIBRATED: logging.INFO,
    }

    def __init__(self, bus: EventBus, sink_logger: Optional[logging.Logger] = None):
        self.logger = sink_logger or logging.getLogger("confluence.events")
        self.handler_id = bus.subscribe("logging_sink", self.handle, priority=-100)

    def handle(self, event: Event):
        level = self.LEVELS.get(event.event_type, logging.DEBUG)
        if self.logger.isEnabledFor(level):
            details = ", ".join(f"{k}={v}" for k, v in event.data.items())
            self.logger.log(level, f"{event.event_type.value} from {event.source}: {details}")

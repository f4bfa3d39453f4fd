"""
Event System Module

Publish/subscribe dispatcher for workflow lifecycle events. It is also the
error-reporting channel for side effects: a failing action never changes the
return value of a transition, it shows up here as ``action.failed``.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock
import uuid
import logging

from .models import utc_now


class WorkflowEvent(Enum):
    """Events emitted by the workflow engine"""

    # Definition events
    WORKFLOW_REGISTERED = "workflow.registered"
    WORKFLOW_UNREGISTERED = "workflow.unregistered"

    # Instance events
    INSTANCE_CREATED = "instance.created"
    INSTANCE_TRANSITIONED = "instance.transitioned"
    INSTANCE_COMPLETED = "instance.completed"

    # Action events
    ACTION_EXECUTED = "action.executed"
    ACTION_FAILED = "action.failed"
    ACTION_SKIPPED = "action.skipped"

    # Audit events
    AUDIT_FAILED = "audit.failed"


@dataclass
class EventPayload:
    """Payload for workflow events"""
    event_type: WorkflowEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=utc_now)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


Handler = Callable[[EventPayload], None]


class EventDispatcher:
    """Central event dispatcher - publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[WorkflowEvent, List[Handler]] = {}
        self._global_handlers: List[Handler] = []
        self._lock = RLock()
        self.logger = logging.getLogger("talent_workflows.events")

    def subscribe(self, event_type: WorkflowEvent, handler: Handler) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
        self.logger.debug(f"Subscribed {_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Handler) -> None:
        """Subscribe to every event"""
        with self._lock:
            self._global_handlers.append(handler)
        self.logger.debug(f"Subscribed global handler {_name(handler)}")

    def unsubscribe(self, event_type: WorkflowEvent, handler: Handler) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_name(handler)} was not subscribed to {event_type.value}")

    def unsubscribe_all(self, handler: Handler) -> None:
        """Remove a global handler"""
        with self._lock:
            try:
                self._global_handlers.remove(handler)
            except ValueError:
                self.logger.warning(f"Global handler {_name(handler)} was not subscribed")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers; subscriber errors are logged and isolated"""
        # Copy under the lock, call outside it so handlers may publish in turn
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(f"Error in event handler {_name(handler)} for {event.event_type.value}: {e}")

    def emit(self, event_type: WorkflowEvent, entity_type: str, entity_id: str,
             data: Optional[Dict[str, Any]] = None) -> EventPayload:
        """Build and publish an event in one call"""
        event = EventPayload(event_type=event_type, entity_type=entity_type,
                             entity_id=entity_id, data=data or {})
        self.publish(event)
        return event

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, event_type: Optional[WorkflowEvent] = None) -> int:
        """Count handlers for one event type, or all handlers"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


def _name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))

# blueprint_flow/event_bus.py

"""
Synchronous publish/subscribe channel of one orchestrator.

Handlers run on the caller's thread before ``emit`` returns, in
subscription order: typed handlers first, then catch-all handlers.
A handler that raises is logged and skipped; it never undoes the
mutation that produced the event.
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional
import logging
import time

from blueprint_flow.errors import SubscriberLimitError

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Events emitted by a flow orchestrator."""
    STATE_CHANGED = "state_changed"
    INPUT_CAPTURED = "input_captured"
    INPUT_REJECTED = "input_rejected"
    TRANSITION_APPLIED = "transition_applied"
    TRANSITION_REJECTED = "transition_rejected"
    SAVE_FAILED = "save_failed"
    SESSION_LOADED = "session_loaded"


@dataclass
class FlowEvent:
    """
    Event published by the orchestrator.

    Attributes:
        event_type: What happened
        session_id: Session that produced the event
        timestamp: Epoch seconds from the orchestrator's clock
        data: Event-specific payload; ``STATE_CHANGED`` carries the ``FlowView``
    """
    event_type: EventType
    session_id: str = ""
    timestamp: float = field(default_factory=time.time)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.data)
        view = data.get("view")
        if hasattr(view, "to_dict"):
            data["view"] = view.to_dict()
        return {
            "event_type": self.event_type.value,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "data": data,
        }


EventHandler = Callable[[FlowEvent], None]


class FlowEventBus:
    """Event channel with bounded history and a per-type handler cap."""

    MAX_HANDLERS_PER_TYPE = 100

    def __init__(self, history_size: int = 100):
        # None is the catch-all channel
        self._subscriptions: Dict[Optional[EventType], List[EventHandler]] = {None: []}
        self._subscriptions.update({event_type: [] for event_type in EventType})
        self._history: Deque[FlowEvent] = deque(maxlen=history_size)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> Callable[[], None]:
        """
        Deliver events of ``event_type`` to ``handler``.

        Existing subscribers are never evicted: once the cap is reached
        the new subscription is refused.

        Returns:
            Unsubscribe callable; calling it again does nothing

        Raises:
            SubscriberLimitError: ``event_type`` already has MAX_HANDLERS_PER_TYPE handlers
        """
        handlers = self._subscriptions[event_type]
        if len(handlers) >= self.MAX_HANDLERS_PER_TYPE:
            logger.warning(
                "Handler cap of %d reached for %s, subscription refused",
                self.MAX_HANDLERS_PER_TYPE, event_type.value,
            )
            raise SubscriberLimitError(event_type.value, self.MAX_HANDLERS_PER_TYPE)
        handlers.append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def subscribe_all(self, handler: EventHandler) -> Callable[[], None]:
        """Deliver every event to ``handler``."""
        self._subscriptions[None].append(handler)
        return lambda: self._discard(None, handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._discard(event_type, handler)

    def _discard(self, channel: Optional[EventType], handler: EventHandler) -> None:
        handlers = self._subscriptions[channel]
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event_type: Optional[EventType] = None) -> int:
        """Handlers of one type, or all handlers including catch-all ones."""
        if event_type is None:
            return sum(len(handlers) for handlers in self._subscriptions.values())
        return len(self._subscriptions[event_type])

    def emit(self, event: FlowEvent) -> None:
        self._history.append(event)
        # Snapshot the lists: a handler may unsubscribe while being called
        recipients = list(self._subscriptions[event.event_type]) + list(self._subscriptions[None])
        for handler in recipients:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler %r failed on %s (session %s)",
                    handler, event.event_type.value, event.session_id,
                )

    def get_history(
        self,
        event_type: Optional[EventType] = None,
        limit: int = 10
    ) -> List[FlowEvent]:
        """Recent events, oldest first, optionally of one type."""
        events = [e for e in self._history if event_type is None or e.event_type == event_type]
        return events[-limit:] if limit > 0 else []

    def clear_history(self) -> None:
        self._history.clear()


class MetricsCollector:
    """
    Per-session counters built from orchestrator events.

    Usage:
        collector = MetricsCollector()
        bus.subscribe_all(collector.handle_event)
        collector.get_summary()
    """

    def __init__(self):
        self.event_counts: Counter = Counter()
        self.actions: Counter = Counter()
        self.rejections: Counter = Counter()
        self.stages_completed: List[str] = []

    def handle_event(self, event: FlowEvent) -> None:
        self.event_counts[event.event_type.value] += 1

        if event.event_type == EventType.TRANSITION_APPLIED:
            self.actions[event.data.get("action")] += 1
            if event.data.get("stage_completed"):
                self.stages_completed.append(event.data["stage_completed"])
        elif event.event_type in (EventType.TRANSITION_REJECTED, EventType.INPUT_REJECTED):
            self.rejections[event.data.get("reason")] += 1

    def get_summary(self) -> Dict[str, Any]:
        return {
            "events": dict(self.event_counts),
            "actions": dict(self.actions),
            "rejections": dict(self.rejections),
            "stages_completed": list(self.stages_completed),
        }

    def reset(self) -> None:
        self.event_counts.clear()
        self.actions.clear()
        self.rejections.clear()
        self.stages_completed.clear()

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from guestverify.observability.logging import log


class DomainEvent(str, Enum):
    STEP_CHANGED = "step-changed"
    CHANNEL_RESULT_CHANGED = "channel-result-changed"
    SCORE_UPDATED = "score-updated"
    CHALLENGE_EXPIRED = "challenge-expired"


@dataclass(frozen=True)
class Event:
    type: DomainEvent
    payload: Dict[str, Any] = field(default_factory=dict)


Handler = Callable[[Event], Any]


class EventBus:
    """Typed observer for discrete domain events. Handlers run in subscription order."""

    def __init__(self):
        self._handlers: Dict[Optional[DomainEvent], List[Handler]] = {}

    def subscribe(self, event_type: Optional[DomainEvent], handler: Handler) -> Callable[[], None]:
        """Pass None as event_type to observe every event."""
        bucket = self._handlers.setdefault(event_type, [])
        bucket.append(handler)

        def unsubscribe() -> None:
            if handler in bucket:
                bucket.remove(handler)

        return unsubscribe

    def emit(self, event_type: DomainEvent, **payload) -> Event:
        event = Event(type=event_type, payload=payload)
        for handler in list(self._handlers.get(event_type, [])) + list(self._handlers.get(None, [])):
            try:
                handler(event)
            except Exception as e:
                log(event="domain_event_handler_error", eventType=event_type.value,
                    errorType=type(e).__name__, error=str(e)[:300])
        return event

from unittest.mock import patch

from guestverify.core.events import DomainEvent, EventBus


def test_handlers_receive_typed_events():
    bus = EventBus()
    seen = []
    bus.subscribe(DomainEvent.STEP_CHANGED, seen.append)

    bus.emit(DomainEvent.STEP_CHANGED, step="booking_info", index=1)
    bus.emit(DomainEvent.SCORE_UPDATED, score=90)

    assert len(seen) == 1
    assert seen[0].type is DomainEvent.STEP_CHANGED
    assert seen[0].payload == {"step": "booking_info", "index": 1}


def test_wildcard_subscriber_sees_everything():
    bus = EventBus()
    seen = []
    bus.subscribe(None, lambda e: seen.append(e.type))
    bus.emit(DomainEvent.CHALLENGE_EXPIRED, channel="PhoneOTP")
    bus.emit(DomainEvent.SCORE_UPDATED, score=80)
    assert seen == [DomainEvent.CHALLENGE_EXPIRED, DomainEvent.SCORE_UPDATED]


@patch("guestverify.core.events.log")
def test_failing_handler_is_isolated(mock_log):
    bus = EventBus()
    seen = []

    def bad(event):
        raise ValueError("nope")

    bus.subscribe(DomainEvent.SCORE_UPDATED, bad)
    bus.subscribe(DomainEvent.SCORE_UPDATED, seen.append)
    bus.emit(DomainEvent.SCORE_UPDATED, score=1)

    assert len(seen) == 1
    assert mock_log.call_args.kwargs["event"] == "domain_event_handler_error"


def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsub = bus.subscribe(DomainEvent.STEP_CHANGED, seen.append)
    unsub()
    bus.emit(DomainEvent.STEP_CHANGED)
    assert seen == []

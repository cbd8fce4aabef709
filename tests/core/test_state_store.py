import pytest
from unittest.mock import patch

from guestverify.core.errors import StateError
from guestverify.core.state_store import ALL, Section, StateStore


def test_get_returns_independent_copy():
    store = StateStore()
    form = store.get(Section.FORM)
    form["data"]["user_identification"]["name"] = "Mallory"
    form["errors"] = None

    again = store.get(Section.FORM)
    assert again["data"]["user_identification"] == {}
    assert isinstance(again["errors"], dict)


def test_update_merges_partial_and_notifies():
    store = StateStore()
    seen = []
    store.subscribe(Section.SESSION, seen.append)

    changed = store.update(Section.SESSION, {"currentStepIndex": 2})

    assert changed is True
    assert store.get(Section.SESSION)["currentStepIndex"] == 2
    assert store.get(Section.SESSION)["dirty"] is False
    # one call on subscribe, one for the change
    assert len(seen) == 2
    assert seen[-1]["currentStepIndex"] == 2


def test_update_with_equal_value_is_noop():
    store = StateStore()
    seen = []
    store.subscribe(Section.SESSION, seen.append)

    assert store.update(Section.SESSION, {"currentStepIndex": 0}) is False
    assert store.update(Section.SESSION, lambda s: s) is False
    assert len(seen) == 1


def test_update_with_transform_function():
    store = StateStore()
    store.update(Section.NOTIFICATIONS, lambda s: {**s, "items": s["items"] + [{"id": "n1"}]})
    assert store.get(Section.NOTIFICATIONS)["items"] == [{"id": "n1"}]


def test_transform_must_return_dict():
    store = StateStore()
    with pytest.raises(StateError):
        store.update(Section.FORM, lambda s: None)
    with pytest.raises(StateError):
        store.update(Section.FORM, 42)


@patch("guestverify.core.state_store.log")
def test_unknown_section_raises_state_error(mock_log):
    store = StateStore()
    with pytest.raises(StateError):
        store.get("payments")
    with pytest.raises(StateError):
        store.update("ui", {"loading": True})
    with pytest.raises(StateError):
        store.subscribe("nope", lambda v: None)
    assert mock_log.call_args.kwargs["event"] == "state_unknown_section"


def test_section_accepts_string_names():
    store = StateStore()
    assert store.get("ui-notifications") == {"items": []}
    assert store.get("auth")["isAuthenticated"] is False


def test_subscribers_fire_in_subscription_order():
    store = StateStore()
    order = []
    store.subscribe(Section.AUTH, lambda v: order.append("a"))
    store.subscribe(Section.AUTH, lambda v: order.append("b"))
    order.clear()

    store.update(Section.AUTH, {"userId": "u1"})
    assert order == ["a", "b"]


@patch("guestverify.core.state_store.log")
def test_throwing_subscriber_does_not_block_others(mock_log):
    store = StateStore()
    received = []

    def boom(value):
        raise RuntimeError("subscriber bug")

    store.subscribe(Section.AUTH, boom)
    store.subscribe(Section.AUTH, received.append)
    store.update(Section.AUTH, {"userId": "u1"})

    assert received[-1]["userId"] == "u1"
    events = [c.kwargs["event"] for c in mock_log.call_args_list]
    assert "state_subscriber_error" in events


def test_subscriber_sees_complete_new_value():
    store = StateStore()
    snapshots = []
    store.subscribe(Section.SESSION, snapshots.append)

    store.update(Section.SESSION, {"currentStepIndex": 3, "dirty": True, "id": "s1"})
    last = snapshots[-1]
    assert (last["currentStepIndex"], last["dirty"], last["id"]) == (3, True, "s1")


def test_unsubscribe_stops_notifications():
    store = StateStore()
    seen = []
    unsub = store.subscribe(Section.AUTH, seen.append)
    unsub()
    store.update(Section.AUTH, {"userId": "u2"})
    assert len(seen) == 1
    assert store.subscriber_count(Section.AUTH) == 0


def test_subscribe_all_receives_every_section():
    store = StateStore()
    seen = []
    store.subscribe(ALL, seen.append)
    assert set(seen[0].keys()) == {s.value for s in Section}

    store.update(Section.FORM, lambda s: {**s, "data": {**s["data"], "agreement": {"agreeToRules": True}}})
    store.update(Section.AUTH, {"userId": "u3"})
    assert len(seen) == 3
    assert seen[-1]["auth"]["userId"] == "u3"
    assert seen[-1]["form"]["data"]["agreement"] == {"agreeToRules": True}


def test_reset_restores_initial_section():
    store = StateStore()
    store.update(Section.SESSION, {"currentStepIndex": 2})
    store.update(Section.AUTH, {"userId": "u1"})

    store.reset(Section.SESSION)
    assert store.get(Section.SESSION)["currentStepIndex"] == 0
    assert store.get(Section.AUTH)["userId"] == "u1"

    store.reset()
    assert store.get(Section.AUTH)["userId"] is None


def test_initial_channels_section_is_not_started():
    store = StateStore()
    channels = store.get(Section.CHANNELS)
    assert {r["status"] for r in channels["results"].values()} == {"NotStarted"}
    assert channels["phases"]["PhoneOTP"] == "Idle"
    assert channels["otpChallenge"] is None


def test_initial_values_can_be_injected():
    store = StateStore(initial={"auth": {"userId": "guest-9", "isAuthenticated": True}})
    assert store.get(Section.AUTH) == {"userId": "guest-9", "isAuthenticated": True}

import pytest

from guestverify.channels.platform import PlatformProfileManager
from guestverify.core.events import DomainEvent, EventBus
from guestverify.core.state_store import StateStore
from guestverify.store.models import ChannelStatus
from guestverify.utils.time import ManualScheduler


def _manager():
    events = EventBus()
    return PlatformProfileManager(StateStore(), events, ManualScheduler()), events


@pytest.mark.asyncio
async def test_links_are_recorded_as_verified():
    mgr, events = _manager()
    seen = []
    events.subscribe(DomainEvent.CHANNEL_RESULT_CHANGED, lambda e: seen.append(e.payload["status"]))

    result = await mgr.start({
        "airbnbProfile": "https://www.airbnb.com/users/show/1",
        "vrboProfile": "http://vrbo.com/traveler/2",
        "reviewCount": "7",
    })

    assert result.status is ChannelStatus.VERIFIED
    assert result.payload == {"platforms": ["airbnb", "vrbo"], "reviewCount": 7}
    assert seen == ["Pending", "Verified"]
    assert mgr.phase() == "Recorded"


@pytest.mark.asyncio
async def test_missing_links_leave_channel_untouched():
    mgr, _ = _manager()
    result = await mgr.start({})
    assert result.status is ChannelStatus.NOT_STARTED
    assert mgr.error == "Please provide at least one platform profile link"


@pytest.mark.asyncio
async def test_malformed_link_rejected():
    mgr, _ = _manager()
    result = await mgr.start({"otherPlatformProfile": "my profile"})
    assert result.status is ChannelStatus.NOT_STARTED
    assert "valid profile URL" in mgr.error


@pytest.mark.asyncio
async def test_updating_links_replaces_previous_result():
    mgr, _ = _manager()
    await mgr.start({"airbnbProfile": "https://airbnb.com/users/1", "reviewCount": 1})
    result = await mgr.start({"otherPlatformProfile": "https://booking.com/u/9", "reviewCount": 0})
    assert result.status is ChannelStatus.VERIFIED
    assert result.payload == {"platforms": ["other"], "reviewCount": 0}
    assert mgr.error is None

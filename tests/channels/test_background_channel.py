from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from guestverify.channels.background import BackgroundCheckManager, should_prompt_background_check
from guestverify.core.errors import ChannelError
from guestverify.core.events import EventBus
from guestverify.core.scoring import ScoringConfig
from guestverify.core.state_store import StateStore
from guestverify.providers.schemas import BackgroundCheckResponse, BackgroundStatusResponse
from guestverify.store.models import ChannelStatus
from guestverify.utils.time import ManualScheduler


class InstantSleepScheduler(ManualScheduler):
    """Polling sleeps return immediately; the requested delays are recorded."""

    def __init__(self):
        super().__init__()
        self.sleeps = []

    async def sleep(self, delay):
        self.sleeps.append(delay)


def _manager(provider, **kw):
    scheduler = InstantSleepScheduler()
    store = StateStore()
    mgr = BackgroundCheckManager(store, EventBus(), scheduler, provider, poll_interval_sec=3.0, **kw)
    return mgr, store, scheduler


USER = {"name": "Jordan Lee", "email": "jordan@example.com", "dateOfBirth": "1990-01-01"}


@pytest.mark.asyncio
async def test_immediate_pass_keeps_only_pass_and_check_id():
    provider = MagicMock()
    provider.initiate_background_check = AsyncMock(
        return_value=BackgroundCheckResponse(checkId="bg-1", status="complete", passed=True)
    )
    mgr, store, scheduler = _manager(provider)

    result = await mgr.start(USER)

    assert result.status is ChannelStatus.VERIFIED
    assert result.payload == {"passed": True, "checkId": "bg-1"}
    assert scheduler.sleeps == []
    assert "Jordan" not in repr(store.snapshot())
    assert mgr.phase() == "Done"


@pytest.mark.asyncio
async def test_polls_until_final_status():
    provider = MagicMock()
    provider.initiate_background_check = AsyncMock(return_value=BackgroundCheckResponse(checkId="bg-2", status="pending"))
    provider.check_background_status = AsyncMock(side_effect=[
        BackgroundStatusResponse(status="processing"),
        BackgroundStatusResponse(status="completed", passed=False),
    ])
    mgr, _, scheduler = _manager(provider, max_polls=5)

    result = await mgr.start(USER)

    assert result.status is ChannelStatus.FAILED
    assert result.payload == {"passed": False, "checkId": "bg-2"}
    assert result.reason == "Background check not passed"
    assert scheduler.sleeps == [3.0, 3.0]
    provider.check_background_status.assert_awaited_with("bg-2")


@pytest.mark.asyncio
@patch("guestverify.channels.background.log")
async def test_poll_budget_exhausted_fails(mock_log):
    provider = MagicMock()
    provider.initiate_background_check = AsyncMock(return_value=BackgroundCheckResponse(checkId="bg-3"))
    provider.check_background_status = AsyncMock(return_value=BackgroundStatusResponse(status="processing"))
    mgr, _, _ = _manager(provider, max_polls=2)

    result = await mgr.start(USER)

    assert result.status is ChannelStatus.FAILED
    assert provider.check_background_status.await_count == 2
    assert mock_log.call_args.kwargs["event"] == "background_check_poll_exhausted"


@pytest.mark.asyncio
async def test_provider_error_is_converted():
    provider = MagicMock()
    provider.initiate_background_check = AsyncMock(side_effect=ChannelError("provider returned 502", status_code=502))
    mgr, _, _ = _manager(provider)

    result = await mgr.start(USER)
    assert result.status is ChannelStatus.FAILED
    assert result.reason == "provider returned 502"
    assert mgr.phase() == "Idle"


@pytest.mark.asyncio
async def test_verified_check_is_not_rerun():
    provider = MagicMock()
    provider.initiate_background_check = AsyncMock(
        return_value=BackgroundCheckResponse(checkId="bg-4", status="complete", passed=True)
    )
    mgr, _, _ = _manager(provider)
    await mgr.start(USER)
    await mgr.start(USER)
    assert provider.initiate_background_check.await_count == 1


WITH_LINK = {"airbnbProfile": "https://airbnb.com/users/1", "totalGuests": 2}


def test_low_score_prompts_even_with_profile_link():
    assert should_prompt_background_check(WITH_LINK, 65) is True


def test_no_signal_means_no_prompt():
    assert should_prompt_background_check(WITH_LINK, 90) is False
    assert should_prompt_background_check(WITH_LINK, 70) is False


def test_each_signal_triggers_prompt():
    assert should_prompt_background_check({"totalGuests": 2}, 95) is True
    assert should_prompt_background_check({**WITH_LINK, "totalGuests": 6}, 95) is True
    assert should_prompt_background_check({**WITH_LINK, "travelingNearHome": True}, 95) is True


def test_prompt_accepts_per_step_form_and_custom_threshold():
    form = {"user_identification": {"vrboProfile": "https://vrbo.com/u/2"}, "stay_intent": {"totalGuests": 3}}
    assert should_prompt_background_check(form, 75) is False
    assert should_prompt_background_check(form, 75, ScoringConfig(bg_check_score_threshold=80)) is True

from typing import Any, Mapping, Optional

from guestverify.channels.base import ChannelManager
from guestverify.core import state_machine as sm
from guestverify.core.errors import ChannelError
from guestverify.core.scoring import ScoringConfig, normalize_form
from guestverify.core.validation import has_profile_link
from guestverify.observability.logging import log
from guestverify.providers.contracts import BackgroundCheckProvider
from guestverify.providers.schemas import FINAL_CHECK_STATUSES
from guestverify.settings import settings
from guestverify.store.models import Channel, ChannelResult, ChannelStatus


def should_prompt_background_check(
    form_data: Optional[Mapping[str, Any]],
    score: Optional[int],
    config: Optional[ScoringConfig] = None,
) -> bool:
    """Offer the check when any single risk signal is present."""
    config = config or ScoringConfig()
    form = normalize_form(form_data)

    if score is not None and score < config.bg_check_score_threshold:
        return True
    if not has_profile_link(form):
        return True
    try:
        guests = int(form.get("totalGuests") or 0)
    except (TypeError, ValueError):
        guests = 0
    if guests > config.bg_check_guest_threshold:
        return True
    return bool(form.get("travelingNearHome"))


class BackgroundCheckManager(ChannelManager):
    """
    Third-party screening. Only pass/fail and the vendor's check id are ever
    recorded; the user data sent to the vendor is not kept.
    """

    channel = Channel.BACKGROUND_CHECK

    def __init__(self, store, events, scheduler, provider: BackgroundCheckProvider, *,
                 poll_interval_sec: Optional[float] = None, max_polls: Optional[int] = None):
        super().__init__(store, events, scheduler)
        self.provider = provider
        self.poll_interval_sec = float(poll_interval_sec if poll_interval_sec is not None else settings.BG_CHECK_POLL_INTERVAL_SEC)
        self.max_polls = int(max_polls if max_polls is not None else settings.BG_CHECK_MAX_POLLS)

    async def start(self, input: Optional[Mapping[str, Any]] = None) -> ChannelResult:
        if self.status() == ChannelStatus.VERIFIED:
            return self.result()

        gen = self._begin_attempt()
        self._set_error(None)
        self._set_phase(sm.BG_RUNNING)
        self._write_result(ChannelStatus.PENDING, payload={}, new_attempt=True)

        resp = await self._invoke(gen, "initiate_background_check",
                                  self.provider.initiate_background_check, dict(input or {}))
        if resp is None:
            return self.result()

        check_id, status, passed = resp.checkId, resp.status, resp.passed
        polls = 0
        while status not in FINAL_CHECK_STATUSES:
            if polls >= self.max_polls:
                log(event="background_check_poll_exhausted", channel=self.channel.value, polls=polls)
                self._fail(ChannelError("Background check is taking longer than expected. Please try again later."),
                           "check_background_status")
                return self.result()
            await self.scheduler.sleep(self.poll_interval_sec)
            if not self._is_current(gen, "background_poll"):
                return self.result()
            polls += 1
            st = await self._invoke(gen, "check_background_status", self.provider.check_background_status, check_id)
            if st is None:
                return self.result()
            status, passed = st.status, st.passed

        ok = bool(passed) and status != "failed"
        self._set_phase(sm.BG_DONE)
        return self._write_result(
            ChannelStatus.VERIFIED if ok else ChannelStatus.FAILED,
            payload={"passed": ok, "checkId": check_id},
            reason=None if ok else "Background check not passed",
        )

from typing import Any, Mapping, Optional

from guestverify.channels.base import ChannelManager
from guestverify.core import state_machine as sm
from guestverify.core.validation import PROFILE_FIELDS, is_valid_url
from guestverify.observability.logging import log
from guestverify.store.models import Channel, ChannelResult, ChannelStatus

PLATFORM_NAMES = {
    "airbnbProfile": "airbnb",
    "vrboProfile": "vrbo",
    "otherPlatformProfile": "other",
}


class PlatformProfileManager(ChannelManager):
    """Self-reported platform links. Recorded as Verified once well-formed; no vendor call."""

    channel = Channel.PLATFORM_PROFILE

    async def start(self, input: Optional[Mapping[str, Any]] = None) -> ChannelResult:
        input = input or {}
        links = {f: str(input.get(f) or "").strip() for f in PROFILE_FIELDS}
        links = {f: v for f, v in links.items() if v}

        if not links:
            return self._reject("Please provide at least one platform profile link", {f: "required" for f in PROFILE_FIELDS})
        bad = {f: "format" for f, v in links.items() if not is_valid_url(v)}
        if bad:
            return self._reject("Please enter a valid profile URL (https://...)", bad)

        try:
            reviews = max(0, int(input.get("reviewCount") or 0))
        except (TypeError, ValueError):
            reviews = 0

        self._begin_attempt()
        self._set_error(None)
        self._write_result(ChannelStatus.PENDING, payload={}, new_attempt=True)
        self._set_phase(sm.PROFILE_RECORDED)
        return self._write_result(ChannelStatus.VERIFIED, payload={
            "platforms": sorted(PLATFORM_NAMES[f] for f in links),
            "reviewCount": reviews,
        })

    def _reject(self, message: str, fields) -> ChannelResult:
        log(event="channel_input_rejected", channel=self.channel.value, fields=fields)
        self._set_error(message)
        return self.result()

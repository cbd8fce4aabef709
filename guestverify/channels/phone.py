import re
from typing import Any, Optional

from guestverify.channels.base import ChannelManager
from guestverify.core import state_machine as sm
from guestverify.core.errors import ExpiryError, StateError
from guestverify.core.events import DomainEvent
from guestverify.core.state_store import Section
from guestverify.core.validation import is_valid_phone
from guestverify.observability.logging import log
from guestverify.providers.contracts import PhoneProvider
from guestverify.settings import settings
from guestverify.store.models import Channel, ChannelResult, ChannelStatus, OTPChallenge

CODE_RE = re.compile(r"^\d{4,8}$")
_STRIP_RE = re.compile(r"[\s\-().]")

TICK_SEC = 1.0


class PhoneOTPManager(ChannelManager):
    """
    Phone possession check.

    Idle -> Requesting -> AwaitingCode -> Verifying -> Verified
                              ^               |
                              +--- wrong -----+
    Any point while AwaitingCode/Verifying: countdown reaches 0 -> Expired.

    Exactly one countdown handle is live; a new request cancels the old one
    before scheduling the next tick.
    """

    channel = Channel.PHONE_OTP

    def __init__(self, store, events, scheduler, provider: PhoneProvider, *,
                 default_ttl_sec: Optional[int] = None, max_attempts: Optional[int] = None):
        super().__init__(store, events, scheduler)
        self.provider = provider
        self.default_ttl_sec = int(default_ttl_sec or settings.OTP_DEFAULT_TTL_SEC)
        self.max_attempts = int(max_attempts or settings.OTP_MAX_ATTEMPTS)
        self._timer = None
        self._phone: Optional[str] = None
        self._wrong_codes = 0

    # ------------------------------------------------------------- challenge
    def challenge(self) -> Optional[OTPChallenge]:
        raw = self._section().get("otpChallenge")
        return OTPChallenge(**raw) if raw else None

    def _set_challenge(self, challenge: Optional[OTPChallenge]) -> None:
        value = challenge.to_dict() if challenge else None
        self.store.update(Section.CHANNELS, {"otpChallenge": value})

    def _void_challenge(self) -> None:
        ch = self.challenge()
        if ch:
            ch.remainingSeconds = 0
            ch.resendAllowed = True
            self._set_challenge(ch)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_tick(self, gen: int) -> None:
        self._cancel_timer()
        self._timer = self.scheduler.call_later(TICK_SEC, self._tick, gen)

    def _tick(self, gen: int) -> None:
        self._timer = None
        if gen != self._generation:
            return
        ch = self.challenge()
        if ch is None:
            return
        ch.remainingSeconds = max(0, ch.remainingSeconds - 1)
        if ch.remainingSeconds > 0:
            self._set_challenge(ch)
            self._schedule_tick(gen)
            return
        self.expire()

    # -------------------------------------------------------------- actions
    async def start(self, input: Any = None) -> ChannelResult:
        phone = input.get("phoneNumber") if isinstance(input, dict) else input
        phone = _STRIP_RE.sub("", str(phone or ""))
        if not is_valid_phone(phone):
            log(event="channel_input_rejected", channel=self.channel.value, fields={"phoneNumber": "format"})
            self._set_error("Please enter a valid phone number")
            return self.result()

        self._cancel_timer()
        gen = self._begin_attempt()
        self._phone = phone
        self._wrong_codes = 0
        self._set_error(None)
        self._set_challenge(None)
        self._set_phase(sm.OTP_REQUESTING)
        self._write_result(ChannelStatus.PENDING, payload={}, new_attempt=True)

        resp = await self._invoke(gen, "request_phone_challenge", self.provider.request_phone_challenge,
                                  phone, self._user_id())
        if resp is None:
            return self.result()

        ttl = int(resp.expiresInSeconds or self.default_ttl_sec)
        self._set_challenge(OTPChallenge(
            phoneNumber=phone,
            challengeId=resp.challengeId,
            issuedAt=self.scheduler.now_ms(),
            ttlSeconds=ttl,
            remainingSeconds=ttl,
            resendAllowed=False,
        ))
        self._set_phase(sm.OTP_AWAITING_CODE)
        self._schedule_tick(gen)
        log(event="otp_challenge_issued", channel=self.channel.value, ttlSeconds=ttl)
        return self.result()

    async def submit_code(self, code: str) -> ChannelResult:
        status = self.status()
        if status == ChannelStatus.EXPIRED:
            raise ExpiryError("Your verification code has expired. Please request a new code.")
        if status != ChannelStatus.PENDING or self.phase() != sm.OTP_AWAITING_CODE:
            raise StateError(f"no code is awaited on {self.channel.value} (status={status.value}, phase={self.phase()})")

        code = str(code or "").strip()
        if not CODE_RE.match(code):
            self._set_error("Please enter the numeric code we sent you")
            return self.result()

        ch = self.challenge()
        gen = self._generation
        self._set_error(None)
        self._set_phase(sm.OTP_VERIFYING)

        resp = await self._invoke(gen, "verify_phone_code", self.provider.verify_phone_code,
                                  code, ch.challengeId, self._user_id())
        if resp is None:
            return self.result()

        if resp.verified:
            self._cancel_timer()
            self._set_challenge(None)
            self._set_phase(sm.OTP_VERIFIED)
            return self._write_result(ChannelStatus.VERIFIED, payload={"verified": True})

        self._wrong_codes += 1
        if self._wrong_codes >= self.max_attempts:
            log(event="otp_attempts_exhausted", channel=self.channel.value, attempts=self._wrong_codes)
            result = self._write_result(ChannelStatus.FAILED, reason="Too many incorrect codes. Please request a new code.")
            self._after_failure()
            return result

        # Countdown keeps running; only the phase goes back
        self._set_phase(sm.OTP_AWAITING_CODE)
        remaining = self.max_attempts - self._wrong_codes
        self._set_error(f"Invalid verification code. {remaining} attempt(s) left.")
        return self.result()

    async def resend(self) -> ChannelResult:
        if self.status() == ChannelStatus.VERIFIED:
            return self.result()
        if not self._phone:
            raise StateError("resend requested before any phone challenge")
        if not self.resend_allowed():
            ch = self.challenge()
            log(event="otp_resend_blocked", channel=self.channel.value, phase=self.phase(),
                remainingSeconds=ch.remainingSeconds if ch else None)
            return self.result()
        return await self.start(self._phone)

    def resend_allowed(self) -> bool:
        """True once the countdown has reached 0, or after an attempt ended without a live challenge."""
        if self.phase() in (sm.OTP_REQUESTING, sm.OTP_VERIFYING):
            return False
        ch = self.challenge()
        if ch is not None:
            return ch.remainingSeconds == 0
        return self.status() in (ChannelStatus.FAILED, ChannelStatus.EXPIRED)

    def expire(self) -> Optional[ChannelResult]:
        """Force the current challenge to lapse. Fires the expiry event at most once per attempt."""
        self._cancel_timer()
        if self.status() not in (ChannelStatus.PENDING, ChannelStatus.VERIFIED):
            return None
        ch = self.challenge()
        # Any verify call still in flight belongs to a dead challenge now
        self._generation += 1
        self._void_challenge()
        self._set_phase(sm.OTP_EXPIRED)
        result = self._write_result(ChannelStatus.EXPIRED, reason="Verification code expired")
        log(event="otp_challenge_expired", channel=self.channel.value,
            challengeId=ch.challengeId if ch else None)
        self.events.emit(DomainEvent.CHALLENGE_EXPIRED, channel=self.channel.value,
                         challengeId=ch.challengeId if ch else None)
        return result

    # ------------------------------------------------------------- lifecycle
    def _after_failure(self) -> None:
        self._cancel_timer()
        self._void_challenge()
        self._set_phase(sm.OTP_FAILED)

    def abort(self) -> None:
        self._cancel_timer()
        super().abort()

    def reset(self) -> None:
        self._phone = None
        self._wrong_codes = 0
        super().reset()
        self._set_challenge(None)

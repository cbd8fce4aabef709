"""
VerificationEngine: the surface the UI shell talks to.

One engine per guest session. It owns the store, the event bus, the channel
managers and the persistence layer, and it keeps the results section in step
with the form and channel sections:

  update_form_data -> validate -> form section -> (debounced) persistence
  start_channel    -> manager  -> channels section
  form/channels change -> compute_result -> results section -> score-updated
"""
import uuid
from datetime import date
from typing import Any, Callable, Dict, Mapping, Optional

from guestverify.channels.background import BackgroundCheckManager, should_prompt_background_check
from guestverify.channels.base import ChannelManager
from guestverify.channels.document import DocumentSelfieManager
from guestverify.channels.phone import PhoneOTPManager
from guestverify.channels.platform import PlatformProfileManager
from guestverify.core.errors import ExpiryError, StateError
from guestverify.core.events import DomainEvent, EventBus
from guestverify.core.scoring import ScoringConfig, build_host_summary, compute_result, result_message
from guestverify.core.state_store import ALL, Section, StateStore
from guestverify.core.validation import is_step_valid, validate, validate_all_steps
from guestverify.observability.logging import log
from guestverify.providers.http_client import ProviderClient
from guestverify.settings import settings
from guestverify.store.models import FORM_STEPS, Channel, ChannelResult, ChannelStatus, Notification, Session
from guestverify.store.persistence import SessionPersistence
from guestverify.utils.time import Debouncer, LoopScheduler

MS_PER_HOUR = 60 * 60 * 1000

# Debounce keys
_PERSIST_FORM = "form"
_PERSIST_TRUST_PREVIEW = "trust_preview"


class VerificationEngine:
    def __init__(
        self,
        *,
        store: Optional[StateStore] = None,
        events: Optional[EventBus] = None,
        scheduler=None,
        persistence: Optional[SessionPersistence] = None,
        identity_provider=None,
        phone_provider=None,
        background_provider=None,
        scoring_config: Optional[ScoringConfig] = None,
        session_ttl_hours: Optional[float] = None,
        notification_timeout_sec: Optional[float] = None,
        persist_debounce_sec: Optional[float] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.scheduler = scheduler or LoopScheduler()
        self.store = store or StateStore()
        self.events = events or EventBus()
        self.persistence = persistence or SessionPersistence(clock=self.scheduler)
        self.config = scoring_config or ScoringConfig.from_settings()
        self.session_ttl_hours = float(session_ttl_hours if session_ttl_hours is not None else settings.SESSION_TTL_HOURS)
        self.notification_timeout_sec = float(
            notification_timeout_sec if notification_timeout_sec is not None else settings.NOTIFICATION_TIMEOUT_SEC
        )
        self._today = today or date.today
        self._debouncer = Debouncer(
            self.scheduler, persist_debounce_sec if persist_debounce_sec is not None else settings.PERSIST_DEBOUNCE_SEC
        )
        self._notification_timers: Dict[str, Any] = {}
        self._ready = False
        self._owned_client: Optional[ProviderClient] = None

        if identity_provider is None or phone_provider is None or background_provider is None:
            shared = self._owned_client = ProviderClient()
            identity_provider = identity_provider or shared
            phone_provider = phone_provider or shared
            background_provider = background_provider or shared

        deps = (self.store, self.events, self.scheduler)
        self.managers: Dict[Channel, ChannelManager] = {
            Channel.DOCUMENT_SELFIE: DocumentSelfieManager(*deps, identity_provider),
            Channel.PHONE_OTP: PhoneOTPManager(*deps, phone_provider),
            Channel.BACKGROUND_CHECK: BackgroundCheckManager(*deps, background_provider),
            Channel.PLATFORM_PROFILE: PlatformProfileManager(*deps),
        }

        self._unsubscribers = [
            self.store.subscribe(Section.FORM, lambda _v: self._recompute()),
            self.store.subscribe(Section.CHANNELS, lambda _v: self._recompute()),
            self._on_change(Section.FORM, lambda _v: self._schedule_form_save()),
        ]
        self._ready = True

    # ----------------------------------------------------------------- wiring
    def _on_change(self, section: Section, callback: Callable[[Dict[str, Any]], Any]) -> Callable[[], None]:
        """Subscribe without the immediate first call."""
        primed = {"done": False}

        def handler(value):
            if not primed["done"]:
                primed["done"] = True
                return
            callback(value)

        return self.store.subscribe(section, handler)

    def close(self) -> None:
        for unsub in self._unsubscribers:
            unsub()
        self._unsubscribers = []
        self._debouncer.cancel_all()
        for m in self.managers.values():
            m.abort()
        for handle in self._notification_timers.values():
            handle.cancel()
        self._notification_timers.clear()

    async def aclose(self) -> None:
        """close(), then release the provider client this engine created, if any."""
        self.close()
        if self._owned_client is not None:
            client, self._owned_client = self._owned_client, None
            await client.aclose()

    async def __aenter__(self) -> "VerificationEngine":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def manager(self, channel: Channel) -> ChannelManager:
        try:
            return self.managers[Channel(channel)]
        except ValueError:
            log(event="engine_unknown_channel", channel=str(channel))
            raise StateError(f"unknown channel: {channel!r}") from None

    # ------------------------------------------------------------ state access
    def subscribe(self, section, callback) -> Callable[[], None]:
        return self.store.subscribe(section, callback)

    def get_state(self, section) -> Dict[str, Any]:
        if section == ALL:
            return self.store.snapshot()
        return self.store.get(section)

    def on(self, event_type: Optional[DomainEvent], handler) -> Callable[[], None]:
        return self.events.subscribe(event_type, handler)

    # ---------------------------------------------------------------- session
    def start_session(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        now = self.scheduler.now_ms()
        session = Session(
            id=uuid.uuid4().hex,
            currentStepIndex=0,
            createdAt=now,
            expiresAt=now + int(self.session_ttl_hours * MS_PER_HOUR),
            dirty=False,
        )
        self.store.update(Section.AUTH, {"isAuthenticated": user_id is not None, "userId": user_id})
        self.store.update(Section.SESSION, session.to_dict())
        log(event="session_started", sessionId=session.id, authenticated=user_id is not None)
        return session.to_dict()

    def _ensure_session(self) -> bool:
        """False when the session had lapsed and was reset instead of acting."""
        session = self.store.get(Section.SESSION)
        if not session.get("id"):
            self.start_session(self.store.get(Section.AUTH).get("userId"))
            return True
        if self.scheduler.now_ms() >= int(session.get("expiresAt") or 0):
            log(event="session_expired", sessionId=session["id"])
            user_id = self.store.get(Section.AUTH).get("userId")
            self.reset_session()
            self.start_session(user_id)
            self.add_notification("Your session expired. Please start again.", "warning")
            return False
        return True

    def restore(self) -> bool:
        """Reload a saved form snapshot if one is still within its TTL."""
        saved = self.persistence.load(self.session_ttl_hours)
        if not saved:
            return False
        self._ensure_session()
        data = saved["formData"]
        self.store.update(Section.FORM, lambda s: {
            **s,
            "data": {step: dict(data.get(step) or s["data"].get(step) or {}) for step in FORM_STEPS},
        })
        step = max(0, min(int(saved["step"]), len(FORM_STEPS) - 1))
        self.store.update(Section.SESSION, {"currentStepIndex": step, "dirty": False})
        log(event="session_restored", sessionId=self.store.get(Section.SESSION)["id"], step=step)
        return True

    def reset_session(self) -> None:
        for m in self.managers.values():
            m.reset()
        for sec in (Section.RESULTS, Section.SESSION, Section.FORM, Section.CHANNELS):
            self.store.reset(sec)
        self._recompute(persist=False)
        self._debouncer.cancel_all()
        self.persistence.purge()
        log(event="session_reset")

    def logout(self) -> None:
        self.reset_session()
        self.store.reset(Section.AUTH)
        log(event="session_logout")

    # ------------------------------------------------------------------- form
    def _current_step(self) -> str:
        return FORM_STEPS[int(self.store.get(Section.SESSION).get("currentStepIndex") or 0)]

    def _validation_context(self) -> Dict[str, Any]:
        channels = self.store.get(Section.CHANNELS)["results"]
        verified = channels[Channel.DOCUMENT_SELFIE.value]["status"] == ChannelStatus.VERIFIED.value
        return {
            "isVerified": bool(self.store.get(Section.AUTH).get("isVerified")) or verified,
            "today": self._today(),
        }

    def update_form_data(self, step: str, fields: Mapping[str, Any]) -> Dict[str, str]:
        if step not in FORM_STEPS:
            raise StateError(f"unknown form step: {step!r}")
        if not self._ensure_session():
            return self.store.get(Section.FORM)["errors"][step]

        merged = {**self.store.get(Section.FORM)["data"][step], **dict(fields or {})}
        errors = validate(step, merged, self._validation_context())
        self.store.update(Section.SESSION, {"dirty": True})
        self.store.update(Section.FORM, lambda s: {
            "data": {**s["data"], step: merged},
            "errors": {**s["errors"], step: errors},
        })
        return errors

    def validate_step(self, step: Optional[str] = None) -> Dict[str, str]:
        step = step or self._current_step()
        errors = validate(step, self.store.get(Section.FORM)["data"][step], self._validation_context())
        self.store.update(Section.FORM, lambda s: {**s, "errors": {**s["errors"], step: errors}})
        return errors

    def validate_all(self) -> Dict[str, Any]:
        """Validate every step at once (final review before submission)."""
        report = validate_all_steps(self.store.get(Section.FORM)["data"], self._validation_context())
        self.store.update(Section.FORM, lambda s: {**s, "errors": report["errors"]})
        return report

    def advance_step(self) -> bool:
        if not self._ensure_session():
            return False
        step = self._current_step()
        errors = self.validate_step(step)
        if not is_step_valid(errors):
            log(event="step_blocked", step=step, errorCount=sum(1 for v in errors.values() if v))
            return False
        idx = FORM_STEPS.index(step)
        if idx >= len(FORM_STEPS) - 1:
            return True
        self._move_to(idx + 1)
        return True

    def go_back(self) -> bool:
        if not self._ensure_session():
            return False
        idx = FORM_STEPS.index(self._current_step())
        if idx == 0:
            return False
        self._move_to(idx - 1)
        return True

    def _move_to(self, idx: int) -> None:
        prev = self._current_step()
        self.store.update(Section.SESSION, {"currentStepIndex": idx})
        self._schedule_form_save()
        self.events.emit(DomainEvent.STEP_CHANGED, previous=prev, step=FORM_STEPS[idx], index=idx)

    # --------------------------------------------------------------- channels
    async def start_channel(self, channel: Channel, input: Any = None) -> ChannelResult:
        m = self.manager(channel)
        if not self._ensure_session():
            return m.result()
        return await m.start(input)

    async def submit_channel_code(self, channel: Channel, code: str) -> ChannelResult:
        m = self.manager(channel)
        if not isinstance(m, PhoneOTPManager):
            raise StateError(f"{m.channel.value} has no code step")
        if not self._ensure_session():
            return m.result()
        try:
            return await m.submit_code(code)
        except ExpiryError as e:
            self.add_notification(str(e), "warning")
            return m.result()

    async def resend_channel(self, channel: Channel) -> ChannelResult:
        m = self.manager(channel)
        if not isinstance(m, PhoneOTPManager):
            raise StateError(f"{m.channel.value} does not support resend")
        if not self._ensure_session():
            return m.result()
        return await m.resend()

    def should_prompt_background_check(self) -> bool:
        results = self.store.get(Section.RESULTS)
        return should_prompt_background_check(self.store.get(Section.FORM)["data"], results.get("score"), self.config)

    # ---------------------------------------------------------------- results
    def _recompute(self, persist: bool = True) -> None:
        form = self.store.get(Section.FORM)["data"]
        channels = self.store.get(Section.CHANNELS)["results"]
        today = self._today()
        result = compute_result(form, channels, self.config, today=today, computed_at=self.scheduler.now_ms())
        doc = result.to_dict()

        prev = self.store.get(Section.RESULTS)
        if (prev.get("score"), prev.get("level"), prev.get("adjustments")) == (doc["score"], doc["level"], doc["adjustments"]):
            return

        self.store.update(Section.RESULTS, {
            **doc,
            "message": result_message(result.level),
            "backgroundCheckRecommended": should_prompt_background_check(form, result.score, self.config),
            "hostSummary": build_host_summary(result, form, channels, self.config, today=today),
        })
        self.events.emit(DomainEvent.SCORE_UPDATED, score=result.score, level=result.level.key,
                         previousScore=prev.get("score"))
        if persist and self._ready:
            self._debouncer.call(_PERSIST_TRUST_PREVIEW, self._save_trust_preview)

    def _save_trust_preview(self) -> None:
        results = self.store.get(Section.RESULTS)
        self.persistence.save_trust_preview({
            "score": results["score"],
            "level": results["level"],
            "computedAt": results["computedAt"],
        })

    def _schedule_form_save(self) -> None:
        if not self.store.get(Section.SESSION).get("id"):
            return
        self._debouncer.call(_PERSIST_FORM, self._save_form)

    def _save_form(self) -> None:
        session = self.store.get(Section.SESSION)
        if self.persistence.save(self.store.get(Section.FORM)["data"], session["currentStepIndex"]):
            self.store.update(Section.SESSION, {"dirty": False})

    def flush(self) -> None:
        """Write pending snapshots now instead of waiting for the debounce."""
        self._debouncer.cancel_all()
        if self.store.get(Section.SESSION).get("id"):
            self._save_form()
        if self.store.get(Section.RESULTS).get("score") is not None:
            self._save_trust_preview()

    # ---------------------------------------------------------- notifications
    def add_notification(self, message: str, severity: str = "info", timeout_sec: Optional[float] = None) -> str:
        timeout = self.notification_timeout_sec if timeout_sec is None else float(timeout_sec)
        # Without a loop the note stays until dismissed
        auto_dismiss = timeout > 0 and self.scheduler.running()
        note = Notification(
            id=uuid.uuid4().hex[:12],
            message=message,
            severity=severity,
            autoExpireAt=self.scheduler.now_ms() + int(timeout * 1000) if auto_dismiss else None,
        )
        self.store.update(Section.NOTIFICATIONS, lambda s: {**s, "items": s["items"] + [note.to_dict()]})
        if auto_dismiss:
            self._notification_timers[note.id] = self.scheduler.call_later(timeout, self.dismiss_notification, note.id)
        return note.id

    def dismiss_notification(self, notification_id: str) -> bool:
        handle = self._notification_timers.pop(notification_id, None)
        if handle is not None:
            handle.cancel()
        return self.store.update(Section.NOTIFICATIONS, lambda s: {
            **s, "items": [n for n in s["items"] if n["id"] != notification_id],
        })

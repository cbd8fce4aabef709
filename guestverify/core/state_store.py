"""
Central State Store
-------------------
A sectioned, subscribable store created per verification session and passed
to every consumer. The set of sections is closed; anything else is a StateError.

Contract:
- get() hands out deep copies, so callers can never mutate stored state.
- update() computes the full new section value before any subscriber runs and
  is a no-op (no notification) when the value is deep-equal to the old one.
- subscribers fire once on subscribe, then on every change, in subscription
  order; a raising subscriber is logged and skipped.
"""
import copy
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from guestverify.core import state_machine as sm
from guestverify.core.errors import StateError
from guestverify.observability.logging import log
from guestverify.store.models import FORM_STEPS, Channel, ChannelResult, Session


class Section(str, Enum):
    AUTH = "auth"
    SESSION = "session"
    FORM = "form"
    CHANNELS = "channels"
    RESULTS = "results"
    NOTIFICATIONS = "ui-notifications"


ALL = "all"

SectionKey = Union[Section, str]
Patch = Union[Mapping[str, Any], Callable[[Dict[str, Any]], Dict[str, Any]]]

INITIAL_PHASES = {
    Channel.DOCUMENT_SELFIE: sm.DOC_INPUT_READY,
    Channel.PHONE_OTP: sm.OTP_IDLE,
    Channel.BACKGROUND_CHECK: sm.BG_IDLE,
    Channel.PLATFORM_PROFILE: sm.PROFILE_IDLE,
}


def initial_section(section: Section) -> Dict[str, Any]:
    if section is Section.AUTH:
        return {"isAuthenticated": False, "userId": None}
    if section is Section.SESSION:
        return Session().to_dict()
    if section is Section.FORM:
        return {
            "data": {step: {} for step in FORM_STEPS},
            "errors": {step: {} for step in FORM_STEPS},
        }
    if section is Section.CHANNELS:
        return {
            "results": {ch.value: ChannelResult(ch).to_dict() for ch in Channel},
            "phases": {ch.value: INITIAL_PHASES[ch] for ch in Channel},
            "errors": {ch.value: None for ch in Channel},
            "otpChallenge": None,
        }
    if section is Section.RESULTS:
        return {
            "score": None,
            "level": None,
            "adjustments": [],
            "computedAt": 0,
            "message": "",
            "backgroundCheckRecommended": False,
            "hostSummary": None,
        }
    return {"items": []}


class _Subscription:
    __slots__ = ("callback",)

    def __init__(self, callback: Callable[[Dict[str, Any]], Any]):
        self.callback = callback


class StateStore:
    def __init__(self, initial: Optional[Mapping[SectionKey, Mapping[str, Any]]] = None):
        self._state: Dict[Section, Dict[str, Any]] = {s: initial_section(s) for s in Section}
        for key, value in (initial or {}).items():
            sec = self._section(key)
            self._state[sec] = {**self._state[sec], **copy.deepcopy(dict(value))}
        self._subscribers: Dict[Section, List[_Subscription]] = {s: [] for s in Section}
        self._subscribers_all: List[_Subscription] = []

    # ------------------------------------------------------------------ reads
    def _section(self, section: SectionKey) -> Section:
        if isinstance(section, Section):
            return section
        try:
            return Section(section)
        except ValueError:
            log(event="state_unknown_section", section=str(section))
            raise StateError(f"unknown state section: {section!r}") from None

    def get(self, section: SectionKey) -> Dict[str, Any]:
        return copy.deepcopy(self._state[self._section(section)])

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {s.value: copy.deepcopy(v) for s, v in self._state.items()}

    # ----------------------------------------------------------------- writes
    def update(self, section: SectionKey, patch: Patch) -> bool:
        """Merge a partial dict or apply a pure transform. Returns True if state changed."""
        sec = self._section(section)
        prev = self._state[sec]

        if callable(patch):
            new_value = patch(copy.deepcopy(prev))
        elif isinstance(patch, Mapping):
            new_value = {**copy.deepcopy(prev), **copy.deepcopy(dict(patch))}
        else:
            raise StateError(f"update() for {sec.value} expects a mapping or callable, got {type(patch).__name__}")

        if not isinstance(new_value, dict):
            raise StateError(f"transform for {sec.value} must return a dict, got {type(new_value).__name__}")

        if new_value == prev:
            return False

        self._state[sec] = copy.deepcopy(new_value)
        self._notify(sec)
        return True

    def reset(self, section: Optional[SectionKey] = None) -> None:
        targets = [self._section(section)] if section is not None else list(Section)
        for sec in targets:
            self.update(sec, lambda _prev, s=sec: initial_section(s))

    # ------------------------------------------------------------ subscribers
    def subscribe(self, section: SectionKey, callback: Callable[[Dict[str, Any]], Any]) -> Callable[[], None]:
        if not callable(callback):
            raise StateError("subscriber callback must be callable")

        sub = _Subscription(callback)
        if section == ALL:
            bucket = self._subscribers_all
            bucket.append(sub)
            self._safe_call(sub, self.snapshot(), ALL)
        else:
            sec = self._section(section)
            bucket = self._subscribers[sec]
            bucket.append(sub)
            self._safe_call(sub, copy.deepcopy(self._state[sec]), sec.value)

        def unsubscribe() -> None:
            if sub in bucket:
                bucket.remove(sub)

        return unsubscribe

    def subscriber_count(self, section: SectionKey) -> int:
        if section == ALL:
            return len(self._subscribers_all)
        return len(self._subscribers[self._section(section)])

    def _notify(self, sec: Section) -> None:
        for sub in list(self._subscribers[sec]):
            self._safe_call(sub, copy.deepcopy(self._state[sec]), sec.value)
        for sub in list(self._subscribers_all):
            self._safe_call(sub, self.snapshot(), ALL)

    @staticmethod
    def _safe_call(sub: _Subscription, value: Dict[str, Any], section: str) -> None:
        try:
            sub.callback(value)
        except Exception as e:
            log(
                event="state_subscriber_error",
                section=section,
                errorType=type(e).__name__,
                error=str(e)[:300],
            )

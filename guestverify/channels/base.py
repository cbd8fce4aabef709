"""
Shared shape of every verification channel: start(input), status(), result().

A manager never holds channel state across an await; it re-reads the store
after every suspension point. Each attempt gets a generation number, and any
provider response belonging to an older generation is dropped.
"""
from typing import Any, Awaitable, Callable, Dict, Optional

from guestverify.core import state_machine as sm
from guestverify.core.errors import ChannelError
from guestverify.core.events import DomainEvent, EventBus
from guestverify.core.state_store import INITIAL_PHASES, Section, StateStore
from guestverify.observability.logging import log
from guestverify.store.models import Channel, ChannelResult, ChannelStatus

GENERIC_FAILURE = "Verification service is unavailable. Please try again."


class ChannelManager:
    channel: Channel

    def __init__(self, store: StateStore, events: EventBus, scheduler):
        self.store = store
        self.events = events
        self.scheduler = scheduler
        self._generation = 0

    # ------------------------------------------------------------------ reads
    def _section(self) -> Dict[str, Any]:
        return self.store.get(Section.CHANNELS)

    def result(self) -> ChannelResult:
        return ChannelResult.from_dict(self._section()["results"][self.channel.value])

    def status(self) -> ChannelStatus:
        return self.result().status

    def phase(self) -> str:
        return self._section()["phases"][self.channel.value]

    @property
    def error(self) -> Optional[str]:
        return self._section()["errors"][self.channel.value]

    def _user_id(self) -> Optional[str]:
        return self.store.get(Section.AUTH).get("userId")

    # ----------------------------------------------------------------- writes
    def _set_phase(self, phase: str) -> None:
        key = self.channel.value
        self.store.update(Section.CHANNELS, lambda s: {**s, "phases": {**s["phases"], key: phase}})

    def _set_error(self, message: Optional[str]) -> None:
        key = self.channel.value
        self.store.update(Section.CHANNELS, lambda s: {**s, "errors": {**s["errors"], key: message}})

    def _write_result(
        self,
        status: ChannelStatus,
        payload: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        *,
        new_attempt: bool = False,
    ) -> ChannelResult:
        """Record a status edge. new_attempt replaces the previous result instead of moving it."""
        previous = self.result()
        current = ChannelResult(self.channel) if new_attempt else previous
        sm.assert_transition(self.channel, current.status, status)

        nxt = ChannelResult(
            channel=self.channel,
            status=status,
            updatedAt=self.scheduler.now_ms(),
            payload=dict(payload if payload is not None else current.payload),
            reason=reason,
        )
        key = self.channel.value
        self.store.update(Section.CHANNELS, lambda s: {**s, "results": {**s["results"], key: nxt.to_dict()}})

        log(event="channel_transition", channel=key, fromStatus=previous.status.value,
            toStatus=status.value, newAttempt=bool(new_attempt))
        self.events.emit(DomainEvent.CHANNEL_RESULT_CHANGED, channel=key,
                         status=status.value, previous=previous.status.value)
        return nxt

    # ------------------------------------------------------------ attempts
    def _begin_attempt(self) -> int:
        self._generation += 1
        return self._generation

    def _is_current(self, gen: int, op: str) -> bool:
        if gen == self._generation:
            return True
        log(event="channel_stale_response_discarded", channel=self.channel.value,
            op=op, generation=gen, currentGeneration=self._generation)
        return False

    async def _invoke(self, gen: int, op: str, fn: Callable[..., Awaitable[Any]], *args) -> Optional[Any]:
        """
        Await a provider call. Returns the response, or None when the call failed
        (already recorded as Failed) or was superseded while in flight.
        """
        try:
            resp = await fn(*args)
        except Exception as e:
            if self._is_current(gen, op):
                self._fail(e, op)
            return None
        if not self._is_current(gen, op):
            return None
        return resp

    def _fail(self, exc: Exception, op: str) -> ChannelResult:
        reason = str(exc) if isinstance(exc, ChannelError) else GENERIC_FAILURE
        log(event="channel_call_failed", channel=self.channel.value, op=op,
            errorType=type(exc).__name__, error=str(exc)[:300])
        result = self._write_result(ChannelStatus.FAILED, reason=reason)
        self._after_failure()
        return result

    def _after_failure(self) -> None:
        self._set_phase(INITIAL_PHASES[self.channel])

    # ------------------------------------------------------------- lifecycle
    async def start(self, input: Any = None) -> ChannelResult:
        raise NotImplementedError

    def abort(self) -> None:
        """Invalidate any in-flight call so its late response is discarded."""
        self._generation += 1

    def reset(self) -> None:
        self.abort()
        key = self.channel.value
        fresh = ChannelResult(self.channel).to_dict()
        self.store.update(Section.CHANNELS, lambda s: {
            **s,
            "results": {**s["results"], key: fresh},
            "phases": {**s["phases"], key: INITIAL_PHASES[self.channel]},
            "errors": {**s["errors"], key: None},
        })

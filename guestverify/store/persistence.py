"""
Persistence Layer
-----------------
Time-boxed save / load / purge of the in-progress form snapshot, plus a
separately keyed trust-preview cache.

Keys (namespace defaults to STORAGE_PREFIX):
  {ns}:form           JSON of per-step form data
  {ns}:step           current step index
  {ns}:saved_at       epoch ms of the last save
  {ns}:trust_preview  JSON of the last computed score/level

Storage failures never reach the caller: they are logged as
persistence_unavailable and the session carries on in memory.
"""
import json
from typing import Any, Dict, Mapping, Optional

from guestverify.core.errors import PersistenceError
from guestverify.observability.logging import log
from guestverify.providers.contracts import KeyValueStorage
from guestverify.settings import settings
from guestverify.store.kv import get_storage
from guestverify.utils.time import now_ms as _wall_now_ms

MS_PER_HOUR = 60 * 60 * 1000


class SessionPersistence:
    def __init__(self, storage: Optional[KeyValueStorage] = None, *, namespace: Optional[str] = None, clock=None):
        self.storage = storage if storage is not None else get_storage()
        self.namespace = namespace or settings.STORAGE_PREFIX
        self._clock = clock
        self.available = True

    # ------------------------------------------------------------------ keys
    @property
    def form_key(self) -> str:
        return f"{self.namespace}:form"

    @property
    def step_key(self) -> str:
        return f"{self.namespace}:step"

    @property
    def saved_at_key(self) -> str:
        return f"{self.namespace}:saved_at"

    @property
    def trust_preview_key(self) -> str:
        return f"{self.namespace}:trust_preview"

    def _now_ms(self) -> int:
        return int(self._clock.now_ms()) if self._clock is not None else _wall_now_ms()

    def _degraded(self, op: str, err: Exception) -> None:
        self.available = False
        log(event="persistence_unavailable", op=op, namespace=self.namespace,
            errorType=type(err).__name__, error=str(err)[:300])

    # ------------------------------------------------------------ operations
    def save(self, form_data: Mapping[str, Any], step: int) -> bool:
        try:
            self.storage.set(self.form_key, json.dumps(form_data, default=str))
            self.storage.set(self.step_key, str(int(step)))
            self.storage.set(self.saved_at_key, str(self._now_ms()))
        except (PersistenceError, OSError, TypeError, ValueError) as e:
            self._degraded("save", e)
            return False
        self.available = True
        return True

    def load(self, ttl_hours: Optional[float] = None) -> Optional[Dict[str, Any]]:
        ttl_hours = float(ttl_hours if ttl_hours is not None else settings.SESSION_TTL_HOURS)
        try:
            saved_at_raw = self.storage.get(self.saved_at_key)
            form_raw = self.storage.get(self.form_key)
            step_raw = self.storage.get(self.step_key)
        except (PersistenceError, OSError) as e:
            self._degraded("load", e)
            return None

        if saved_at_raw is None and form_raw is None:
            return None

        try:
            saved_at = int(saved_at_raw)
            form_data = json.loads(form_raw)
            step = int(step_raw or 0)
            if not isinstance(form_data, dict):
                raise ValueError("form snapshot is not an object")
        except (TypeError, ValueError) as e:
            log(event="persistence_corrupt_purged", namespace=self.namespace, error=str(e)[:200])
            self.purge()
            return None

        age_ms = self._now_ms() - saved_at
        if age_ms >= ttl_hours * MS_PER_HOUR:
            log(event="persistence_expired_purged", namespace=self.namespace,
                ageMs=int(age_ms), ttlHours=ttl_hours)
            self.purge()
            return None

        return {"formData": form_data, "step": step}

    def purge(self) -> None:
        for key in (self.form_key, self.step_key, self.saved_at_key, self.trust_preview_key):
            try:
                self.storage.remove(key)
            except (PersistenceError, OSError) as e:
                self._degraded("purge", e)
                return

    def save_trust_preview(self, preview: Mapping[str, Any]) -> bool:
        try:
            self.storage.set(self.trust_preview_key, json.dumps(dict(preview), default=str))
        except (PersistenceError, OSError, TypeError, ValueError) as e:
            self._degraded("save_trust_preview", e)
            return False
        return True

    def get_trust_preview(self) -> Optional[Dict[str, Any]]:
        try:
            raw = self.storage.get(self.trust_preview_key)
        except (PersistenceError, OSError) as e:
            self._degraded("get_trust_preview", e)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

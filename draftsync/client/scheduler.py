"""Respondent-side autosave scheduler.

Keeps the server's draft converging toward the respondent's current form
state without interrupting editing or blocking submission. It runs on the
respondent's asyncio event loop; the only suspension point is the save call
itself.

Exactly one trigger policy is active per scheduler:

- ``DEBOUNCE`` (default): fire ``debounce`` seconds after the last edit.
- ``INTERVAL``: fire every ``interval`` seconds.

A fire only issues a save when the filtered answers are non-empty, differ
from the last server-confirmed snapshot, and no manual save or submission is
running. A newer payload supersedes an in-flight autosave by cancelling it.
A save callable returning ``False`` reports that the payload was not
persisted (another writer won the insert race); the snapshot stays put and
the next fire resends the current state.
Cancellation is silent and never advances the confirmed snapshot. Failures
are swallowed; after ``failure_threshold`` consecutive failures the status
turns ``FAILED`` so a passive "failed to save" indicator can be shown, and
the next fire retries regardless.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

from draftsync.config import AutosaveConfig
from draftsync.logic.answers import answers_fingerprint, filter_answers
from draftsync.logic.timestamps import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")
SaveCallable = Callable[[Dict[str, Any]], Awaitable[Any]]


class AutosavePolicy(str, Enum):
    INTERVAL = "interval"
    DEBOUNCE = "debounce"


class SaveStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    FAILED = "failed"


class AutosaveScheduler:
    def __init__(
        self,
        save: SaveCallable,
        *,
        policy: AutosavePolicy = AutosavePolicy.DEBOUNCE,
        interval: float = 10.0,
        debounce: float = 3.0,
        failure_threshold: int = 3,
        on_status: Optional[Callable[[SaveStatus], None]] = None,
    ) -> None:
        self._save = save
        self.policy = AutosavePolicy(policy)
        self.interval = interval
        self.debounce = debounce
        self.failure_threshold = max(1, int(failure_threshold))
        self._on_status = on_status

        self._latest: Dict[str, Any] = {}
        self._confirmed_fingerprint: Optional[str] = None
        self._inflight: Optional[asyncio.Task] = None
        self._inflight_fingerprint: Optional[str] = None
        self._timer: Optional[asyncio.Task] = None
        self._exclusive = 0
        self._sealed = False

        self.status = SaveStatus.IDLE
        self.consecutive_failures = 0
        self.last_saved_at: Optional[datetime] = None

    @classmethod
    def from_config(cls, save: SaveCallable, config: AutosaveConfig, **kwargs: Any) -> "AutosaveScheduler":
        return cls(
            save,
            policy=AutosavePolicy(config.policy),
            interval=config.interval_seconds,
            debounce=config.debounce_seconds,
            failure_threshold=config.failure_threshold,
            **kwargs,
        )

    # -- state -------------------------------------------------------------

    @property
    def confirmed_fingerprint(self) -> Optional[str]:
        return self._confirmed_fingerprint

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def saving(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def _set_status(self, status: SaveStatus) -> None:
        if status is self.status:
            return
        self.status = status
        if self._on_status is not None:
            self._on_status(status)

    def acknowledge(self, answers: Mapping[str, Any]) -> None:
        """Record `answers` as server-confirmed (after a load or manual save)."""
        self._confirmed_fingerprint = answers_fingerprint(answers)

    # -- triggers ----------------------------------------------------------

    def notify_change(self, answers: Mapping[str, Any]) -> None:
        """Record the latest form state; re-arms the debounce timer.

        Must be called from within the running event loop.
        """
        self._latest = dict(answers)
        if self.policy is AutosavePolicy.DEBOUNCE and not self._sealed:
            self._cancel_timer()
            self._timer = asyncio.create_task(self._debounce_fire())

    def start(self) -> None:
        """Start the periodic loop (interval policy only)."""
        if self.policy is AutosavePolicy.INTERVAL and not self._sealed and self._timer is None:
            self._timer = asyncio.create_task(self._interval_loop())

    async def _debounce_fire(self) -> None:
        await asyncio.sleep(self.debounce)
        self._timer = None
        self.trigger()

    async def _interval_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.trigger()

    def _rearm(self) -> None:
        # Debounce only fires after edits; schedule a retry tick explicitly
        if self.policy is AutosavePolicy.DEBOUNCE and not self._sealed and self._timer is None:
            self._timer = asyncio.create_task(self._debounce_fire())

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def trigger(self) -> Optional[asyncio.Task]:
        """Evaluate the fire preconditions and start a save when they hold.

        Returns the task carrying the save for the current payload, or None
        when nothing needs saving.
        """
        if self._sealed or self._exclusive:
            return None
        payload = filter_answers(self._latest)
        if not payload:
            return None
        fingerprint = answers_fingerprint(payload)
        if fingerprint == self._confirmed_fingerprint:
            return None
        if self.saving:
            if fingerprint == self._inflight_fingerprint:
                return self._inflight
            logger.debug("autosave.superseded")
            self._inflight.cancel()  # type: ignore[union-attr]
        self._inflight_fingerprint = fingerprint
        self._inflight = asyncio.create_task(self._run_save(payload, fingerprint))
        return self._inflight

    async def flush(self) -> bool:
        """Fire immediately and wait for the outcome; True when state is confirmed."""
        task = self.trigger()
        if task is not None:
            await asyncio.wait([task])
        return self._confirmed_fingerprint == answers_fingerprint(self._latest)

    async def _run_save(self, payload: Dict[str, Any], fingerprint: str) -> None:
        previous = self.status
        self._set_status(SaveStatus.SAVING)
        me = asyncio.current_task()
        try:
            persisted = await self._save(payload)
        except asyncio.CancelledError:
            # Superseded or suppressed: not an error, snapshot untouched
            logger.debug("autosave.cancelled")
            if self._inflight is me:
                self._set_status(previous)
            raise
        except Exception as exc:
            self.consecutive_failures += 1
            logger.warning(
                "autosave.failed consecutive=%d error=%s",
                self.consecutive_failures,
                exc,
            )
            if self.consecutive_failures >= self.failure_threshold:
                self._set_status(SaveStatus.FAILED)
            else:
                self._set_status(previous if previous is not SaveStatus.SAVING else SaveStatus.IDLE)
            self._rearm()
        else:
            if persisted is False:
                # Another writer's row holds the draft; resend current state next tick
                logger.info("autosave.not_persisted")
                self._set_status(previous if previous is not SaveStatus.SAVING else SaveStatus.IDLE)
                self._rearm()
                return
            self._confirmed_fingerprint = fingerprint
            self.consecutive_failures = 0
            self.last_saved_at = utcnow()
            self._set_status(SaveStatus.SAVED)
        finally:
            if self._inflight is me:
                self._inflight = None
                self._inflight_fingerprint = None

    # -- coordination with manual save and submission -----------------------

    async def cancel_inflight(self) -> None:
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

    async def run_exclusive(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a manual save or submission with autosave suppressed.

        Any in-flight autosave is cancelled first; no autosave starts until
        the operation finishes.
        """
        self._exclusive += 1
        try:
            await self.cancel_inflight()
            return await operation()
        finally:
            self._exclusive -= 1
            if not self._exclusive and self._has_unconfirmed_changes():
                # A debounce tick that fell inside the slot was dropped
                self._rearm()

    def _has_unconfirmed_changes(self) -> bool:
        payload = filter_answers(self._latest)
        return bool(payload) and answers_fingerprint(payload) != self._confirmed_fingerprint

    def seal(self) -> None:
        """Stop autosaving for good: a final submission has been initiated."""
        self._sealed = True
        self._cancel_timer()
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

    def unseal(self) -> None:
        """Resume autosaving after a submission attempt failed."""
        self._sealed = False
        if self.policy is AutosavePolicy.INTERVAL:
            self.start()
        else:
            self._rearm()

    async def stop(self) -> None:
        """Cancel timers and any in-flight save, then wait for them to settle."""
        timer = self._timer
        self._cancel_timer()
        pending = [t for t in (timer, self._inflight) if t is not None and not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.wait(pending)


__all__ = ["AutosavePolicy", "SaveStatus", "AutosaveScheduler"]

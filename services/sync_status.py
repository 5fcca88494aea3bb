"""Observable sync state for whatever UI sits on top of the engine."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional


logger = logging.getLogger(__name__)

IDLE = "idle"
SYNCING = "syncing"
SUCCESS = "success"
ERROR = "error"

_TRANSITIONS = {
    IDLE: {SYNCING},
    SYNCING: {SUCCESS, ERROR},
    SUCCESS: {IDLE},
    ERROR: {IDLE},
}


class InvalidTransition(RuntimeError):
    pass


@dataclass(frozen=True)
class SyncStatus:
    state: str = IDLE
    message: Optional[str] = None

    @property
    def is_syncing(self) -> bool:
        return self.state == SYNCING

    def __str__(self) -> str:
        if self.state == ERROR and self.message:
            return f"error({self.message})"
        return self.state


class SyncStatusPublisher:
    """``idle -> syncing -> success|error -> idle``; nothing else is allowed.

    Terminal states fall back to ``idle`` after ``reset_delay`` seconds on the
    running event loop.
    """

    def __init__(self, reset_delay: float = 2.0) -> None:
        self.reset_delay = reset_delay
        self._status = SyncStatus()
        self._observers: List[Callable[[SyncStatus], None]] = []
        self._reset_handle: Optional[asyncio.TimerHandle] = None

    @property
    def status(self) -> SyncStatus:
        return self._status

    def subscribe(self, callback: Callable[[SyncStatus], None]) -> None:
        if callback not in self._observers:
            self._observers.append(callback)

    def unsubscribe(self, callback: Callable[[SyncStatus], None]) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    # ------------------------------------------------------------------
    def begin(self) -> None:
        if self._status.state in (SUCCESS, ERROR):
            # A new pass started before the display delay ran out.
            self.settle()
        self._transition(SyncStatus(SYNCING))

    def succeed(self) -> None:
        self._transition(SyncStatus(SUCCESS))
        self._schedule_reset()

    def fail(self, message: str) -> None:
        self._transition(SyncStatus(ERROR, message))
        self._schedule_reset()

    def settle(self) -> None:
        """Return a terminal state to ``idle`` now."""

        self._cancel_reset()
        if self._status.state in (SUCCESS, ERROR):
            self._transition(SyncStatus(IDLE))

    # ------------------------------------------------------------------
    def _transition(self, new: SyncStatus) -> None:
        current = self._status.state
        if new.state not in _TRANSITIONS[current]:
            raise InvalidTransition(f"{current} -> {new.state}")
        self._status = new
        logger.debug("Sync status: %s", new)
        for observer in list(self._observers):
            try:
                observer(new)
            except Exception:
                logger.exception("Sync status observer failed")

    def _schedule_reset(self) -> None:
        self._cancel_reset()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to wait on: settle immediately.
            self.settle()
            return
        self._reset_handle = loop.call_later(self.reset_delay, self._on_reset_timer)

    def _on_reset_timer(self) -> None:
        self._reset_handle = None
        self.settle()

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None


__all__ = [
    "ERROR",
    "IDLE",
    "InvalidTransition",
    "SUCCESS",
    "SYNCING",
    "SyncStatus",
    "SyncStatusPublisher",
]

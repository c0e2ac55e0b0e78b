"""In-memory fixed-window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: one lock per key, so distinct keys never contend.
- Windows are created lazily and recycled on expiry rather than deleted.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator

from motion_proxy.adapters.rate_limit.base import AbstractWindowStore, RateWindow
from motion_proxy.core.errors import StorageAppError


@dataclass
class _WindowState:
    count: int
    window_start_ms: int


class InMemoryWindowStore(AbstractWindowStore):
    """Window store backed by a dict guarded by per-key locks.

    Expiry is lazy: a window is only checked (and recycled) when its key is
    touched again. ``query`` reports an expired window as 0 without
    replacing it.

    Important:
        This store is per-process only. If the API runs with multiple
        workers, each worker enforces its own independent limits.
    """

    def __init__(
        self,
        *,
        window_ms: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            window_ms: Window length in milliseconds.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If window_ms is invalid.
        """
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        self._window_ms = window_ms
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._windows: dict[str, _WindowState] = {}

    @property
    def window_ms(self) -> int:
        return self._window_ms

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _is_expired(self, state: _WindowState, now_ms: int) -> bool:
        return now_ms - state.window_start_ms >= self._window_ms

    @contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        """Hold the lock dedicated to ``key``, creating it on first use."""
        if not key:
            raise ValueError("key must be a non-empty string")

        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
        with lock:
            yield

    def _checked_state(self, key: str) -> _WindowState | None:
        """Return the stored state for ``key``, refusing corrupted entries."""
        state = self._windows.get(key)
        if state is None:
            return None
        if (
            not isinstance(state.count, int)
            or not isinstance(state.window_start_ms, int)
            or state.count < 0
        ):
            raise StorageAppError(
                code="rate_limit_storage_corrupted",
                message="Rate limit counter storage is corrupted",
                details={"context": {"count": repr(state.count)}},
            )
        return state

    def increment_window(self, key: str) -> RateWindow:
        with self._locked(key):
            now_ms = self._now_ms()
            state = self._checked_state(key)

            if state is None or self._is_expired(state, now_ms):
                state = _WindowState(count=1, window_start_ms=now_ms)
                self._windows[key] = state
            else:
                state.count += 1

            return RateWindow(key=key, count=state.count, window_start_ms=state.window_start_ms)

    def decrement(self, key: str) -> None:
        with self._locked(key):
            state = self._checked_state(key)
            if state is not None:
                state.count = max(0, state.count - 1)

    def reset(self, key: str) -> None:
        with self._locked(key):
            self._windows.pop(key, None)

    def reset_all(self) -> None:
        # Locks are kept so an in-flight holder and a newcomer never end up
        # with different locks for the same key.
        with self._registry_lock:
            self._windows.clear()

    def query(self, key: str) -> int:
        with self._locked(key):
            state = self._checked_state(key)
            if state is None or self._is_expired(state, self._now_ms()):
                return 0
            return state.count

    def snapshot(self, key: str) -> RateWindow | None:
        """Return the stored window for ``key`` as-is, expired or not."""
        with self._locked(key):
            state = self._checked_state(key)
            if state is None:
                return None
            return RateWindow(key=key, count=state.count, window_start_ms=state.window_start_ms)

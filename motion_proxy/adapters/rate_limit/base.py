"""Window store interface.

The rate limiter depends on this abstraction (not the concrete
implementation) so the storage backend can be swapped with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateWindow:
    """Snapshot of the counter for one rate-limit key.

    Attributes:
        key: Rate-limit identity (global sentinel or caller-derived).
        count: Requests observed inside the active window (never negative).
        window_start_ms: UNIX epoch milliseconds when the window began.
    """

    key: str
    count: int
    window_start_ms: int


class AbstractWindowStore(ABC):
    """Interface for fixed-window request counters.

    Implementations own every window they track. Operations on the same key
    must be atomic with respect to each other.
    """

    @property
    @abstractmethod
    def window_ms(self) -> int:
        """Length of one window in milliseconds."""
        raise NotImplementedError

    @abstractmethod
    def increment_window(self, key: str) -> RateWindow:
        """Count one request for ``key`` and return the resulting window.

        A missing or expired window is replaced by a fresh one with
        ``count=1`` starting now.
        """
        raise NotImplementedError

    def increment(self, key: str) -> int:
        """Count one request for ``key`` and return the resulting count."""
        return self.increment_window(key).count

    @abstractmethod
    def decrement(self, key: str) -> None:
        """Give back one request for ``key``; the count never drops below 0."""
        raise NotImplementedError

    @abstractmethod
    def reset(self, key: str) -> None:
        """Forget the window for ``key``."""
        raise NotImplementedError

    @abstractmethod
    def reset_all(self) -> None:
        """Forget every tracked window."""
        raise NotImplementedError

    @abstractmethod
    def query(self, key: str) -> int:
        """Return the current count for ``key`` (0 when absent or expired)."""
        raise NotImplementedError

    @abstractmethod
    def snapshot(self, key: str) -> RateWindow | None:
        """Return the stored window for ``key`` without expiring it, or None."""
        raise NotImplementedError

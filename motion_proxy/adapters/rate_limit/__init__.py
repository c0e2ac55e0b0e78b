"""Rate limit window storage.

The middleware talks to an abstract window store so the in-memory
implementation can later be replaced by a shared store without touching
the HTTP layer.
"""

from motion_proxy.adapters.rate_limit.base import AbstractWindowStore, RateWindow
from motion_proxy.adapters.rate_limit.in_memory import InMemoryWindowStore

__all__ = [
    "AbstractWindowStore",
    "InMemoryWindowStore",
    "RateWindow",
]

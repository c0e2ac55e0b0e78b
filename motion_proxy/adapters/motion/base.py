from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Sequence


@dataclass(frozen=True)
class UpstreamResponse:
    """Status and decoded body of one Motion API response.

    Attributes:
        status_code: HTTP status returned by Motion.
        payload: Decoded JSON body, raw text when the body is not JSON,
            or None when the body is empty.
    """

    status_code: int
    payload: Any

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


class AbstractMotionClient(ABC):
    """Interface for clients that forward calls to the Motion API."""

    @abstractmethod
    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | Sequence[tuple[str, Any]] | None = None,
        json: Any = None,
    ) -> UpstreamResponse:
        """Send one request to Motion and return its response.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE).
            path: Path relative to the Motion base URL (e.g. ``/tasks/abc``).
            params: Query parameters to send upstream (mapping or pairs).
            json: JSON body to send upstream, if any.

        Returns:
            UpstreamResponse: Status and payload, including error statuses.

        Raises:
            UpstreamAppError: If Motion cannot be reached or times out.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources held by the client."""
        return None

from __future__ import annotations

from typing import Any, Mapping, Protocol


class RemoteApiClient(Protocol):
    """Authenticated request/response access to the remote service.

    Implementations raise :class:`notifyhub.services.errors.RemoteRequestError`
    carrying the HTTP status and decoded body on failure.
    """

    async def request(
        self,
        method: str,
        path: str,
        body: Mapping[str, Any] | None = None,
        query: Mapping[str, Any] | None = None,
    ) -> Any: ...

# src/notifyhub/services/remote/client.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, MutableMapping
from urllib.parse import parse_qsl, urlsplit

import httpx

from notifyhub.config import const
from notifyhub.services.errors import RemoteRequestError

__all__ = ["GraphHttpClient", "split_link"]

_log = logging.getLogger("notifyhub.remote.client")


def split_link(link: str) -> tuple[str, dict[str, str]]:
    """Turn an absolute "next"/"delta" link into a (path, query) pair for :meth:`request`."""
    parts = urlsplit(link)
    return parts.path, dict(parse_qsl(parts.query, keep_blank_values=True))


@dataclass(slots=True)
class GraphHttpClient:
    """Async HTTP client for the remote change-notification API."""

    base_url: str = const.API_BASE
    access_token: str | None = None
    timeout: float = const.REQUEST_TIMEOUT
    # default headers applied to every request (can be overridden/extended)
    default_headers: dict[str, str] = field(default_factory=dict)
    transport: httpx.AsyncBaseTransport | None = None
    # one pooled client per instance, created on first use inside the running loop
    _http: httpx.AsyncClient | None = field(default=None, init=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Any, *, extra_headers: Mapping[str, str] | None = None) -> "GraphHttpClient":
        headers: dict[str, str] = {}
        if extra_headers:
            headers.update({str(k): str(v) for k, v in extra_headers.items()})
        return cls(
            base_url=getattr(settings, "api_base", None) or const.API_BASE,
            access_token=getattr(settings, "access_token", None),
            timeout=float(getattr(settings, "request_timeout", None) or const.REQUEST_TIMEOUT),
            default_headers=headers,
        )

    def _headers(self, extra: Mapping[str, str] | None) -> MutableMapping[str, str]:
        merged: dict[str, str] = {"Content-Type": "application/json", "Accept": "application/json"}
        merged.update(self.default_headers)
        if self.access_token:
            merged["Authorization"] = f"Bearer {self.access_token}"
        if extra:
            merged.update({str(k): str(v) for k, v in extra.items()})
        return merged

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def request(
        self,
        method: str,
        path: str,
        body: Mapping[str, Any] | None = None,
        query: Mapping[str, Any] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        method = method.upper()
        try:
            response = await self._client().request(
                method,
                path,
                params=dict(query) if query else None,
                json=dict(body) if body is not None else None,
                headers=self._headers(headers),
                timeout=timeout or self.timeout,
            )
        except httpx.RequestError as exc:
            raise RemoteRequestError(
                f"{method} {path} failed: {exc}",
                status_code=0,
                method=method,
                path=path,
            ) from exc

        content: Any | None = None
        if response.content:
            try:
                content = response.json()
            except ValueError:
                content = response.text

        if response.status_code >= 400:
            error_code: str | None = None
            message = response.text or f"HTTP {response.status_code}"
            if isinstance(content, Mapping):
                error = content.get("error")
                if isinstance(error, Mapping):
                    if isinstance(error.get("message"), str):
                        message = error["message"]
                    if isinstance(error.get("code"), str):
                        error_code = error["code"]
                else:
                    detail = content.get("detail") or content.get("message") or error
                    if isinstance(detail, str):
                        message = detail
            _log.debug(
                "remote request failed",
                extra={"method": method, "path": path, "status": response.status_code, "error_code": error_code},
            )
            raise RemoteRequestError(
                f"{method} {path}: {message}",
                status_code=response.status_code,
                method=method,
                path=path,
                error_code=error_code,
                payload=content,
            )

        return content if content is not None else {}

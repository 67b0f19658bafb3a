"""HTTP client for the automation backend (Appium).

The backend speaks WebDriver natively at its root (`/session`,
`/session/{id}/...`); the proxy's `/wd/hub` prefix is stripped before any
request goes out.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import aiohttp
from multidict import CIMultiDict

from hubproxy.capabilities import FinalCapabilities
from hubproxy.errors import (
    InvalidArgument,
    NoSuchSession,
    UnknownError,
    translate_transport_error,
)
from hubproxy.transport import (
    build_http_timeout,
    decode_json,
    end_to_end_headers,
    preview,
)
from hubproxy.utils import strip_hub_prefix

log = logging.getLogger("backend")

_TARGET = "Appium server"


@dataclass(frozen=True)
class BackendSession:
    session_id: str
    body: bytes
    content_type: str = "application/json"


@dataclass(frozen=True)
class BackendResponse:
    status: int
    body: bytes
    headers: CIMultiDict


def extract_session_id(data: object) -> str | None:
    """Session id from a new-session response, W3C or legacy shape."""
    if not isinstance(data, dict):
        return None
    session_id = data.get("sessionId")
    if not session_id:
        value = data.get("value")
        if isinstance(value, dict):
            session_id = value.get("sessionId")
    if isinstance(session_id, str) and session_id:
        return session_id
    return None


class BackendSessionClient:
    def __init__(
        self,
        server_url: str,
        *,
        create_timeout_s: float = 30.0,
        command_timeout_s: float = 300.0,
        health_timeout_s: float = 5.0,
    ):
        self.server_url = server_url.rstrip("/")
        self.create_timeout_s = create_timeout_s
        self.command_timeout_s = command_timeout_s
        self.health_timeout_s = health_timeout_s

    async def check_health(
        self, session: aiohttp.ClientSession, backend_url: str | None = None
    ) -> None:
        url = f"{(backend_url or self.server_url).rstrip('/')}/status"
        try:
            async with session.get(
                url, timeout=build_http_timeout(total_s=self.health_timeout_s)
            ) as resp:
                status = resp.status
                raw = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NoSuchSession(
                f"{_TARGET} is not running or unreachable at {url} "
                f"({type(e).__name__}: {e})",
                cause=e,
            ) from e

        if status >= 400:
            raise NoSuchSession(f"{_TARGET} unhealthy: HTTP {status}: {preview(raw)}")
        data = decode_json(raw)
        value = data.get("value") if isinstance(data, dict) else None
        if isinstance(value, dict) and value.get("ready") is False:
            message = value.get("message") or "not ready"
            raise NoSuchSession(f"{_TARGET} not ready: {message}")

    async def create_session(
        self, session: aiohttp.ClientSession, capabilities: FinalCapabilities
    ) -> BackendSession:
        url = f"{self.server_url}/session"
        log.info(f"Creating session on {_TARGET}: {self.server_url}")
        try:
            async with session.post(
                url,
                json=capabilities.to_payload(),
                headers={"Content-Type": "application/json"},
                timeout=build_http_timeout(total_s=self.create_timeout_s),
            ) as resp:
                status = resp.status
                raw = await resp.read()
                content_type = resp.headers.get("Content-Type", "application/json")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise translate_transport_error(
                e, target=_TARGET, action="session creation"
            ) from e

        if status >= 500:
            raise UnknownError(f"{_TARGET} internal error: {preview(raw)}")
        if status >= 400:
            raise InvalidArgument(f"{_TARGET} bad request: {preview(raw)}")

        session_id = extract_session_id(decode_json(raw))
        if not session_id:
            raise UnknownError(
                f"{_TARGET} response did not contain a valid session ID: {preview(raw)!r}"
            )
        return BackendSession(session_id=session_id, body=raw, content_type=content_type)

    async def delete_session(
        self, session: aiohttp.ClientSession, backend_url: str, session_id: str
    ) -> bool:
        """Best-effort session teardown on the backend.

        Returns True when the backend confirmed the delete. A missing session
        or an unreachable backend is logged and reported as False.
        """
        url = f"{backend_url.rstrip('/')}/session/{session_id}"
        try:
            async with session.delete(
                url, timeout=build_http_timeout(total_s=self.command_timeout_s)
            ) as resp:
                status = resp.status
                raw = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.warning(
                f"Backend delete for session {session_id} failed: "
                f"{type(e).__name__}: {e}"
            )
            return False

        if status == 404:
            log.info(f"Session {session_id} was already gone on the backend")
            return False
        if status >= 400:
            log.warning(
                f"Backend delete for session {session_id} returned HTTP {status}: "
                f"{preview(raw)}"
            )
            return False
        return True

    async def forward(
        self,
        session: aiohttp.ClientSession,
        backend_url: str,
        session_id: str,
        method: str,
        path: str,
        body: bytes | None = None,
        headers=None,
    ) -> BackendResponse:
        """Relay one WebDriver command and return the backend's answer untouched.

        `path` is the hub-prefixed request path (query string included).
        Backend error responses are returned like any other; only transport
        failures raise.
        """
        backend_path = strip_hub_prefix(path)
        url = f"{backend_url.rstrip('/')}{backend_path}"
        out_headers = end_to_end_headers(headers or {})
        if body and "Content-Type" not in out_headers:
            out_headers["Content-Type"] = "application/json"
        # Otherwise aiohttp advertises gzip on the client's behalf.
        out_headers.setdefault("Accept-Encoding", "identity")

        log.debug(f"Forwarding {method} {path} to {url} (session {session_id})")
        try:
            async with session.request(
                method,
                url,
                data=body or None,
                headers=out_headers,
                allow_redirects=False,
                timeout=build_http_timeout(total_s=self.command_timeout_s),
            ) as resp:
                raw = await resp.read()
                return BackendResponse(
                    status=resp.status,
                    body=raw,
                    headers=end_to_end_headers(resp.headers),
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise translate_transport_error(
                e, target=_TARGET, action=f"command {method} {backend_path}"
            ) from e

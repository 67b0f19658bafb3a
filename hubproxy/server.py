"""aiohttp front end for the hub proxy.

Exposes:
- POST   /wd/hub/session                    create a session
- DELETE /wd/hub/session/{id}               delete a session
- *      /wd/hub/session/{id}/{command...}  forwarded verbatim to the backend
- GET    /wd/hub/status                     hub readiness
- GET    /health, /sessions, /sessions/{id}; POST /sessions/reap (debug)
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone

from aiohttp import web

from hubproxy.errors import (
    ErrorClassification,
    InvalidArgument,
    ProxyError,
    UnknownError,
    envelope_for,
    error_envelope,
)
from hubproxy.orchestrator import SessionOrchestrator
from hubproxy.reaper import SessionReaper

log = logging.getLogger("server")

HUB_PREFIX = "/wd/hub"

ORCHESTRATOR_KEY = web.AppKey("orchestrator", SessionOrchestrator)
REAPER_KEY = web.AppKey("reaper", SessionReaper)


def _error_response(error: ProxyError, *, include_stacktrace: bool) -> web.Response:
    return web.json_response(
        envelope_for(error, include_stacktrace=include_stacktrace), status=500
    )


def _make_error_middleware(include_stacktrace: bool):
    @web.middleware
    async def error_middleware(request: web.Request, handler):
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except ProxyError as e:
            log.error(f"{request.method} {request.path} failed: {e}")
            return _error_response(e, include_stacktrace=include_stacktrace)
        except Exception as e:
            log.exception(f"Unexpected error handling {request.method} {request.path}")
            wrapped = UnknownError(f"{type(e).__name__}: {e}", cause=e)
            return _error_response(wrapped, include_stacktrace=include_stacktrace)

    return error_middleware


def build_app(
    orchestrator: SessionOrchestrator,
    *,
    reaper: SessionReaper | None = None,
    include_stacktrace: bool = True,
) -> web.Application:
    app = web.Application(middlewares=[_make_error_middleware(include_stacktrace)])
    app[ORCHESTRATOR_KEY] = orchestrator
    if reaper is not None:
        app[REAPER_KEY] = reaper

    async def create_session(request: web.Request) -> web.Response:
        raw = await request.read()
        try:
            payload = json.loads(raw) if raw else None
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidArgument(f"Session request body is not valid JSON: {e}") from e
        log.info("Received session creation request")
        created = await orchestrator.create_session(payload)
        return web.Response(
            status=200,
            body=created.body,
            headers={"Content-Type": created.content_type},
        )

    async def delete_session(request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        log.info(f"Received session deletion request for: {session_id}")
        result = await orchestrator.delete_session(session_id)
        return web.json_response(result)

    async def forward_command(request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        body = await request.read() if request.can_read_body else None
        result = await orchestrator.forward_command(
            session_id,
            request.method,
            request.raw_path,
            body,
            request.headers,
        )
        return web.Response(status=result.status, body=result.body, headers=result.headers)

    async def hub_status(request: web.Request) -> web.Response:
        return web.json_response(
            {"value": {"ready": True, "message": "hubproxy is ready to accept sessions"}}
        )

    async def health(request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "healthy",
                "service": "hubproxy",
                "sessions": len(orchestrator.registry),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    async def list_sessions(request: web.Request) -> web.Response:
        sessions = [r.to_dict() for r in orchestrator.list_sessions()]
        return web.json_response({"sessions": sessions})

    async def session_info(request: web.Request) -> web.Response:
        record = orchestrator.get_session(request.match_info["session_id"])
        if record is None:
            return web.json_response({"error": "Session not found"}, status=404)
        return web.json_response(record.to_dict())

    async def reap_sessions(request: web.Request) -> web.Response:
        raw_hours = request.query.get("maxAgeHours")
        if raw_hours is None:
            max_age = reaper.max_age if reaper is not None else timedelta(hours=24)
        else:
            try:
                max_age = timedelta(hours=float(raw_hours))
            except (ValueError, OverflowError):
                raise InvalidArgument(
                    f"maxAgeHours must be a finite number, got {raw_hours!r}"
                ) from None
        removed = orchestrator.reap_sessions(max_age)
        return web.json_response({"reaped": [r.session_id for r in removed]})

    async def not_found(request: web.Request) -> web.Response:
        envelope = error_envelope(
            ErrorClassification.NO_SUCH_ELEMENT,
            f"Route not found: {request.method} {request.path_qs}",
        )
        return web.json_response(envelope, status=404)

    app.router.add_get("/health", health)
    app.router.add_get("/sessions", list_sessions)
    app.router.add_post("/sessions/reap", reap_sessions)
    app.router.add_get("/sessions/{session_id}", session_info)
    app.router.add_get(f"{HUB_PREFIX}/status", hub_status)
    app.router.add_post(f"{HUB_PREFIX}/session", create_session)
    app.router.add_delete(f"{HUB_PREFIX}/session/{{session_id}}", delete_session)
    app.router.add_route(
        "*", f"{HUB_PREFIX}/session/{{session_id}}/{{command:.*}}", forward_command
    )
    # Must stay last: anything unmatched gets a WebDriver-shaped 404.
    app.router.add_route("*", "/{tail:.*}", not_found)

    async def on_startup(app: web.Application) -> None:
        if REAPER_KEY in app:
            app[REAPER_KEY].start()

    async def on_cleanup(app: web.Application) -> None:
        if REAPER_KEY in app:
            await app[REAPER_KEY].stop()
        await app[ORCHESTRATOR_KEY].close()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


async def start_proxy_server(
    app: web.Application,
    *,
    host: str = "0.0.0.0",
    port: int = 3002,
) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host=host, port=port)
    await site.start()
    return runner

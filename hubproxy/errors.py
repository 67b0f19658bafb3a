"""Proxy error taxonomy and WebDriver error translation.

Errors are classified once, where they happen. Clients turn aiohttp/asyncio
failures into a typed `ProxyError` with `translate_transport_error`; the HTTP
layer only renders `error_envelope` from whatever it receives.
"""

from __future__ import annotations

import asyncio
import enum
import traceback

import aiohttp


class ErrorClassification(enum.Enum):
    """WebDriver error classes the proxy can report, with their legacy codes."""

    NO_SUCH_SESSION = (6, "no such session")
    NO_SUCH_ELEMENT = (7, "no such element")
    UNKNOWN_ERROR = (13, "unknown error")
    TIMEOUT = (21, "timeout")
    INVALID_ARGUMENT = (400, "invalid argument")

    @property
    def code(self) -> int:
        return self.value[0]

    @property
    def error(self) -> str:
        return self.value[1]


class ProxyError(RuntimeError):
    """Base class for failures the proxy reports in its own envelope."""

    classification = ErrorClassification.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        *,
        state: str | None = None,
        cause: BaseException | None = None,
    ):
        self.message = message
        self.state = state
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class InvalidArgument(ProxyError):
    """Malformed or incomplete request data."""

    classification = ErrorClassification.INVALID_ARGUMENT


class NoSuchSession(ProxyError):
    """Unknown session id, or a collaborator that cannot be reached."""

    classification = ErrorClassification.NO_SUCH_SESSION


class ProxyTimeout(ProxyError):
    """A bounded wait was exceeded."""

    classification = ErrorClassification.TIMEOUT


class UnknownError(ProxyError):
    classification = ErrorClassification.UNKNOWN_ERROR


def translate_transport_error(
    exc: BaseException, *, target: str, action: str
) -> ProxyError:
    """Classify a transport-level failure talking to `target`.

    Connection failures mean the collaborator is unavailable, timeouts map to
    TIMEOUT, and anything else (truncated or malformed responses included) is
    an unknown error.
    """

    if isinstance(exc, ProxyError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return ProxyTimeout(f"{target} request timed out during {action}", cause=exc)
    if isinstance(exc, (aiohttp.ClientConnectorError, ConnectionRefusedError)):
        return NoSuchSession(f"{target} unavailable: {exc}", cause=exc)
    if isinstance(exc, aiohttp.ServerDisconnectedError):
        return UnknownError(
            f"{target} closed the connection during {action}", cause=exc
        )
    if isinstance(exc, aiohttp.ClientError):
        return UnknownError(
            f"{target} error during {action}: {type(exc).__name__}: {exc}",
            cause=exc,
        )
    return UnknownError(f"{target} error during {action}: {exc}", cause=exc)


def error_envelope(
    classification: ErrorClassification,
    message: str,
    *,
    stacktrace: str | None = None,
) -> dict:
    value: dict[str, object] = {"error": classification.error, "message": message}
    if stacktrace:
        value["stacktrace"] = stacktrace
    return {"status": classification.code, "value": value}


def envelope_for(error: ProxyError, *, include_stacktrace: bool = False) -> dict:
    stacktrace = None
    if include_stacktrace:
        source = error.cause or error
        stacktrace = "".join(
            traceback.format_exception(type(source), source, source.__traceback__)
        ).strip()
    return error_envelope(error.classification, error.message, stacktrace=stacktrace)

"""HTTP plumbing shared by the collaborator clients."""

from __future__ import annotations

import json

import aiohttp
from multidict import CIMultiDict

# Connection-level headers that must not cross the proxy (RFC 9110 7.6.1),
# plus the framing headers aiohttp recomputes for the outgoing message.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "content-length",
        "host",
    }
)


def build_http_timeout(*, total_s: float | None) -> aiohttp.ClientTimeout:
    if not total_s:
        return aiohttp.ClientTimeout(total=None)
    return aiohttp.ClientTimeout(total=float(total_s))


def end_to_end_headers(headers) -> CIMultiDict:
    out: CIMultiDict = CIMultiDict()
    for key, value in headers.items():
        if key.lower() in HOP_BY_HOP_HEADERS:
            continue
        out.add(key, value)
    return out


def decode_json(raw: bytes) -> object | None:
    if not raw:
        return None
    try:
        return json.loads(raw.decode("utf-8", errors="replace"))
    except json.JSONDecodeError:
        return None


def preview(raw: bytes | str, limit: int = 300) -> str:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    text = text.strip()
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def new_client_session(*, relay: bool = False) -> aiohttp.ClientSession:
    # Relayed bodies go back to the client as-is, so a relay session leaves
    # compressed payloads compressed.
    return aiohttp.ClientSession(auto_decompress=not relay)

"""HTTP client for the provisioning collaborator (simulator service)."""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from hubproxy.capabilities import ProvisionedTarget
from hubproxy.errors import NoSuchSession, UnknownError, translate_transport_error
from hubproxy.transport import build_http_timeout, decode_json, preview

log = logging.getLogger("provisioning")

_TARGET = "Simulator service"


class ProvisioningClient:
    """Turns (device, platform version, app) into a ready simulator target."""

    def __init__(
        self,
        server_url: str,
        *,
        provision_path: str = "/api/simulate",
        health_path: str = "",
        timeout_s: float = 600.0,
        health_timeout_s: float = 5.0,
    ):
        self.server_url = server_url.rstrip("/")
        self.provision_path = provision_path
        self.health_path = health_path
        self.timeout_s = timeout_s
        self.health_timeout_s = health_timeout_s

    def _make_url(self, path: str) -> str:
        return f"{self.server_url}{path}"

    async def check_health(self, session: aiohttp.ClientSession) -> None:
        """Probe the collaborator before handing it a long provisioning job.

        Does nothing when no health path is configured.
        """
        if not self.health_path:
            return
        url = self._make_url(self.health_path)
        try:
            async with session.get(
                url, timeout=build_http_timeout(total_s=self.health_timeout_s)
            ) as resp:
                if resp.status < 400:
                    return
                detail = preview(await resp.text()) or resp.reason
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NoSuchSession(
                f"{_TARGET} unavailable: health check failed ({type(e).__name__}: {e})",
                cause=e,
            ) from e
        raise NoSuchSession(f"{_TARGET} unhealthy: HTTP {resp.status}: {detail}")

    async def provision(
        self,
        session: aiohttp.ClientSession,
        device_name: str,
        platform_version: str,
        application_id: str,
    ) -> ProvisionedTarget:
        url = self._make_url(self.provision_path)
        payload = {
            "deviceName": device_name,
            "platformVersion": platform_version,
            "applicationId": application_id,
            # Older simulator services read `appId`.
            "appId": application_id,
        }
        log.info(
            f"Provisioning {device_name} ({platform_version}) with app {application_id}"
        )
        try:
            async with session.post(
                url, json=payload, timeout=build_http_timeout(total_s=self.timeout_s)
            ) as resp:
                raw = await resp.read()
                status = resp.status
                reason = resp.reason
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise translate_transport_error(
                e, target=_TARGET, action="provisioning"
            ) from e

        if status >= 400:
            detail = _error_message(raw) or reason or "no detail"
            raise UnknownError(f"{_TARGET} HTTP {status}: {detail}")

        data = decode_json(raw)
        if not isinstance(data, dict):
            raise UnknownError(
                f"{_TARGET} returned a non-JSON response: {preview(raw)!r}"
            )

        device_identifier = data.get("deviceIdentifier") or data.get("udid")
        bundle_identifier = data.get("applicationBundleId") or data.get("bundleId")
        if not isinstance(device_identifier, str) or not device_identifier:
            raise UnknownError(f"{_TARGET} response is missing the device identifier")
        if not isinstance(bundle_identifier, str) or not bundle_identifier:
            raise UnknownError(f"{_TARGET} response is missing the bundle identifier")

        log.info(f"Provisioned {device_identifier} running {bundle_identifier}")
        return ProvisionedTarget(
            device_identifier=device_identifier,
            bundle_identifier=bundle_identifier,
        )


def _error_message(raw: bytes) -> str:
    """Pull a readable message out of a collaborator error body."""
    data = decode_json(raw)
    if isinstance(data, dict):
        for key in ("message", "error", "details"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return preview(raw)

"""W3C capability negotiation.

Inbound payloads look like::

    {"capabilities": {"firstMatch": [{"appium:appId": "...",
                                      "appium:deviceName": "iPhone 16",
                                      "appium:platformVersion": "18.5",
                                      "appium:wdaLaunchTimeout": 30000}]}}

The application id, device name and platform version are pulled out and sent
to the provisioning collaborator. Everything else passes through to the
backend, with the concrete simulator UDID and app bundle id added.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from hubproxy.errors import InvalidArgument

# Accepted spellings per extracted field, vendor-prefixed name first.
APP_ID_KEYS = ("appium:appId", "appium:applicationId", "appId", "applicationId")
DEVICE_NAME_KEYS = ("appium:deviceName", "deviceName")
PLATFORM_VERSION_KEYS = ("appium:platformVersion", "platformVersion")

EXTRACTED_KEYS = frozenset(APP_ID_KEYS + DEVICE_NAME_KEYS + PLATFORM_VERSION_KEYS)

UDID_KEY = "appium:udid"
BUNDLE_ID_KEY = "appium:bundleId"
PLATFORM_NAME_KEY = "platformName"
AUTOMATION_NAME_KEY = "appium:automationName"


@dataclass(frozen=True)
class ProvisioningParams:
    device_name: str
    platform_version: str
    application_id: str


@dataclass(frozen=True)
class ProvisionedTarget:
    device_identifier: str
    bundle_identifier: str


@dataclass(frozen=True)
class RawCapabilities:
    """Capabilities as the client sent them (merged first-match entry)."""

    values: Mapping[str, object]


@dataclass(frozen=True)
class FinalCapabilities:
    """Capabilities rewritten for the backend."""

    values: Mapping[str, object]

    def to_payload(self) -> dict:
        return {"capabilities": {"firstMatch": [dict(self.values)]}}


def _first_value(entry: Mapping[str, object], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = entry.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise InvalidArgument(
                f"Capability {key} must be a string, got {type(value).__name__}"
            )
        text = value.strip()
        if text:
            return text
    return None


def parse_raw(payload: object) -> RawCapabilities:
    """Validate the W3C envelope and return the merged first-match entry.

    `alwaysMatch` (when present) is merged under `firstMatch[0]`; keys from
    the first-match entry win.
    """

    if not isinstance(payload, dict):
        raise InvalidArgument("Session request body must be a JSON object")
    caps = payload.get("capabilities")
    if not isinstance(caps, dict):
        raise InvalidArgument("Session request is missing the 'capabilities' object")
    first_match = caps.get("firstMatch")
    if not isinstance(first_match, list) or not first_match:
        raise InvalidArgument(
            "Session request must contain at least one capabilities.firstMatch entry"
        )
    entry = first_match[0]
    if not isinstance(entry, dict):
        raise InvalidArgument("capabilities.firstMatch[0] must be an object")

    always_match = caps.get("alwaysMatch")
    if always_match is not None and not isinstance(always_match, dict):
        raise InvalidArgument("capabilities.alwaysMatch must be an object")

    merged: dict[str, object] = dict(always_match or {})
    merged.update(entry)
    return RawCapabilities(values=merged)


def negotiate(payload: object) -> tuple[ProvisioningParams, RawCapabilities]:
    """Split a session request into provisioning parameters and passthrough caps.

    Raises InvalidArgument before anything else happens if a required field is
    missing. The input payload is never modified.
    """

    raw = parse_raw(payload)

    app_id = _first_value(raw.values, APP_ID_KEYS)
    device_name = _first_value(raw.values, DEVICE_NAME_KEYS)
    platform_version = _first_value(raw.values, PLATFORM_VERSION_KEYS)

    missing = [
        name
        for name, value in (
            ("appId", app_id),
            ("deviceName", device_name),
            ("platformVersion", platform_version),
        )
        if not value
    ]
    if missing:
        raise InvalidArgument(
            "Missing required capabilities: " + ", ".join(missing)
        )

    passthrough = {k: v for k, v in raw.values.items() if k not in EXTRACTED_KEYS}
    params = ProvisioningParams(
        device_name=device_name,
        platform_version=platform_version,
        application_id=app_id,
    )
    return params, RawCapabilities(values=passthrough)


def compose_final(
    passthrough: RawCapabilities,
    target: ProvisionedTarget,
    *,
    default_platform_name: str | None = None,
    default_automation_name: str | None = None,
) -> FinalCapabilities:
    values: dict[str, object] = dict(passthrough.values)
    if default_platform_name:
        values.setdefault(PLATFORM_NAME_KEY, default_platform_name)
    if default_automation_name and "automationName" not in values:
        values.setdefault(AUTOMATION_NAME_KEY, default_automation_name)
    values[UDID_KEY] = target.device_identifier
    values[BUNDLE_ID_KEY] = target.bundle_identifier
    return FinalCapabilities(values=values)

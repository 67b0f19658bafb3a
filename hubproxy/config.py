from __future__ import annotations

import os
from dataclasses import dataclass

from hubproxy.utils import parse_bool


@dataclass(frozen=True)
class ProxyConfig:
    host: str = "0.0.0.0"
    port: int = 3002

    # Provisioning collaborator (simulator service). Provisioning boots a
    # device and installs an app, so its bound is much longer than the
    # backend's.
    provisioner_url: str = "http://localhost:3001"
    provision_path: str = "/api/simulate"
    provision_health_path: str = ""
    provision_timeout_s: float = 600.0

    # Automation backend (Appium).
    backend_url: str = "http://localhost:4723"
    backend_create_timeout_s: float = 30.0
    backend_command_timeout_s: float = 300.0

    health_checks: bool = True
    health_check_timeout_s: float = 5.0

    default_platform_name: str = "iOS"
    default_automation_name: str = "XCUITest"

    # 0 disables the automatic sweep; POST /sessions/reap still works.
    reap_interval_s: float = 0.0
    reap_max_age_h: float = 24.0

    include_stacktrace: bool = True
    log_level: str = "INFO"


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip()


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _url(name: str, default: str) -> str:
    return (_env_str(name, default) or default).rstrip("/")


def _path(name: str, default: str) -> str:
    path = _env_str(name, default)
    if path and not path.startswith("/"):
        path = f"/{path}"
    return path


def get_proxy_config() -> ProxyConfig:
    """Resolve the proxy configuration from the environment.

    Call `load_env()` first if a .env file should be honoured.
    """
    return ProxyConfig(
        host=_env_str("HUBPROXY_HOST", "0.0.0.0") or "0.0.0.0",
        port=_env_int("HUBPROXY_PORT", 3002),
        provisioner_url=_url("SIMULATOR_SERVICE_URL", "http://localhost:3001"),
        provision_path=_path("HUBPROXY_PROVISION_PATH", "/api/simulate"),
        provision_health_path=_path("HUBPROXY_PROVISION_HEALTH_PATH", ""),
        provision_timeout_s=_env_float("HUBPROXY_PROVISION_TIMEOUT_S", 600.0),
        backend_url=_url("APPIUM_SERVER_URL", "http://localhost:4723"),
        backend_create_timeout_s=_env_float("HUBPROXY_BACKEND_CREATE_TIMEOUT_S", 30.0),
        backend_command_timeout_s=_env_float(
            "HUBPROXY_BACKEND_COMMAND_TIMEOUT_S", 300.0
        ),
        health_checks=parse_bool(os.getenv("HUBPROXY_HEALTH_CHECKS"), default=True),
        health_check_timeout_s=_env_float("HUBPROXY_HEALTH_CHECK_TIMEOUT_S", 5.0),
        default_platform_name=_env_str("HUBPROXY_DEFAULT_PLATFORM_NAME", "iOS"),
        default_automation_name=_env_str(
            "HUBPROXY_DEFAULT_AUTOMATION_NAME", "XCUITest"
        ),
        reap_interval_s=_env_float("HUBPROXY_REAP_INTERVAL_S", 0.0),
        reap_max_age_h=_env_float("HUBPROXY_REAP_MAX_AGE_H", 24.0),
        include_stacktrace=parse_bool(
            os.getenv("HUBPROXY_INCLUDE_STACKTRACE"), default=True
        ),
        log_level=(_env_str("HUBPROXY_LOG_LEVEL", "INFO") or "INFO").upper(),
    )

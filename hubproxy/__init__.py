"""WebDriver hub proxy for provisioned simulators."""

from hubproxy.config import ProxyConfig, get_proxy_config
from hubproxy.orchestrator import SessionOrchestrator
from hubproxy.registry import SessionRecord, SessionRegistry
from hubproxy.server import build_app, start_proxy_server

__all__ = [
    "ProxyConfig",
    "SessionOrchestrator",
    "SessionRecord",
    "SessionRegistry",
    "build_app",
    "get_proxy_config",
    "start_proxy_server",
]

#!/usr/bin/env python3
"""
hubproxy - WebDriver hub in front of simulator provisioning and Appium

Clients talk to http://HOST:PORT/wd/hub as they would to any WebDriver hub.
On new-session requests the proxy asks the simulator service for a booted
device with the requested app installed, opens an Appium session against it
and remembers which backend owns the session. Every later command for that
session is relayed to the same backend.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from hubproxy.config import ProxyConfig, get_proxy_config
from hubproxy.orchestrator import SessionOrchestrator
from hubproxy.reaper import SessionReaper
from hubproxy.registry import SessionRegistry
from hubproxy.server import build_app, start_proxy_server
from hubproxy.utils import load_env

log = logging.getLogger("bridge")


async def serve(config: ProxyConfig) -> None:
    orchestrator = SessionOrchestrator.from_config(config, SessionRegistry())
    reaper = SessionReaper(
        orchestrator,
        interval_s=config.reap_interval_s,
        max_age=timedelta(hours=config.reap_max_age_h),
    )
    app = build_app(
        orchestrator, reaper=reaper, include_stacktrace=config.include_stacktrace
    )

    runner = await start_proxy_server(app, host=config.host, port=config.port)
    log.info(f"Proxy Service running on {config.host}:{config.port}")
    log.info(f"Hub endpoint available at http://{config.host}:{config.port}/wd/hub")
    log.info(f"Provisioning via {config.provisioner_url}{config.provision_path}")
    log.info(f"Automation backend at {config.backend_url}")

    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await runner.cleanup()


def main() -> None:
    load_env()
    config = get_proxy_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        log.info("Shutting down...")


if __name__ == "__main__":
    main()

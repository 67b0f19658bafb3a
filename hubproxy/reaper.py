"""Periodic age-based session sweep.

Off unless an interval is configured; reaping only drops registry entries and
never talks to the backend.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from hubproxy.orchestrator import SessionOrchestrator

log = logging.getLogger("reaper")


class SessionReaper:
    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        *,
        interval_s: float,
        max_age: timedelta,
    ):
        self._orchestrator = orchestrator
        self.interval_s = interval_s
        self.max_age = max_age
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self) -> list[str]:
        removed = self._orchestrator.reap_sessions(self.max_age)
        return [r.session_id for r in removed]

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                reaped = self.sweep()
            except Exception:
                log.exception("Session sweep failed")
                continue
            if reaped:
                log.info(f"Reaped {len(reaped)} expired session(s)")

    def start(self) -> None:
        if self.interval_s <= 0 or self.running:
            return
        log.info(
            f"Reaping sessions older than {self.max_age} every {self.interval_s}s"
        )
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

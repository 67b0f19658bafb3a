"""In-memory session registry.

The registry is the only owner of SessionRecord instances; everything else
looks sessions up by id on each request.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

log = logging.getLogger("registry")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionRecord:
    """Routing entry for a live backend session.

    Immutable; removed from the registry once the backend session ends.
    """

    session_id: str
    backend_url: str
    device_identifier: str
    bundle_identifier: str
    created_at: datetime = field(default_factory=_utcnow)

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or _utcnow()) - self.created_at

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "backendUrl": self.backend_url,
            "deviceIdentifier": self.device_identifier,
            "bundleIdentifier": self.bundle_identifier,
            "createdAt": self.created_at.isoformat(),
        }


class SessionRegistry:
    """Thread-safe session id -> SessionRecord map.

    Each operation holds the lock only for the dict access itself. Listing and
    reaping copy the entries first, so a concurrent remove either happened
    before the snapshot or after it, never halfway through.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[str, SessionRecord] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._records

    def put(self, record: SessionRecord) -> None:
        with self._lock:
            replaced = record.session_id in self._records
            self._records[record.session_id] = record
        if replaced:
            log.warning(f"Replaced existing registry entry for {record.session_id}")

    def get(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            return self._records.get(session_id)

    def remove(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            return self._records.pop(session_id, None)

    def list_all(self) -> list[SessionRecord]:
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.created_at)

    def reap(
        self, max_age: timedelta, *, now: datetime | None = None
    ) -> list[SessionRecord]:
        """Remove every record older than `max_age`.

        A record whose age equals `max_age` exactly is kept.
        """

        now = now or _utcnow()
        with self._lock:
            expired = [
                sid for sid, rec in self._records.items() if rec.age(now) > max_age
            ]
            removed = [self._records.pop(sid) for sid in expired]
        for rec in removed:
            log.info(f"Reaped expired session: {rec.session_id}")
        return removed

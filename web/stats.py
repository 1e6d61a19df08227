"""
Request statistics: per-client sessions and a daily JSON stats file.

The gateway records every HTTP request against a client session keyed by
client IP and user agent. Sessions are created on a client's first request
and evicted after a period of inactivity. Periodically the active sessions
are merged into a JSON file holding one entry per calendar day (UTC).

The tracker is an ordinary object owned by the app (app.state.tracker) and
handed to whoever needs it; nothing here is module-level state. It is only
touched from the event loop, so it needs no locking.

Stats file layout:
    {
      "daily": {
        "2026-10-19": {
          "date": "2026-10-19",
          "totalRequests": 12,
          "uniqueIPs": ["203.0.113.5"],
          "sessions": [ {id, ip, startTime, endTime, requestCount, requests} ]
        }
      }
    }
"""

import json
import logging
import os
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

_log = logging.getLogger(__name__)

# Request records kept per client session; request_count keeps counting past it.
MAX_REQUESTS_PER_SESSION = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    """Millisecond ISO-8601 timestamp with a trailing Z, e.g. 2026-10-19T08:00:00.000Z."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def date_key(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).date().isoformat()


# ---------------------------------------------------------------------------
# Stats file
# ---------------------------------------------------------------------------


class StatsStore:
    """
    Whole-file JSON persistence for daily statistics.

    Every write replaces the file atomically (write to a sibling temp file,
    then rename), so readers never see a half-written document.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read(self) -> dict:
        """
        Load the stats document.

        A missing file yields an empty document. An unreadable or corrupt
        file is logged and also yields an empty document; the next flush
        overwrites it.
        """
        if not self.path.exists():
            return {"daily": {}}
        try:
            with self.path.open(encoding="utf-8") as fh:
                stats = json.load(fh)
        except (OSError, ValueError) as exc:
            _log.warning("Could not read stats file %s: %s", self.path, exc)
            return {"daily": {}}
        if not isinstance(stats, dict):
            _log.warning("Stats file %s does not hold an object, ignoring it", self.path)
            return {"daily": {}}
        if not isinstance(stats.get("daily"), dict):
            stats["daily"] = {}
        return stats

    def write(self, stats: dict) -> None:
        """Replace the stats file with the given document."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(stats, fh, indent=2)
        os.replace(tmp_path, self.path)
        _log.debug("Stats saved to %s", self.path)


# ---------------------------------------------------------------------------
# Client sessions
# ---------------------------------------------------------------------------


@dataclass
class ClientSession:
    """
    Activity of one client (IP + user agent) since its first request.

    Attributes:
        id:            Unique session identifier.
        ip:            Client IP address.
        user_agent:    Client User-Agent header.
        start_time:    First request time.
        last_activity: Most recent request time.
        request_count: Number of requests seen.
        requests:      The most recent request records: method, url,
                       timestamp, and fen for move requests.
    """

    id: str
    ip: str
    user_agent: str
    start_time: datetime
    last_activity: datetime
    request_count: int = 0
    requests: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ip": self.ip,
            "userAgent": self.user_agent,
            "startTime": isoformat(self.start_time),
            "lastActivity": isoformat(self.last_activity),
            "requestCount": self.request_count,
            "requests": [dict(record) for record in self.requests],
        }


class SessionTracker:
    """
    In-memory client sessions with idle eviction and periodic persistence.

    Attributes:
        store:        StatsStore the sessions are flushed to.
        idle_timeout: Seconds without a request after which a session ends.
        max_requests: Request records kept per session, newest last.
    """

    def __init__(
        self,
        store: StatsStore,
        idle_timeout: float = 30 * 60.0,
        clock: Callable[[], datetime] = utcnow,
        max_requests: int = MAX_REQUESTS_PER_SESSION,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.store = store
        self.idle_timeout = idle_timeout
        self.max_requests = max_requests
        self._clock = clock
        self._sessions: dict[str, ClientSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def active(self) -> list[ClientSession]:
        return list(self._sessions.values())

    def record(self, ip: str, user_agent: str, method: str, url: str) -> dict:
        """
        Count one request against the client's session.

        Returns:
            The request record that was appended. Callers may add fields to
            it (the move endpoint adds the FEN).
        """
        now = self._clock()
        key = f"{ip}_{user_agent}"
        session = self._sessions.get(key)
        if session is None:
            session = ClientSession(
                id=f"{ip}_{int(now.timestamp() * 1000)}_{secrets.token_hex(5)}",
                ip=ip,
                user_agent=user_agent,
                start_time=now,
                last_activity=now,
            )
            self._sessions[key] = session
            _log.info("New client session %s", session.id)

        session.last_activity = now
        session.request_count += 1
        entry = {"method": method, "url": url, "timestamp": isoformat(now)}
        session.requests.append(entry)
        if len(session.requests) > self.max_requests:
            del session.requests[: -self.max_requests]
        _log.debug("%s %s | session=%s requests=%d", method, url, session.id, session.request_count)
        return entry

    def evict_idle(self) -> int:
        """Drop sessions idle for longer than idle_timeout; return how many."""
        now = self._clock()
        stale = [
            key
            for key, session in self._sessions.items()
            if (now - session.last_activity).total_seconds() > self.idle_timeout
        ]
        for key in stale:
            _log.info("Closing idle client session %s", self._sessions[key].id)
            del self._sessions[key]
        return len(stale)

    def flush(self) -> dict:
        """
        Merge active sessions into today's entry and rewrite the stats file.

        Sessions already present in today's entry (matched by id) are
        updated in place; new ones are appended. Returns the written
        document.
        """
        stats = self.store.read()
        key = date_key(self._clock())
        day = stats["daily"].setdefault(
            key, {"date": key, "totalRequests": 0, "uniqueIPs": [], "sessions": []}
        )
        unique_ips = set(day.get("uniqueIPs") or [])
        sessions = day.setdefault("sessions", [])
        by_id = {entry.get("id"): entry for entry in sessions}

        for session in self._sessions.values():
            unique_ips.add(session.ip)
            snapshot = {
                "endTime": isoformat(session.last_activity),
                "requestCount": session.request_count,
                "requests": [dict(record) for record in session.requests],
            }
            existing = by_id.get(session.id)
            if existing is None:
                entry = {
                    "id": session.id,
                    "ip": session.ip,
                    "startTime": isoformat(session.start_time),
                    **snapshot,
                }
                sessions.append(entry)
                by_id[session.id] = entry
            else:
                existing.update(snapshot)

        day["uniqueIPs"] = sorted(unique_ips)
        day["totalRequests"] = sum(entry.get("requestCount", 0) for entry in sessions)
        self.store.write(stats)
        _log.debug(
            "Stats flushed: %d active sessions, %d in %s",
            len(self._sessions),
            len(sessions),
            key,
        )
        return stats


def summarize(stats: dict) -> list[dict]:
    """Per-day totals, newest day first."""
    days = [
        {
            "date": key,
            "totalSessions": len(day.get("sessions", [])),
            "totalRequests": day.get("totalRequests", 0),
            "uniqueIPs": len(day.get("uniqueIPs", [])),
        }
        for key, day in stats.get("daily", {}).items()
    ]
    return sorted(days, key=lambda item: item["date"], reverse=True)

import json
from datetime import datetime, timedelta, timezone

import pytest

from web.stats import (
    MAX_REQUESTS_PER_SESSION,
    SessionTracker,
    StatsStore,
    isoformat,
    summarize,
)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path) -> StatsStore:
    return StatsStore(tmp_path / "stats.json")


@pytest.fixture
def tracker(store, clock) -> SessionTracker:
    return SessionTracker(store, idle_timeout=60, clock=clock)


def test_isoformat_uses_z_suffix():
    moment = datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
    assert isoformat(moment) == "2026-01-02T03:04:05.678Z"


def test_requests_from_one_client_share_a_session(tracker, clock):
    tracker.record("203.0.113.5", "Firefox", "GET", "/")
    clock.advance(seconds=5)
    entry = tracker.record("203.0.113.5", "Firefox", "POST", "/get-best-move")

    assert len(tracker) == 1
    session = tracker.active()[0]
    assert session.request_count == 2
    assert session.last_activity == clock.now
    assert session.id.startswith("203.0.113.5_")
    assert entry == {
        "method": "POST",
        "url": "/get-best-move",
        "timestamp": isoformat(clock.now),
    }


def test_different_user_agent_is_a_different_session(tracker):
    tracker.record("203.0.113.5", "Firefox", "GET", "/")
    tracker.record("203.0.113.5", "curl", "GET", "/")
    assert len(tracker) == 2


def test_request_history_keeps_only_the_newest_records(store, clock):
    tracker = SessionTracker(store, clock=clock, max_requests=3)
    for n in range(5):
        tracker.record("203.0.113.5", "Firefox", "GET", f"/page/{n}")

    session = tracker.active()[0]
    assert session.request_count == 5
    assert [record["url"] for record in session.requests] == ["/page/2", "/page/3", "/page/4"]

    stats = tracker.flush()
    day = next(iter(stats["daily"].values()))
    assert day["totalRequests"] == 5
    assert len(day["sessions"][0]["requests"]) == 3


def test_request_history_cap_default(tracker):
    for _ in range(MAX_REQUESTS_PER_SESSION + 25):
        tracker.record("203.0.113.5", "Firefox", "GET", "/")

    session = tracker.active()[0]
    assert len(session.requests) == MAX_REQUESTS_PER_SESSION
    assert session.request_count == MAX_REQUESTS_PER_SESSION + 25


def test_request_history_cap_must_be_positive(store):
    with pytest.raises(ValueError):
        SessionTracker(store, max_requests=0)


def test_idle_sessions_are_evicted(tracker, clock):
    tracker.record("198.51.100.1", "Firefox", "GET", "/")
    clock.advance(seconds=30)
    tracker.record("198.51.100.2", "Firefox", "GET", "/")
    clock.advance(seconds=45)

    assert tracker.evict_idle() == 1
    assert [session.ip for session in tracker.active()] == ["198.51.100.2"]


def test_flush_writes_daily_entry(tracker, store):
    entry = tracker.record("203.0.113.5", "Firefox", "POST", "/get-best-move")
    entry["fen"] = "startpos"
    tracker.record("198.51.100.7", "curl", "GET", "/")

    tracker.flush()

    on_disk = json.loads(store.path.read_text())
    day = on_disk["daily"]["2026-10-19"]
    assert day["date"] == "2026-10-19"
    assert day["totalRequests"] == 2
    assert day["uniqueIPs"] == ["198.51.100.7", "203.0.113.5"]
    assert len(day["sessions"]) == 2
    assert day["sessions"][0]["requests"][0]["fen"] == "startpos"


def test_repeated_flush_updates_sessions_in_place(tracker, store, clock):
    tracker.record("203.0.113.5", "Firefox", "GET", "/")
    tracker.flush()
    clock.advance(seconds=10)
    tracker.record("203.0.113.5", "Firefox", "GET", "/api/stats/summary")
    stats = tracker.flush()

    day = stats["daily"]["2026-10-19"]
    assert len(day["sessions"]) == 1
    assert day["sessions"][0]["requestCount"] == 2
    assert day["sessions"][0]["endTime"] == isoformat(clock.now)
    assert day["totalRequests"] == 2
    assert store.read() == stats


def test_flush_keeps_evicted_sessions_on_disk(tracker, clock):
    tracker.record("203.0.113.5", "Firefox", "GET", "/")
    tracker.flush()
    clock.advance(minutes=5)
    tracker.evict_idle()
    stats = tracker.flush()

    assert len(tracker) == 0
    assert len(stats["daily"]["2026-10-19"]["sessions"]) == 1


def test_missing_or_corrupt_file_reads_as_empty(store):
    assert store.read() == {"daily": {}}
    store.path.write_text("{not json")
    assert store.read() == {"daily": {}}
    store.path.write_text("[1, 2, 3]")
    assert store.read() == {"daily": {}}


def test_summarize_lists_newest_day_first():
    stats = {
        "daily": {
            "2026-10-18": {"totalRequests": 3, "uniqueIPs": ["a"], "sessions": [{}]},
            "2026-10-19": {"totalRequests": 5, "uniqueIPs": ["a", "b"], "sessions": [{}, {}]},
        }
    }
    assert summarize(stats) == [
        {"date": "2026-10-19", "totalSessions": 2, "totalRequests": 5, "uniqueIPs": 2},
        {"date": "2026-10-18", "totalSessions": 1, "totalRequests": 3, "uniqueIPs": 1},
    ]

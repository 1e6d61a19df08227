import json
import shlex

import chess
import pytest
from fastapi.testclient import TestClient

from web.app import MOVE_PATHS, create_app
from web.config import Settings, default_variant_path
from web.stats import date_key, utcnow
from positions import GARBAGE_FEN, START_FEN


@pytest.fixture
def stats_path(tmp_path):
    return tmp_path / "stats.json"


@pytest.fixture
def make_client(engine_command, engine_mode, stats_path):
    def _make(**overrides) -> TestClient:
        fields = {
            "engine_path": engine_command[0],
            "engine_args": tuple(engine_command[1:]),
            "stats_file": str(stats_path),
            "engine_timeout": 10.0,
        }
        fields.update(overrides)
        return TestClient(create_app(Settings(**fields)))

    return _make


@pytest.mark.parametrize("path", MOVE_PATHS)
def test_best_move(make_client, path):
    with make_client() as client:
        response = client.post(path, json={"fen": START_FEN, "depth": 3})

    assert response.status_code == 200
    body = response.json()
    assert set(body) == {"bestMove", "analysis"}
    assert chess.Move.from_uci(body["bestMove"]) in chess.Board().legal_moves
    assert body["analysis"][-1] == f"bestmove {body['bestMove']}"


@pytest.mark.parametrize("payload", [{"depth": 5}, {"fen": ""}, {"fen": "   "}, None])
def test_missing_fen_is_a_client_error(make_client, payload):
    with make_client() as client:
        response = client.post("/get-best-move", json=payload)

    assert response.status_code == 400
    assert response.json() == {"error": "FEN is required"}


def test_malformed_body_is_a_client_error(make_client):
    with make_client() as client:
        response = client.post("/get-best-move", json={"fen": START_FEN, "depth": "deep"})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request body"
    assert body["details"]


def test_rejected_position(make_client):
    with make_client() as client:
        response = client.post("/get-best-move", json={"fen": GARBAGE_FEN})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Invalid position or move"
    assert body["details"].startswith("Invalid FEN")
    assert "uciok" in body["analysis"]


def test_engine_crash(make_client, engine_mode):
    engine_mode("crash")
    with make_client() as client:
        response = client.post("/get-best-move", json={"fen": START_FEN})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Engine closed without providing best move"
    assert body["exitCode"] == 1


def test_engine_timeout(make_client, engine_mode):
    engine_mode("hang")
    with make_client(engine_timeout=0.5) as client:
        response = client.post("/get-best-move", json={"fen": START_FEN})

    assert response.status_code == 500
    assert response.json()["error"].startswith("Engine timeout")


def test_engine_missing(make_client, tmp_path):
    with make_client(engine_path=str(tmp_path / "missing-engine"), engine_args=()) as client:
        response = client.post("/get-best-move", json={"fen": START_FEN})

    assert response.status_code == 500
    assert response.json()["error"].startswith("Engine error:")


def test_variant_self_check(make_client):
    with make_client() as client:
        response = client.get("/test-variant")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "Variant works correctly"
    assert chess.Move.from_uci(body["bestMove"]) in chess.Board().legal_moves
    assert "readyok" in body["output"]


def test_variant_self_check_failure(make_client, engine_mode):
    engine_mode("crash")
    with make_client() as client:
        response = client.get("/test-variant")

    assert response.status_code == 500
    assert "output" in response.json()


def test_requests_are_tracked_per_client(make_client):
    with make_client() as client:
        client.post("/get-best-move", json={"fen": START_FEN, "depth": 2})
        response = client.get("/api/sessions/active")

    body = response.json()
    assert body["success"] is True
    assert body["count"] == 1
    session = body["sessions"][0]
    assert session["ip"] == "testclient"
    assert session["requestCount"] == 2
    assert session["requests"][0]["url"] == "/get-best-move"
    assert session["requests"][0]["fen"] == START_FEN


def test_forwarded_for_header_identifies_client(make_client):
    with make_client() as client:
        client.get("/", headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
        response = client.get("/api/sessions/active", headers={"X-Real-IP": "198.51.100.4"})

    ips = sorted(session["ip"] for session in response.json()["sessions"])
    assert ips == ["198.51.100.4", "203.0.113.9"]


def test_stats_endpoints(make_client, stats_path):
    today = date_key(utcnow())
    with make_client() as client:
        client.get("/")
        summary = client.get("/api/stats/summary").json()
        day = client.get(f"/api/stats/{today}")
        missing = client.get("/api/stats/1999-01-01")

    assert summary["success"] is True
    assert summary["totalDays"] == 1
    assert summary["days"][0]["date"] == today
    assert summary["days"][0]["totalSessions"] == 1
    assert day.status_code == 200
    assert day.json()["data"]["date"] == today
    assert missing.status_code == 404
    assert missing.json()["success"] is False
    assert stats_path.exists()


def test_stats_flushed_on_shutdown(make_client, stats_path):
    with make_client() as client:
        client.get("/")

    stats = json.loads(stats_path.read_text())
    day = next(iter(stats["daily"].values()))
    assert day["totalRequests"] == 1


def test_serves_client_page(make_client):
    with make_client() as client:
        response = client.get("/")

    assert response.status_code == 200
    assert "Chess Move Gateway" in response.text


def test_default_settings_load_the_chessdragon_variant(
    monkeypatch, engine_command, engine_mode, engine_log, stats_path
):
    monkeypatch.setenv("CHESS_GATEWAY_ENGINE_PATH", engine_command[0])
    monkeypatch.setenv("CHESS_GATEWAY_ENGINE_ARGS", shlex.quote(engine_command[1]))
    monkeypatch.setenv("CHESS_GATEWAY_STATS_FILE", str(stats_path))
    for name in ("VARIANT", "VARIANT_PATH"):
        monkeypatch.delenv(f"CHESS_GATEWAY_{name}", raising=False)

    with TestClient(create_app()) as client:
        response = client.get("/test-variant")

    assert response.status_code == 200
    commands = engine_log.read_text().splitlines()
    assert commands[1:4] == [
        f"setoption name VariantPath value {default_variant_path()}",
        "setoption name UCI_Variant value chessdragon",
        "isready",
    ]

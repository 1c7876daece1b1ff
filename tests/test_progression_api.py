import asyncio
import json
import logging
import os

from fastapi.testclient import TestClient

from levelkeeper.core.errors import InvalidAmountError
from levelkeeper.main import _progression_error_handler, create_app


def _attach(client, session_id: str) -> dict:
    response = client.post(f"/api/v1/progression/{session_id}/attach")
    assert response.status_code == 200
    return response.json()


def test_attach_grant_and_read_back(client):
    attached = _attach(client, "player-1")
    assert attached["level"] == 1
    assert attached["current_points"] == 0
    assert attached["points_to_next_level"] == 100

    grant = client.post("/api/v1/progression/player-1/grant", json={"amount": 350})
    assert grant.status_code == 200
    body = grant.json()
    assert body["levels_gained"] == 2
    assert body["amount_granted"] == 350
    assert body["progression"]["level"] == 3
    assert body["progression"]["current_points"] == 50
    assert body["progression"]["points_to_next_level"] == 300

    read = client.get("/api/v1/progression/player-1")
    assert read.status_code == 200
    assert read.json()["level"] == 3


def test_grant_without_amount_uses_configured_default(client):
    _attach(client, "player-1")

    response = client.post("/api/v1/progression/player-1/grant", json={})
    assert response.status_code == 200
    assert response.json()["levels_gained"] == 1
    assert response.json()["progression"]["level"] == 2


def test_grant_to_unattached_session_is_a_conflict(client):
    response = client.post("/api/v1/progression/ghost/grant", json={"amount": 10})
    assert response.status_code == 409
    error = response.json()["error"]
    assert error["error_code"] == "NotAttachedError"
    assert error["session_id"] == "ghost"
    assert error["operation"] == "grant_points"


def test_negative_grant_is_rejected(client):
    _attach(client, "player-1")

    response = client.post("/api/v1/progression/player-1/grant", json={"amount": -5})
    assert response.status_code == 422
    assert client.get("/api/v1/progression/player-1").json()["current_points"] == 0


def test_reset_and_set_level(client):
    _attach(client, "player-1")
    client.post("/api/v1/progression/player-1/grant", json={"amount": 900})

    level = client.put("/api/v1/progression/player-1/level", json={"level": 10})
    assert level.status_code == 200
    assert level.json()["level"] == 10
    assert level.json()["current_points"] == 0
    assert level.json()["points_to_next_level"] == 1000

    reset = client.post("/api/v1/progression/player-1/reset")
    assert reset.status_code == 200
    assert reset.json()["level"] == 1
    assert reset.json()["points_to_next_level"] == 100

    invalid = client.put("/api/v1/progression/player-1/level", json={"level": 0})
    assert invalid.status_code == 422


def test_detach_saves_and_drops_live_session(client, data_file):
    _attach(client, "player-1")
    client.post("/api/v1/progression/player-1/grant", json={"amount": 30})

    detach = client.post("/api/v1/progression/player-1/detach")
    assert detach.status_code == 200
    assert detach.json()["saved"] is True
    assert detach.json()["progression"]["current_points"] == 30

    assert client.get("/api/v1/progression/player-1").status_code == 404
    assert client.post("/api/v1/progression/player-1/detach").status_code == 409

    payload = json.loads(data_file.read_text(encoding="utf-8"))
    assert payload == {"player-1": {"Level": 1, "CurrentXP": 30, "XPToNextLevel": 100}}


def test_explicit_save_and_restart_restores_progress(make_settings, data_file):
    settings = make_settings(save_on_detach=False)

    with TestClient(create_app(settings)) as first:
        _attach(first, "player-x")
        first.post("/api/v1/progression/player-x/grant", json={"amount": 130})
        saved = first.post("/api/v1/saves")
        assert saved.status_code == 200
        assert saved.json() == {"records_saved": 1, "sessions_attached": 1}

    with TestClient(create_app(settings)) as second:
        health = second.get("/api/v1/health").json()
        assert health["status"] == "ok"
        assert health["records_stored"] == 1

        restored = _attach(second, "player-x")
        assert restored["level"] == 2
        assert restored["current_points"] == 30
        assert restored["points_to_next_level"] == 200


def test_shutdown_saves_attached_sessions(make_settings, data_file):
    with TestClient(create_app(make_settings())) as test_client:
        _attach(test_client, "player-1")
        test_client.post("/api/v1/progression/player-1/grant", json={"amount": 55})

    payload = json.loads(data_file.read_text(encoding="utf-8"))
    assert payload["player-1"]["CurrentXP"] == 55


def test_corrupt_file_reports_degraded_health(make_settings, data_file):
    data_file.parent.mkdir(parents=True)
    data_file.write_text("{oops", encoding="utf-8")

    with TestClient(create_app(make_settings())) as test_client:
        health = test_client.get("/api/v1/health")
        assert health.status_code == 200
        assert health.json()["status"] == "degraded"
        assert health.json()["load_error"]

        assert _attach(test_client, "player-1")["level"] == 1


def test_mining_event_grants_only_for_eligible_blocks(make_settings):
    with TestClient(create_app(make_settings(mining_points_per_block=2))) as test_client:
        _attach(test_client, "miner")

        rewarded = test_client.post(
            "/api/v1/progression/miner/mining",
            json={"block_id": "Rock_Stone", "item_id": "Tool_Pickaxe_Iron"},
        )
        assert rewarded.status_code == 200
        assert rewarded.json()["rewarded"] is True
        assert rewarded.json()["grant"]["progression"]["current_points"] == 2

        ignored = test_client.post(
            "/api/v1/progression/miner/mining",
            json={"block_id": "Wood_Oak", "item_id": "Tool_Pickaxe_Iron"},
        )
        assert ignored.json() == {"rewarded": False, "grant": None}


def test_stream_requires_attached_session(client):
    response = client.get("/api/v1/progression/ghost/stream")
    assert response.status_code == 404


def test_non_utf8_file_reports_degraded_health(make_settings, data_file):
    data_file.parent.mkdir(parents=True)
    data_file.write_bytes(b"\xff\xfe garbage")

    with TestClient(create_app(make_settings())) as test_client:
        health = test_client.get("/api/v1/health")
        assert health.status_code == 200
        assert health.json()["status"] == "degraded"
        assert health.json()["records_stored"] == 0
        assert health.json()["load_error"]

        assert _attach(test_client, "player-1")["level"] == 1


def test_invalid_amount_maps_to_unprocessable_content():
    error = InvalidAmountError("Level must be at least 1", session_id="player-1", operation="set_level")

    response = asyncio.run(_progression_error_handler(None, error))

    assert response.status_code == 422
    body = json.loads(response.body)
    assert body["detail"] == "Level must be at least 1"
    assert body["error"]["error_code"] == "InvalidAmountError"


def test_detach_reports_failed_save_and_logs_session(client, monkeypatch, caplog):
    _attach(client, "player-1")
    client.post("/api/v1/progression/player-1/grant", json={"amount": 30})

    def _fail_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", _fail_replace)
    endpoint_logger = logging.getLogger("levelkeeper.api.v1.endpoints.progression")
    endpoint_logger.addHandler(caplog.handler)
    try:
        detach = client.post("/api/v1/progression/player-1/detach")
    finally:
        endpoint_logger.removeHandler(caplog.handler)

    assert detach.status_code == 200
    assert detach.json()["saved"] is False
    assert detach.json()["progression"]["current_points"] == 30
    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert any("player-1" in record.getMessage() for record in warnings)


def test_broker_tracks_attached_state_until_detach(client):
    broker = client.app.state.progression_event_broker
    _attach(client, "player-1")
    client.post("/api/v1/progression/player-1/grant", json={"amount": 40})

    assert broker.latest("player-1")["progression"]["current_points"] == 40

    client.post("/api/v1/progression/player-1/detach")
    assert broker.latest("player-1") is None

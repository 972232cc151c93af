"""
Unit tests for bbalarms.api.command_api.

Uses the Flask test client:
- bearer auth (401 without a header, 403 for a wrong token, open when no token)
- POST /command dispatches and maps engine errors to HTTP status codes
- GET /alarms, /status, /status/<id>, /health
- a body that is not a JSON object is a 400
- load_api_token reads a .env file
"""

from __future__ import annotations

import pytest

from bbalarms.api.command_api import create_app, load_api_token
from bbalarms.domain.models import AlarmState
from bbalarms.services.commands import AlarmCommands

AUTH = {"Authorization": "Bearer secret"}


@pytest.fixture
def commands(make_service) -> AlarmCommands:
    return AlarmCommands(make_service(["a1", "a2"], fixed=["a2"]))


@pytest.fixture
def client(commands):
    app = create_app(commands, token="secret")
    app.testing = True
    return app.test_client()


def test_health_needs_no_auth(client) -> None:
    r = client.get("/health")

    assert r.status_code == 200
    assert r.get_json() == {"status": "ok"}


def test_missing_and_wrong_token(client) -> None:
    assert client.get("/alarms").status_code == 401
    assert client.get("/alarms", headers={"Authorization": "Bearer nope"}).status_code == 403
    assert client.post("/command", json={"command": "help"}, headers={"Authorization": "Basic x"}).status_code == 401


def test_no_token_disables_auth(commands) -> None:
    client = create_app(commands, token=None).test_client()

    assert client.get("/alarms").status_code == 200


def test_list_alarms_and_status(client) -> None:
    r = client.get("/alarms", headers=AUTH)
    body = r.get_json()
    assert r.status_code == 200
    assert body["ok"] is True
    assert [a["alarm_id"] for a in body["data"]["alarms"]] == ["a1", "a2"]

    r = client.get("/status", headers=AUTH)
    assert r.get_json()["data"]["alarm_states"] == {"a1": "LOWERED", "a2": "LOWERED"}


def test_status_of_one_alarm(client, commands) -> None:
    commands.manager.raise_alarm("a1", AlarmState.MINOR)

    r = client.get("/status/a1", headers=AUTH)

    assert r.status_code == 200
    assert r.get_json()["data"]["alarm_state"] == "MINOR"


def test_status_of_unknown_alarm_is_404(client) -> None:
    r = client.get("/status/ghost", headers=AUTH)

    assert r.status_code == 404
    assert r.get_json()["error"] == "AlarmNotFoundError"


@pytest.mark.parametrize("body", [[1, 2], "silence", 42])
def test_non_object_body_is_400(client, body) -> None:
    r = client.post("/command", json=body, headers=AUTH)

    assert r.status_code == 400
    assert r.get_json()["error"] == "InvalidAlarmArgumentError"


def test_command_success_records_sender(client, commands) -> None:
    r = client.post("/command", json={"command": "disable-alarm", "args": ["a1"], "sender": "ops"}, headers=AUTH)

    assert r.status_code == 200
    assert r.get_json()["message"] == "Alarm a1 disabled"
    assert commands.manager.get_alarm("a1").state == AlarmState.DISABLED
    assert commands._service.persistence.records_for("a1")[0].comment == "Command sent from ops"


def test_scalar_args_are_wrapped(client, commands) -> None:
    commands.manager.raise_alarm("a1", AlarmState.CRITICAL)

    r = client.post("/command", json={"command": "silence", "args": 30}, headers=AUTH)

    assert r.status_code == 200
    assert r.get_json()["message"] == "Buzzer silenced for 30 secs"


@pytest.mark.parametrize(
    "body, status, error",
    [
        ({"command": "disable-alarm", "args": ["ghost"]}, 404, "AlarmNotFoundError"),
        ({"command": "disable-alarm", "args": ["a2"]}, 409, "InvalidAlarmTransitionError"),
        ({"command": "disable-alarm"}, 400, "InvalidAlarmArgumentError"),
        ({"command": "fly"}, 400, "UnknownCommandError"),
        ({"command": "silence"}, 409, "InvalidAlarmTransitionError"),
        ({}, 400, "InvalidAlarmArgumentError"),
    ],
)
def test_command_errors_map_to_status(client, body, status, error) -> None:
    r = client.post("/command", json=body, headers=AUTH)

    assert r.status_code == status
    assert r.get_json()["ok"] is False
    assert r.get_json()["error"] == error


def test_test_slot_conflict_is_409(client) -> None:
    assert client.post("/command", json={"command": "test-buzzer"}, headers=AUTH).status_code == 200

    r = client.post("/command", json={"command": "test-alarm", "args": ["a1"]}, headers=AUTH)

    assert r.status_code == 409
    assert r.get_json()["error"] == "AlarmTestError"


def test_load_api_token_from_env_file(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("BBALARMS_TEST_TOKEN", "placeholder")
    monkeypatch.delenv("BBALARMS_TEST_TOKEN")
    env = tmp_path / ".env"
    env.write_text("BBALARMS_TEST_TOKEN=from-file\n", encoding="utf-8")

    assert load_api_token("BBALARMS_TEST_TOKEN", env) == "from-file"


def test_load_api_token_missing(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("BBALARMS_MISSING_TOKEN", raising=False)

    assert load_api_token("BBALARMS_MISSING_TOKEN", tmp_path / "none.env") is None

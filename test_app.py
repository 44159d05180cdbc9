import logging
from datetime import date

import pytest

from app import create_app


@pytest.fixture
def client(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "DATABASE_URL": None,
            "SQLITE_PATH": str(tmp_path / "app.db"),
            "TODAY": lambda: date(2025, 6, 1),
        }
    )
    return app.test_client()


def _player(client, name, gender="MALE", **extra):
    response = client.post("/players", json={"name": name, "gender": gender, **extra})
    assert response.status_code == 201
    return response.get_json()["id"]


def _category(client, **extra):
    payload = {"name": "Open", "format": "SINGLE_ELIMINATION", "event_date": "2025-07-01"}
    payload.update(extra)
    response = client.post("/categories", json=payload)
    assert response.status_code == 201
    return response.get_json()["id"]


def test_single_elimination_flow(client):
    category_id = _category(client)
    a = _player(client, "Ana", rating=1000)
    b = _player(client, "Bo", rating=1000)
    for player_id in (a, b):
        response = client.post(
            f"/categories/{category_id}/registrations", json={"player_id": player_id}
        )
        assert response.status_code == 200

    assert client.post(f"/categories/{category_id}/close").get_json()["status"] == (
        "REGISTRATION_CLOSED"
    )
    started = client.post(f"/categories/{category_id}/start", json={})
    assert started.get_json()["status"] == "IN_PROGRESS"

    (match,) = client.get(f"/categories/{category_id}/matches").get_json()
    response = client.post(
        f"/categories/{category_id}/matches/{match['id']}/result",
        json={"set_scores": [{"p1": 11, "p2": 9}, {"p1": 11, "p2": 8}]},
    )
    assert response.status_code == 200
    assert response.get_json()["status"] == "COMPLETED"

    assert client.get(f"/categories/{category_id}/champion").get_json() == {
        "champion_id": a
    }
    history = client.get(f"/players/{a}/rating-history").get_json()
    assert [h["delta"] for h in history] == [16]
    stats = client.get(f"/players/{b}/stats").get_json()
    assert (stats["rating"], stats["losses"]) == (984, 1)
    bracket = client.get(f"/categories/{category_id}/bracket").get_json()
    assert [r["label"] for r in bracket] == ["Final"]


def test_group_stage_endpoints(client):
    category_id = _category(client, format="GROUPS_THEN_ELIMINATION")
    for idx in range(4):
        player_id = _player(client, f"P{idx}", rating=1400 - idx * 100)
        client.post(f"/categories/{category_id}/registrations", json={"player_id": player_id})
    client.post(f"/categories/{category_id}/close")

    response = client.post(
        f"/categories/{category_id}/start",
        json={"players_per_group": 2, "num_advancing": 1},
    )
    assert response.get_json()["status"] == "GROUP_STAGE"

    groups = client.get(f"/categories/{category_id}/groups").get_json()
    assert [g["name"] for g in groups] == ["Group A", "Group B"]
    standings = client.get(f"/categories/{category_id}/standings").get_json()
    assert [len(t["standings"]) for t in standings] == [2, 2]
    assert client.get(f"/categories/{category_id}/champion").get_json() == {
        "champion_id": None
    }


def test_engine_errors_become_json(client):
    category_id = _category(client, gender="FEMALE")
    player_id = _player(client, "Bo", gender="MALE")

    response = client.post(
        f"/categories/{category_id}/registrations", json={"player_id": player_id}
    )
    assert response.status_code == 403
    assert response.get_json()["kind"] == "NotEligible"

    response = client.get("/categories/999")
    assert response.status_code == 404
    assert response.get_json()["kind"] == "NotFound"

    response = client.post(f"/categories/{category_id}/start")
    assert response.status_code == 409
    assert response.get_json()["kind"] == "InvalidState"


def test_invalid_score_and_input(client):
    category_id = _category(client)
    response = client.post(
        f"/categories/{category_id}/matches/1/result", json={"set_scores": []}
    )
    assert response.status_code == 422
    assert response.get_json()["kind"] == "InvalidScore"

    response = client.post("/players", json={"name": "X", "gender": "ROBOT"})
    assert response.status_code == 400
    response = client.post("/categories", json={"name": "Y", "format": "SWISS"})
    assert response.status_code == 400
    response = client.post(f"/categories/{category_id}/registrations", json={})
    assert response.status_code == 400


def test_cancel_and_delete(client):
    category_id = _category(client)
    player_id = _player(client, "Ana", gender="FEMALE")
    client.post(f"/categories/{category_id}/registrations", json={"player_id": player_id})

    response = client.delete(f"/categories/{category_id}/registrations/{player_id}")
    assert response.status_code == 200
    assert response.get_json()["registrations"] == []

    assert client.delete(f"/categories/{category_id}").status_code == 204
    assert client.get(f"/categories/{category_id}").status_code == 404


def test_mixed_player_rejected(client):
    response = client.post("/players", json={"name": "Alex", "gender": "MIXED"})
    assert response.status_code == 400
    assert response.get_json()["kind"] == "TournamentError"


def test_engine_error_logged_with_arguments(client, caplog):
    with caplog.at_level(logging.WARNING):
        client.get("/categories/999")

    (record,) = [r for r in caplog.records if r.name == "app"]
    assert record.msg == "%s: %s"
    assert record.getMessage() == "NotFound: Category 999 not found."

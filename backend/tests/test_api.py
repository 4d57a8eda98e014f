import os, importlib

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("ORIGIN", "http://localhost:5173")
os.environ["STORAGE_BACKEND"] = "memory"

from app.services import games as games_service
from app.services.storage import MemorySnapshotBackend, set_backend

app_mod = importlib.import_module("main")
client = TestClient(app_mod.app)


@pytest.fixture(autouse=True)
def fresh_storage():
    set_backend(MemorySnapshotBackend())
    games_service.GAMES.clear()
    yield
    games_service.GAMES.clear()


def start_game(names=("Ann", "Ben", "Cal"), max_points=101):
    r = client.post("/api/games", json={})
    assert r.status_code == 200
    game_id = r.json()["game_id"]
    r = client.post(f"/api/games/{game_id}/init", json={"maxPoints": max_points, "dropPoints": 20})
    assert r.status_code == 200
    ids = {}
    for name in names:
        r = client.post(f"/api/games/{game_id}/players", json={"name": name})
        assert r.status_code == 200
        ids[name] = r.json()["player_id"]
    return game_id, ids


def test_drop_points_suggestion():
    r = client.get("/api/drop-points", params={"maxPoints": 201})
    assert r.status_code == 200
    assert r.json()["dropPoints"] == 21


def test_round_flow_and_state():
    game_id, ids = start_game()
    payload = {"scores": [
        {"playerId": ids["Ann"], "score": 0},
        {"playerId": ids["Ben"], "score": 40},
        {"playerId": ids["Cal"], "score": 110},
    ]}
    r = client.post(f"/api/games/{game_id}/rounds", json=payload)
    assert r.status_code == 200
    assert r.json()["winnerId"] == ids["Ann"]

    st = client.get(f"/api/games/{game_id}/state").json()
    assert st["isGameStarted"] is True
    assert st["totals"][ids["Cal"]] == 110
    assert [p["name"] for p in st["activePlayers"]] == ["Ann", "Ben"]
    cal = next(p for p in st["outPlayers"] if p["id"] == ids["Cal"])
    assert cal["canRejoin"] is True
    assert cal["rejoinScore"] == 41
    assert st["rejoinEligible"] == [ids["Cal"]]

    r = client.post(f"/api/games/{game_id}/players/{ids['Cal']}/rejoin")
    assert r.json() == {"ok": True}
    st = client.get(f"/api/games/{game_id}/state").json()
    assert st["totals"][ids["Cal"]] == 41
    assert st["openCardPlayerId"] == ids["Cal"]

    assert any(g["game_id"] == game_id for g in client.get("/api/games").json())


def test_validation_errors_map_to_http_codes():
    game_id, ids = start_game(names=("Ann", "Ben"))
    r = client.post(f"/api/games/{game_id}/players", json={"name": "ann"})
    assert r.status_code == 409
    assert r.json()["error"] == "DuplicateNameError"

    two_winners = {"scores": [{"playerId": ids["Ann"], "score": 0}, {"playerId": ids["Ben"], "score": 0}]}
    r = client.post(f"/api/games/{game_id}/rounds", json=two_winners)
    assert r.status_code == 400
    assert r.json()["error"] == "InvalidRoundError"

    r = client.put(f"/api/games/{game_id}/players/order", json={"playerIds": [ids["Ann"]]})
    assert r.status_code == 400

    assert client.get("/api/games/missing/state").status_code == 404


def test_only_latest_round_is_editable():
    game_id, ids = start_game(names=("Ann", "Ben"))
    for ann, ben in ((0, 10), (5, 0)):
        r = client.post(
            f"/api/games/{game_id}/rounds",
            json={"scores": [{"playerId": ids["Ann"], "score": ann}, {"playerId": ids["Ben"], "score": ben}]},
        )
        assert r.status_code == 200

    r = client.patch(f"/api/games/{game_id}/rounds/1/scores/{ids['Ben']}", json={"score": 3})
    assert r.status_code == 409
    r = client.patch(f"/api/games/{game_id}/rounds/2/scores/{ids['Ann']}", json={"score": 7})
    assert r.json() == {"ok": True}

    r = client.get(f"/api/games/{game_id}/rounds/2/scores/{ids['Ann']}/check", params={"score": 0})
    assert r.json() == {"multipleWinners": True}

    r = client.delete(f"/api/games/{game_id}/rounds/1")
    assert r.json() == {"ok": True}
    st = client.get(f"/api/games/{game_id}/state").json()
    assert [rnd["id"] for rnd in st["rounds"]] == [1]
    assert st["mostRecentRoundId"] == 1


def test_mid_game_join_and_reset():
    game_id, ids = start_game(names=("Ann", "Ben"))
    client.post(
        f"/api/games/{game_id}/rounds",
        json={"scores": [{"playerId": ids["Ann"], "score": 0}, {"playerId": ids["Ben"], "score": 30}]},
    )
    r = client.post(f"/api/games/{game_id}/players", json={"name": "Dee"})
    dee = r.json()["player_id"]
    st = client.get(f"/api/games/{game_id}/state").json()
    assert st["totals"][dee] == 31
    assert st["openCardPlayerId"] == dee

    r = client.post(f"/api/games/{game_id}/reset")
    assert r.status_code == 200
    assert r.json()["players"] == []
    assert r.json()["isGameStarted"] is False


def test_ws_round_events_and_errors():
    game_id, ids = start_game(names=("Ann", "Ben"))

    with client.websocket_connect(f"/ws/{game_id}") as ws:
        first = ws.receive_json()
        assert first["type"] == "state"
        assert first["payload"]["gameId"] == game_id

        ws.send_json({"type": "submit_round", "scores": [{"playerId": ids["Ann"], "score": 0}, {"playerId": ids["Ben"], "score": 10}]})
        won = ws.receive_json()
        assert won["type"] == "ROUND_WON"
        assert won["playerId"] == ids["Ann"]
        assert won["roundId"] == 1
        state = ws.receive_json()
        assert state["type"] == "state"
        assert len(state["payload"]["rounds"]) == 1

        ws.send_json({"type": "submit_round", "scores": [{"playerId": ids["Ann"], "score": 4}, {"playerId": ids["Ben"], "score": 3}]})
        error = ws.receive_json()
        assert error["type"] == "error"

        ws.send_json({"type": "shuffle"})
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "submit_round", "scores": [{"playerId": ids["Ben"], "score": 0}, {"playerId": ids["Ann"], "score": 150}]})
        assert ws.receive_json()["type"] == "ROUND_WON"
        game_won = ws.receive_json()
        assert game_won["type"] == "GAME_WON"
        assert game_won["playerId"] == ids["Ben"]
        final = ws.receive_json()
        assert final["payload"]["isGameOver"] is True
        assert final["payload"]["gameWinnerId"] == ids["Ben"]


def test_ws_lobby_lists_games():
    game_id, _ = start_game(names=("Ann",))
    with client.websocket_connect("/ws/lobby") as ws:
        msg = ws.receive_json()
        assert msg["type"] == "games"
        assert [g["game_id"] for g in msg["payload"]] == [game_id]

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from tambola.config.settings import settings
from tambola.main import app
from tambola.models.game import GameStatus
from tambola.services.prize_catalog import FULL_HOUSE, QUICK_FIVE, TOP_LINE

AUTH_HEADERS = {"Authorization": "Bearer token-host-1"}
OTHER_HOST_HEADERS = {"Authorization": "Bearer token-host-2"}
EXPIRED_HEADERS = {"Authorization": "Bearer token-expired"}
ADMIN_HEADERS = {"Authorization": "Bearer token-admin"}

LAYOUT_TICKETS = [
    {
        "ticket_id": "T1",
        "rows": [[1, 0, 20, 0, 40, 0, 60, 0, 80], [0, 10, 0, 30, 0, 50, 0, 70, 83], [4, 13, 23, 0, 43, 0, 63, 0, 0]],
    },
    {
        "ticket_id": "T2",
        "rows": [[2, 0, 21, 0, 41, 0, 61, 0, 81], [0, 11, 0, 31, 0, 51, 0, 71, 84], [5, 14, 24, 0, 44, 0, 64, 0, 0]],
    },
]


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def _create(client, **overrides):
    payload = {"name": "Friday Housie", "max_tickets": 6, "prizes": [QUICK_FIVE, FULL_HOUSE], "ticket_set_id": "1"}
    payload.update(overrides)
    r = client.post("/games", json=payload, headers=AUTH_HEADERS)
    assert r.status_code == 200, r.text
    return r.json()["data"]["game"]


def _tickets(make_ticket):
    return [make_ticket("A", [1, 2, 3, 4, 5], [10, 11, 12, 13, 14], [20, 21, 22, 23, 24])]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
def test_health_and_root(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["pending_pushes"] == 0
    assert client.get("/").json()["ok"] is True


def test_catalogs_are_public(client):
    prizes = client.get("/prizes/catalog").json()["prizes"]
    assert [p["id"] for p in prizes][:2] == [QUICK_FIVE, TOP_LINE]
    assert prizes[-1]["id"] == FULL_HOUSE

    sets = client.get("/ticket-sets").json()["ticket_sets"]
    assert {"id": "1", "name": "Classic Set 1", "ticket_count": 6} in sets


def test_host_profile(client):
    me = client.get("/host/me", headers=AUTH_HEADERS).json()
    assert me["id"] == "host-1"
    assert me["can_act"] is True
    assert "token" not in me

    expired = client.get("/host/me", headers=EXPIRED_HEADERS).json()
    assert expired["can_act"] is False


def test_missing_or_unknown_token_is_401(client):
    assert client.post("/games", json={"prizes": [QUICK_FIVE], "ticket_set_id": "1"}).status_code == 401
    r = client.get("/host/me", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------
def test_create_from_ticket_set_and_read_public_view(client):
    game = _create(client)
    assert game["status"] == "setup"
    assert game["ticket_count"] == 6
    assert [p["id"] for p in game["prizes"]] == [QUICK_FIVE, FULL_HOUSE]

    r = client.get(f"/games/{game['id']}")
    assert r.status_code == 200
    assert r.json()["phase"] == "setup"
    assert client.get("/games/unknown").status_code == 404


def test_create_with_explicit_tickets(client):
    game = _create(client, ticket_set_id=None, tickets=LAYOUT_TICKETS)
    assert game["ticket_count"] == 2
    assert [t["ticket_id"] for t in game["tickets"]] == ["T1", "T2"]


@pytest.mark.parametrize(
    "overrides",
    [{"max_tickets": 0}, {"prizes": []}, {"prizes": ["luckySeven"]}, {"call_interval": 60}],
)
def test_create_rejects_bad_configuration(client, overrides):
    payload = {"max_tickets": 6, "prizes": [QUICK_FIVE], "ticket_set_id": "1", **overrides}
    r = client.post("/games", json=payload, headers=AUTH_HEADERS)
    assert r.status_code == 422
    assert client.get("/games", headers=AUTH_HEADERS).json()["games"] == []


def test_list_games_scoped_to_host(client):
    _create(client)
    assert len(client.get("/games", headers=AUTH_HEADERS).json()["games"]) == 1
    assert client.get("/games", headers=OTHER_HOST_HEADERS).json()["games"] == []
    assert len(client.get("/games", headers=ADMIN_HEADERS).json()["games"]) == 1


def test_booking_then_start_then_pause_refused_during_countdown(client):
    game = _create(client, countdown_seconds=300)
    gid = game["id"]

    r = client.post(f"/games/{gid}/tickets/A001/book", json={"player_name": "Asha"}, headers=AUTH_HEADERS)
    assert r.status_code == 200
    assert r.json()["data"]["ticket"]["player_name"] == "Asha"
    again = client.post(f"/games/{gid}/tickets/A001/book", json={"player_name": "Ravi"}, headers=AUTH_HEADERS)
    assert again.status_code == 422

    booked = client.get(f"/games/{gid}/tickets", params={"booked": True}).json()["tickets"]
    assert [t["ticket_id"] for t in booked] == ["A001"]
    assert client.get(f"/games/{gid}").json()["phase"] == "booking"

    started = client.post(f"/games/{gid}/start", headers=AUTH_HEADERS)
    assert started.status_code == 200
    assert started.json()["data"]["game"]["status"] == "countdown"

    assert client.post(f"/games/{gid}/start", headers=AUTH_HEADERS).status_code == 409
    assert client.post(f"/games/{gid}/pause", headers=AUTH_HEADERS).status_code == 409


def test_other_host_and_expired_host_are_refused(client, make_ticket, make_game):
    game = make_game(_tickets(make_ticket), status=GameStatus.SETUP)
    assert client.post(f"/games/{game.id}/start", headers=OTHER_HOST_HEADERS).status_code == 403

    expired = make_game(_tickets(make_ticket), status=GameStatus.SETUP, host_id="host-expired")
    r = client.post(f"/games/{expired.id}/start", headers=EXPIRED_HEADERS)
    assert r.status_code == 401
    # la lecture reste possible
    assert client.get(f"/games/{expired.id}").status_code == 200


def test_manual_call_events_and_claim_check(client, make_ticket, make_game):
    game = make_game(_tickets(make_ticket), prizes=[QUICK_FIVE], called=[1, 2, 3, 4], call_interval=5)

    r = client.post(f"/games/{game.id}/call", headers=AUTH_HEADERS)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["number"] == 5
    assert data["prizes_won"] == [QUICK_FIVE]

    events = client.get(f"/games/{game.id}/events").json()
    assert [e["kind"] for e in events["events"]] == ["numberCalled", "prizeWon"]
    later = client.get(f"/games/{game.id}/events", params={"after_seq": events["last_seq"]}).json()
    assert later["events"] == []

    claim = client.post(f"/games/{game.id}/tickets/A/check", json={"prize_id": QUICK_FIVE}).json()
    assert claim["valid"] is True
    assert claim["already_won"] is True
    bad = client.post(f"/games/{game.id}/tickets/A/check", json={"prize_id": FULL_HOUSE})
    assert bad.status_code == 422


def test_end_reset_and_delete(client, make_ticket, make_game):
    game = make_game(_tickets(make_ticket), called=[1, 2, 3])

    assert client.post(f"/games/{game.id}/end", headers=AUTH_HEADERS).status_code == 200
    assert client.post(f"/games/{game.id}/reset", json={}, headers=AUTH_HEADERS).status_code == 422

    r = client.post(f"/games/{game.id}/reset", json={"confirm": True}, headers=AUTH_HEADERS)
    assert r.status_code == 200
    assert r.json()["data"]["game"]["called_numbers"] == []

    updated = client.patch(f"/games/{game.id}", json={"name": "Round 2"}, headers=AUTH_HEADERS)
    assert updated.status_code == 200
    assert updated.json()["data"]["game"]["name"] == "Round 2"

    assert client.delete(f"/games/{game.id}", headers=AUTH_HEADERS).status_code == 200
    assert client.get(f"/games/{game.id}").status_code == 404
    assert client.delete(f"/games/{game.id}", headers=AUTH_HEADERS).status_code == 404


def test_host_resume_without_games(client):
    r = client.post("/host/resume", headers=OTHER_HOST_HEADERS)
    assert r.status_code == 200
    assert r.json()["data"]["action"] == "none"


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------
def test_websocket_pushes_state_and_announcements(client, make_ticket, make_game, monkeypatch):
    monkeypatch.setattr(settings, "DISPLAY_WINDOW_SECONDS", 5.0)
    game = make_game(_tickets(make_ticket), called=[1, 2], call_interval=5)

    with client.websocket_connect(f"/ws/games/{game.id}") as ws:
        first = ws.receive_json()
        assert first["type"] == "game_state"
        assert first["payload"]["called_numbers"] == [1, 2]

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        assert client.post(f"/games/{game.id}/call", headers=AUTH_HEADERS).status_code == 200
        state = ws.receive_json()
        assert state["type"] == "game_state"
        assert state["payload"]["called_numbers"] == [1, 2, 3]
        event = ws.receive_json()
        assert event["type"] == "event"
        assert event["payload"]["kind"] == "numberCalled"
        assert event["payload"]["payload"]["number"] == 3


def test_websocket_unknown_game_is_closed(client):
    with client.websocket_connect("/ws/games/missing") as ws:
        assert ws.receive_json()["error"] == "game_not_found"
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
        assert exc.value.code == 4404

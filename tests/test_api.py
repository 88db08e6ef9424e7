"""Tests for the FastAPI DuoSpace interface."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from duospace.api import create_app
from duospace.service import DuoSpaceService


@pytest.fixture
def client(settings) -> TestClient:
    service = DuoSpaceService.in_memory(settings=settings)
    return TestClient(create_app(settings, service))


def login(client: TestClient, username: str) -> str:
    response = client.post("/api/login", json={"username": username})
    assert response.status_code == 200
    return response.json()["user"]["id"]


def make_pair(client: TestClient):
    alice = login(client, "Alice")
    bob = login(client, "Bob")
    created = client.post("/api/spaces", json={"userId": alice, "name": "Nest"})
    assert created.status_code == 200
    space = created.json()
    joined = client.post("/api/spaces/join", json={"userId": bob, "code": space["code"].lower()})
    assert joined.status_code == 200
    return space["id"], alice, bob


def test_login_and_availability(client):
    user_id = login(client, "Alice")
    assert login(client, "alice") == user_id
    response = client.get("/api/users/availability", params={"username": "ALICE"})
    assert response.json() == {"available": False}


def test_space_scenario_and_game(client):
    space_id, alice, bob = make_pair(client)
    space = client.get(f"/api/spaces/{space_id}").json()
    assert space["members"] == [alice, bob]

    move = client.post(f"/api/spaces/{space_id}/game/move", json={"userId": alice, "cell": 0})
    assert move.status_code == 200
    state = move.json()
    assert state["board"][0] == "X"
    assert state["currentPlayer"] == bob

    occupied = client.post(f"/api/spaces/{space_id}/game/move", json={"userId": bob, "cell": 0})
    assert occupied.status_code == 400
    assert occupied.json()["error"] == "CellOccupied"

    wrong_turn = client.post(f"/api/spaces/{space_id}/game/move", json={"userId": alice, "cell": 1})
    assert wrong_turn.json()["error"] == "NotYourTurn"

    state = client.post(f"/api/spaces/{space_id}/game/move", json={"userId": bob, "cell": 4}).json()
    assert state["board"][4] == "O"
    assert state["currentPlayer"] == alice


def test_reset_needs_both_members(client):
    space_id, alice, bob = make_pair(client)
    client.post(f"/api/spaces/{space_id}/game/move", json={"userId": alice, "cell": 0})
    first = client.post(f"/api/spaces/{space_id}/game/reset", json={"userId": alice}).json()
    assert first["game"]["resetRequests"] == [alice]
    assert first["game"]["board"][0] == "X"
    second = client.post(f"/api/spaces/{space_id}/game/reset", json={"userId": bob}).json()
    assert second["game"]["board"] == [None] * 9
    assert second["game"]["resetRequests"] == []


def test_rejects_out_of_range_cell(client):
    space_id, alice, _ = make_pair(client)
    response = client.post(f"/api/spaces/{space_id}/game/move", json={"userId": alice, "cell": 9})
    assert response.status_code == 422


def test_invalid_code_and_already_in_space(client):
    alice = login(client, "Alice")
    missing = client.post("/api/spaces/join", json={"userId": alice, "code": "NOPE00"})
    assert missing.status_code == 400
    assert missing.json()["error"] == "InvalidInviteCode"

    client.post("/api/spaces", json={"userId": alice})
    again = client.post("/api/spaces", json={"userId": alice})
    assert again.json()["error"] == "AlreadyInSpace"


def test_messages_replies_and_leave_purge(client):
    space_id, alice, bob = make_pair(client)
    sent = client.post(
        f"/api/spaces/{space_id}/messages", json={"senderId": alice, "content": "hi"}
    ).json()
    reply = client.post(
        f"/api/spaces/{space_id}/messages",
        json={"senderId": bob, "content": "hey", "replyToId": sent[0]["id"]},
    ).json()
    assert reply[0]["replyTo"] == {"id": sent[0]["id"], "content": "hi", "senderId": alice}

    marked = client.post(f"/api/spaces/{space_id}/messages/read", json={"userId": bob})
    assert marked.json() == {"marked": 1}

    listed = client.get(f"/api/spaces/{space_id}/messages").json()
    assert [m["content"] for m in listed] == ["hi", "hey"]

    client.post(f"/api/spaces/{space_id}/leave", json={"userId": alice})
    assert client.get(f"/api/spaces/{space_id}").json()["members"] == [bob]
    client.post(f"/api/spaces/{space_id}/leave", json={"userId": bob})
    assert client.get(f"/api/spaces/{space_id}").status_code == 404
    assert client.get(f"/api/spaces/{space_id}/messages").json() == []


def test_songs_fall_back_without_api_key(client):
    space_id, alice, bob = make_pair(client)
    shared = client.post(
        f"/api/spaces/{space_id}/songs",
        json={"userId": alice, "url": "https://soundcloud.com/artist/track"},
    )
    assert shared.status_code == 200
    song = shared.json()["metadata"]["musicData"]
    assert song["title"] == "Shared Link"
    assert song["platform"] == "soundcloud"

    reacted = client.post(
        f"/api/spaces/{space_id}/songs/{song['id']}/reactions",
        json={"userId": bob, "reaction": "like"},
    )
    assert reacted.json()["reactions"] == {bob: "like"}
    songs = client.get(f"/api/spaces/{space_id}/songs").json()
    assert songs[0]["reactions"] == {bob: "like"}


def test_settings_update(client):
    alice = login(client, "Alice")
    response = client.patch(f"/api/users/{alice}/settings", json={"theme": "dark", "readReceipts": False})
    assert response.status_code == 200
    assert response.json()["settings"] == {"readReceipts": False, "lastSeen": True, "theme": "dark"}
    bad = client.patch(f"/api/users/{alice}/settings", json={"theme": "neon"})
    assert bad.status_code == 422
    missing = client.patch("/api/users/nobody/settings", json={"theme": "dark"})
    assert missing.status_code == 404


def test_list_user_spaces(client):
    space_id, alice, _ = make_pair(client)
    spaces = client.get(f"/api/users/{alice}/spaces").json()
    assert [s["id"] for s in spaces] == [space_id]

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from member_api import create_app

AUTH = {"Authorization": "Bearer s3cret"}


@pytest.fixture
def calls():
    return []


@pytest.fixture
def client(calls):
    async def check_member(user_id: int) -> bool:
        calls.append(user_id)
        return user_id == 11

    return TestClient(create_app("s3cret", check_member))


def test_member_present(client, calls):
    resp = client.post("/check-member", json={"discordId": "11"}, headers=AUTH)
    assert resp.status_code == 200
    assert resp.json() == {"isOnServer": True}
    assert calls == [11]


def test_member_absent(client):
    resp = client.post("/check-member", json={"discordId": "12"}, headers=AUTH)
    assert resp.status_code == 200
    assert resp.json() == {"isOnServer": False}


@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "s3cret"}, {"Authorization": "bearer s3cret"}],
)
def test_bad_secret_is_401(client, calls, headers):
    resp = client.post("/check-member", json={"discordId": "11"}, headers=headers)
    assert resp.status_code == 401
    assert "error" in resp.json()
    assert calls == []


@pytest.mark.parametrize("body", [{}, {"discordId": ""}, {"discordId": None}, ["11"]])
def test_missing_discord_id_is_not_on_server(client, calls, body):
    resp = client.post("/check-member", json=body, headers=AUTH)
    assert resp.status_code == 200
    assert resp.json() == {"isOnServer": False}
    assert calls == []


def test_non_numeric_id_is_not_on_server(client, calls):
    resp = client.post("/check-member", json={"discordId": "alice"}, headers=AUTH)
    assert resp.json() == {"isOnServer": False}
    assert calls == []


def test_lookup_failure_answers_false():
    async def broken(user_id: int) -> bool:
        raise RuntimeError("bot loop not running")

    client = TestClient(create_app("s3cret", broken))
    resp = client.post("/check-member", json={"discordId": "11"}, headers=AUTH)
    assert resp.status_code == 200
    assert resp.json() == {"isOnServer": False}

"""Tests for accepting, rejecting, confirming by link and disconnecting."""

import asyncio
from datetime import timedelta

import pytest
from httpx import AsyncClient

from gifts import tasks
from gifts.binding.pending import PENDING, REJECTED, set_status
from gifts.binding.service import ALREADY_CONNECTED_MESSAGE, PROCESSED_MESSAGE, accept_request, respond
from gifts.db.base import utcnow
from gifts.errors import Conflict, NotFound
from gifts.rowstore import TransportError, eq
from tests.helpers import auth_headers


async def _open_request(client: AsyncClient, store, requester, target):
    response = await client.post(
        "/api/settings/connect", json={"inviteCode": target["invitation_code"]}, headers=auth_headers(requester)
    )
    assert response.status_code == 202
    return await store.get("binding_requests", where=eq("requester_user_id", requester["id"]))


async def _user(store, user_id):
    return await store.get("users", where=eq("id", user_id))


class TestRespond:
    async def test_accept_binds_both(self, client: AsyncClient, store, mock_email_service, alice, bob):
        request = await _open_request(client, store, alice, bob)
        response = await client.post(
            f"/api/bindings/{request['id']}/respond", json={"action": "accept"}, headers=auth_headers(bob)
        )
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["action"] == "accept"
        assert data["settings"]["isConnected"] is True
        assert data["settings"]["boundInviteCode"] == alice["invitation_code"]

        a, b = await _user(store, alice["id"]), await _user(store, bob["id"])
        assert a["partner_id"] == bob["id"]
        assert b["partner_id"] == alice["id"]
        assert a["bound_invitation_code"] == bob["invitation_code"]
        assert (await store.get("binding_requests", where=eq("id", request["id"])))["status"] == "accepted"

        for uid in (alice["id"], bob["id"]):
            row = await store.get("user_settings", where=eq("user_id", uid))
            assert row["is_connected"] is True

        me = await client.get("/api/auth/me", headers=auth_headers(alice))
        assert me.json()["partner"]["id"] == bob["id"]

    async def test_reject(self, client: AsyncClient, store, mock_email_service, alice, bob):
        request = await _open_request(client, store, alice, bob)
        response = await client.post(
            f"/api/bindings/{request['id']}/respond", json={"action": "REJECT"}, headers=auth_headers(bob)
        )
        assert response.status_code == 200
        assert response.json()["settings"]["isConnected"] is False
        assert (await store.get("binding_requests", where=eq("id", request["id"])))["status"] == "rejected"
        assert (await _user(store, alice["id"]))["partner_id"] is None

        await tasks.drain()
        titles = [n["title"] for n in await store.select("notifications", where=eq("user_id", alice["id"]))]
        assert "Binding request rejected" in titles

    async def test_only_target_can_respond(self, client: AsyncClient, store, mock_email_service, alice, bob):
        request = await _open_request(client, store, alice, bob)
        response = await client.post(
            f"/api/bindings/{request['id']}/respond", json={"action": "accept"}, headers=auth_headers(alice)
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "Binding request not found or already processed"

    async def test_bad_action(self, client: AsyncClient, store, mock_email_service, alice, bob):
        request = await _open_request(client, store, alice, bob)
        response = await client.post(
            f"/api/bindings/{request['id']}/respond", json={"action": "maybe"}, headers=auth_headers(bob)
        )
        assert response.status_code == 400

    async def test_expired(self, client: AsyncClient, store, mock_email_service, alice, bob):
        request = await _open_request(client, store, alice, bob)
        await store.update(
            "binding_requests", {"expires_at": utcnow() - timedelta(seconds=1)}, where=eq("status", "pending")
        )
        response = await client.post(
            f"/api/bindings/{request['id']}/respond", json={"action": "accept"}, headers=auth_headers(bob)
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Binding request expired"
        assert (await store.get("binding_requests", where=eq("id", request["id"])))["status"] == "expired"

    async def test_processed_twice(self, client: AsyncClient, store, mock_email_service, alice, bob):
        request = await _open_request(client, store, alice, bob)
        url = f"/api/bindings/{request['id']}/respond"
        await client.post(url, json={"action": "accept"}, headers=auth_headers(bob))
        response = await client.post(url, json={"action": "accept"}, headers=auth_headers(bob))
        assert response.status_code == 404


class TestConfirmLink:
    async def test_confirm_binds(self, client: AsyncClient, store, mock_email_service, alice, bob):
        request = await _open_request(client, store, alice, bob)
        response = await client.get("/api/bindings/confirm", params={"token": request["confirm_token"]})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "Binding Success" in response.text
        assert (await _user(store, bob["id"]))["partner_id"] == alice["id"]

    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/api/bindings/confirm")
        assert response.status_code == 400
        assert "Missing confirmation token" in response.text

    async def test_unknown_token(self, client: AsyncClient):
        response = await client.get("/api/bindings/confirm", params={"token": "nope"})
        assert response.status_code == 404

    async def test_expired_link(self, client: AsyncClient, store, mock_email_service, alice, bob):
        request = await _open_request(client, store, alice, bob)
        await store.update(
            "binding_requests", {"expires_at": utcnow() - timedelta(seconds=1)}, where=eq("status", "pending")
        )
        response = await client.get("/api/bindings/confirm", params={"token": request["confirm_token"]})
        assert response.status_code == 400
        assert "Request Expired" in response.text

    async def test_side_already_bound(self, client: AsyncClient, store, mock_email_service, alice, bob, make_user):
        request = await _open_request(client, store, alice, bob)
        carol = await make_user("carol@example.com")
        await store.update(
            "users", {"partner_id": carol["id"], "bound_invitation_code": carol["invitation_code"]},
            where=eq("id", bob["id"]),
        )
        response = await client.get("/api/bindings/confirm", params={"token": request["confirm_token"]})
        assert response.status_code == 409
        assert (await store.get("binding_requests", where=eq("id", request["id"])))["status"] == "rejected"


class TestAcceptRaces:
    async def test_concurrent_accepts_bind_once(self, client: AsyncClient, store, mock_email_service, alice, bob):
        request = await _open_request(client, store, alice, bob)
        results = await asyncio.gather(
            accept_request(store, request), accept_request(store, request), return_exceptions=True
        )
        successes = [r for r in results if isinstance(r, tuple)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], Conflict)

        assert (await _user(store, alice["id"]))["partner_id"] == bob["id"]
        assert (await _user(store, bob["id"]))["partner_id"] == alice["id"]
        assert (await store.get("binding_requests", where=eq("id", request["id"])))["status"] == "accepted"

    async def test_second_half_failure_rolls_back(
        self, client: AsyncClient, store, mock_email_service, alice, bob, monkeypatch
    ):
        request = await _open_request(client, store, alice, bob)
        real_update = store.update
        binds = {"n": 0}

        async def flaky_update(table, values, *args, **kwargs):
            if table == "users" and values.get("partner_id"):
                binds["n"] += 1
                if binds["n"] == 2:
                    raise TransportError("connection reset")
            return await real_update(table, values, *args, **kwargs)

        monkeypatch.setattr(store, "update", flaky_update)

        with pytest.raises(Conflict) as exc_info:
            await accept_request(store, request)
        assert exc_info.value.detail == ALREADY_CONNECTED_MESSAGE

        a, b = await _user(store, alice["id"]), await _user(store, bob["id"])
        assert a["partner_id"] is None
        assert a["bound_invitation_code"] is None
        assert b["partner_id"] is None
        assert (await store.get("binding_requests", where=eq("id", request["id"])))["status"] == "rejected"

    async def test_second_half_lost_race(
        self, client: AsyncClient, store, mock_email_service, alice, bob, make_user, monkeypatch
    ):
        request = await _open_request(client, store, alice, bob)
        carol = await make_user("carol@example.com")
        real_update = store.update

        async def bind_bob_elsewhere_first(table, values, *args, **kwargs):
            if table == "users" and values.get("partner_id") == bob["id"]:
                rows = await real_update(table, values, *args, **kwargs)
                await real_update(
                    "users", {"partner_id": carol["id"], "bound_invitation_code": carol["invitation_code"]},
                    where=eq("id", bob["id"]),
                )
                return rows
            return await real_update(table, values, *args, **kwargs)

        monkeypatch.setattr(store, "update", bind_bob_elsewhere_first)
        with pytest.raises(Conflict):
            await accept_request(store, request)

        assert (await _user(store, alice["id"]))["partner_id"] is None
        assert (await _user(store, bob["id"]))["partner_id"] == carol["id"]


    async def test_reject_loses_to_accept_finished_meanwhile(
        self, client: AsyncClient, store, mock_email_service, alice, bob, monkeypatch
    ):
        request = await _open_request(client, store, alice, bob)
        real_get = store.get
        interleaved = []

        async def get_then_accept(table, *args, **kwargs):
            row = await real_get(table, *args, **kwargs)
            if table == "binding_requests" and row is not None and not interleaved:
                interleaved.append(row["id"])
                await accept_request(store, row)
            return row

        monkeypatch.setattr(store, "get", get_then_accept)
        with pytest.raises(NotFound) as exc_info:
            await respond(store, bob["id"], request["id"], {"action": "reject"})
        monkeypatch.setattr(store, "get", real_get)

        assert exc_info.value.detail == PROCESSED_MESSAGE
        assert (await store.get("binding_requests", where=eq("id", request["id"])))["status"] == "accepted"
        assert (await _user(store, alice["id"]))["partner_id"] == bob["id"]
        await tasks.drain()
        titles = [n["title"] for n in await store.select("notifications", where=eq("user_id", alice["id"]))]
        assert "Binding request rejected" not in titles

    async def test_accept_loses_to_reject_finished_meanwhile(
        self, client: AsyncClient, store, mock_email_service, alice, bob, monkeypatch
    ):
        request = await _open_request(client, store, alice, bob)
        real_get = store.get
        interleaved = []

        async def get_then_reject(table, *args, **kwargs):
            row = await real_get(table, *args, **kwargs)
            if table == "binding_requests" and row is not None and not interleaved:
                interleaved.append(row["id"])
                await set_status(store, row["id"], REJECTED, only_if=PENDING)
            return row

        monkeypatch.setattr(store, "get", get_then_reject)
        with pytest.raises(Conflict) as exc_info:
            await respond(store, bob["id"], request["id"], {"action": "accept"})
        monkeypatch.setattr(store, "get", real_get)

        assert exc_info.value.detail == PROCESSED_MESSAGE
        assert (await store.get("binding_requests", where=eq("id", request["id"])))["status"] == "rejected"
        a, b = await _user(store, alice["id"]), await _user(store, bob["id"])
        assert a["partner_id"] is None
        assert a["bound_invitation_code"] is None
        assert b["partner_id"] is None


class TestDisconnect:
    async def test_disconnect_clears_both(self, client: AsyncClient, store, couple):
        alice, bob = couple
        response = await client.post("/api/settings/disconnect", headers=auth_headers(alice))
        assert response.status_code == 200
        settings = response.json()["settings"]
        assert settings["isConnected"] is False
        assert settings["boundInviteCode"] is None
        assert settings["inviteCode"] == alice["invitation_code"]

        a, b = await _user(store, alice["id"]), await _user(store, bob["id"])
        assert a["partner_id"] is None
        assert b["partner_id"] is None
        assert b["bound_invitation_code"] is None

        await tasks.drain()
        titles = [n["title"] for n in await store.select("notifications", where=eq("user_id", bob["id"]))]
        assert titles == ["Relationship disconnected"]

    async def test_partner_moved_on_is_left_alone(self, client: AsyncClient, store, couple, make_user):
        alice, bob = couple
        carol = await make_user("carol@example.com")
        await store.update("users", {"partner_id": carol["id"]}, where=eq("id", bob["id"]))
        await client.post("/api/settings/disconnect", headers=auth_headers(alice))
        assert (await _user(store, bob["id"]))["partner_id"] == carol["id"]

    async def test_disconnect_when_single(self, client: AsyncClient, alice):
        response = await client.post("/api/settings/disconnect", headers=auth_headers(alice))
        assert response.status_code == 200
        assert response.json()["settings"]["isConnected"] is False

    async def test_can_rebind_after_disconnect(self, client: AsyncClient, store, mock_email_service, couple):
        alice, bob = couple
        await client.post("/api/settings/disconnect", headers=auth_headers(alice))
        request = await _open_request(client, store, bob, alice)
        response = await client.post(
            f"/api/bindings/{request['id']}/respond", json={"action": "accept"}, headers=auth_headers(alice)
        )
        assert response.status_code == 200
        assert (await _user(store, alice["id"]))["partner_id"] == bob["id"]

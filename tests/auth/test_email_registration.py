"""Tests for signup by emailed verification code."""

from httpx import AsyncClient

from gifts import tasks
from gifts.auth.service import REGISTER_CODE_RESPONSE_MESSAGE
from gifts.auth.verification import VERIFY_FAILED_MESSAGE, hash_code
from gifts.rowstore import eq
from tests.helpers import TEST_PASSWORD, register_via_api, sent_code


class TestRequestCode:
    async def test_sends_code(self, client: AsyncClient, mock_email_service):
        response = await client.post(
            "/api/auth/register/request-code", json={"email": "New@Example.com", "password": TEST_PASSWORD}
        )
        assert response.status_code == 200
        data = response.json()
        assert data == {"ok": True, "message": REGISTER_CODE_RESPONSE_MESSAGE, "expiresInMinutes": 10}
        await tasks.drain()
        code = sent_code(mock_email_service, "new@example.com")
        assert len(code) == 6
        assert code[0] != "0"

    async def test_stores_only_hashes(self, client: AsyncClient, store, mock_email_service):
        await client.post("/api/auth/register/request-code", json={"email": "a@example.com", "password": TEST_PASSWORD})
        await tasks.drain()
        code = sent_code(mock_email_service, "a@example.com")
        row = await store.get("email_verifications", where=eq("email", "a@example.com"))
        assert row["code_hash"] == hash_code(code)
        assert row["password_hash"].startswith("$argon2id$")
        assert TEST_PASSWORD not in row["password_hash"]

    async def test_verified_email_gets_same_answer_but_no_mail(self, client: AsyncClient, mock_email_service, alice):
        response = await client.post(
            "/api/auth/register/request-code", json={"email": alice["email"], "password": TEST_PASSWORD}
        )
        assert response.status_code == 200
        assert response.json()["message"] == REGISTER_CODE_RESPONSE_MESSAGE
        await tasks.drain()
        mock_email_service.send_template.assert_not_called()

    async def test_short_password_rejected(self, client: AsyncClient, mock_email_service):
        response = await client.post(
            "/api/auth/register/request-code", json={"email": "a@example.com", "password": "123"}
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "密码至少 6 位"

    async def test_bad_email_rejected(self, client: AsyncClient):
        response = await client.post("/api/auth/register/request-code", json={"email": "nope", "password": TEST_PASSWORD})
        assert response.status_code == 400

    async def test_cooldown(self, client: AsyncClient, mock_email_service, monkeypatch):
        from gifts.config import get_settings

        monkeypatch.setattr(get_settings(), "signup_code_cooldown_seconds", 45)
        body = {"email": "a@example.com", "password": TEST_PASSWORD}
        assert (await client.post("/api/auth/register/request-code", json=body)).status_code == 200
        response = await client.post("/api/auth/register/request-code", json=body)
        assert response.status_code == 429


class TestVerify:
    async def test_verify_creates_account(self, client: AsyncClient, store, mock_email_service):
        data = await register_via_api(client, mock_email_service, "new@example.com")
        assert data["token"]
        assert data["partner"] is None
        user = data["user"]
        assert user["email"] == "new@example.com"
        assert user["emailVerified"] is True
        assert user["name"] == "new"
        assert user["invitationCode"].startswith("GIFT-")
        assert await store.count("email_verifications") == 0

        await tasks.drain()
        settings = await store.get("user_settings", where=eq("user_id", user["id"]))
        assert settings is not None
        notifications = await store.select("notifications", where=eq("user_id", user["id"]))
        assert [n["title"] for n in notifications] == ["注册成功"]

    async def test_token_works(self, client: AsyncClient, mock_email_service):
        data = await register_via_api(client, mock_email_service, "new@example.com")
        response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert response.status_code == 200
        assert response.json()["user"]["id"] == data["user"]["id"]

    async def test_wrong_code(self, client: AsyncClient, mock_email_service):
        await client.post("/api/auth/register/request-code", json={"email": "a@example.com", "password": TEST_PASSWORD})
        await tasks.drain()
        code = sent_code(mock_email_service, "a@example.com")
        wrong = "999999" if code != "999999" else "888888"
        response = await client.post("/api/auth/register/verify", json={"email": "a@example.com", "code": wrong})
        assert response.status_code == 400
        assert response.json()["detail"] == VERIFY_FAILED_MESSAGE

    async def test_attempts_are_capped(self, client: AsyncClient, mock_email_service):
        await client.post("/api/auth/register/request-code", json={"email": "a@example.com", "password": TEST_PASSWORD})
        await tasks.drain()
        code = sent_code(mock_email_service, "a@example.com")
        wrong = "999999" if code != "999999" else "888888"
        for _ in range(5):
            await client.post("/api/auth/register/verify", json={"email": "a@example.com", "code": wrong})
        response = await client.post("/api/auth/register/verify", json={"email": "a@example.com", "code": code})
        assert response.status_code == 400
        assert response.json()["detail"] == VERIFY_FAILED_MESSAGE

    async def test_expired_code(self, client: AsyncClient, store, mock_email_service):
        from datetime import timedelta

        from gifts.db.base import utcnow

        await client.post("/api/auth/register/request-code", json={"email": "a@example.com", "password": TEST_PASSWORD})
        await tasks.drain()
        code = sent_code(mock_email_service, "a@example.com")
        await store.update(
            "email_verifications", {"expires_at": utcnow() - timedelta(seconds=1)}, where=eq("email", "a@example.com")
        )
        response = await client.post("/api/auth/register/verify", json={"email": "a@example.com", "code": code})
        assert response.status_code == 400
        assert await store.count("email_verifications") == 0

    async def test_new_code_replaces_old(self, client: AsyncClient, mock_email_service):
        body = {"email": "a@example.com", "password": TEST_PASSWORD}
        await client.post("/api/auth/register/request-code", json=body)
        await tasks.drain()
        first = sent_code(mock_email_service, "a@example.com")
        await client.post("/api/auth/register/request-code", json=body)
        await tasks.drain()
        second = sent_code(mock_email_service, "a@example.com")
        if first != second:
            response = await client.post("/api/auth/register/verify", json={"email": "a@example.com", "code": first})
            assert response.status_code == 400
        response = await client.post("/api/auth/register/verify", json={"email": "a@example.com", "code": second})
        assert response.status_code == 201

    async def test_malformed_code(self, client: AsyncClient):
        response = await client.post("/api/auth/register/verify", json={"email": "a@example.com", "code": "12ab"})
        assert response.status_code == 400
        assert response.json()["detail"] == "验证码格式不正确"

    async def test_legacy_register_endpoint_is_retired(self, client: AsyncClient):
        response = await client.post("/api/auth/register", json={"email": "a@example.com"})
        assert response.status_code == 400
        assert "/api/auth/register/request-code" in response.json()["detail"]

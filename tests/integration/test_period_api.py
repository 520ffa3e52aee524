"""Tests for the period tracker API."""

from httpx import AsyncClient

from tests.helpers import auth_headers


async def _patch(client: AsyncClient, user, day: str, **body):
    return await client.patch(f"/api/period-tracker/{day}", json=body, headers=auth_headers(user))


class TestPeriodTrackerAPI:
    async def test_mark_period_day(self, client: AsyncClient, alice):
        response = await _patch(client, alice, "2024-03-05", isPeriod=True, mood="开心", flow="Medium")
        assert response.status_code == 200
        entry = response.json()["entry"]
        assert response.json()["ok"] is True
        assert (entry["date"], entry["isPeriod"], entry["mood"], entry["flow"]) == ("2024-03-05", True, "开心", "medium")
        assert entry["author"]["gender"] == "female"

    async def test_upsert_same_day(self, client: AsyncClient, alice):
        first = (await _patch(client, alice, "2024-03-05", isPeriod=True)).json()["entry"]
        second = (await _patch(client, alice, "2024-03-05", isPeriod=True, mood="平静")).json()["entry"]
        assert second["id"] == first["id"]
        assert second["mood"] == "平静"

    async def test_flow_dropped_on_non_period_day(self, client: AsyncClient, alice):
        entry = (await _patch(client, alice, "2024-03-05", mood="难过", flow="heavy")).json()["entry"]
        assert entry["isPeriod"] is False
        assert entry["flow"] is None

    async def test_male_cannot_mark_period(self, client: AsyncClient, bob):
        response = await _patch(client, bob, "2024-03-05", isPeriod=True)
        assert response.status_code == 400
        assert response.json()["detail"] == "Male account cannot mark period status"

    async def test_male_can_log_mood(self, client: AsyncClient, bob):
        response = await _patch(client, bob, "2024-03-05", mood="幸福")
        assert response.status_code == 200
        assert response.json()["entry"]["mood"] == "幸福"

    async def test_empty_entry_is_deleted(self, client: AsyncClient, alice):
        await _patch(client, alice, "2024-03-05", isPeriod=True)
        response = await _patch(client, alice, "2024-03-05", isPeriod=False)
        assert response.json() == {"ok": True, "entry": None}
        entries = (await client.get("/api/period-tracker", headers=auth_headers(alice))).json()["entries"]
        assert entries == []

    async def test_bad_date(self, client: AsyncClient, alice):
        response = await _patch(client, alice, "March-5", isPeriod=True)
        assert response.status_code == 400

    async def test_range_and_partner_entries(self, client: AsyncClient, couple):
        alice, bob = couple
        await _patch(client, alice, "2024-03-01", isPeriod=True)
        await _patch(client, alice, "2024-03-10", isPeriod=True)
        await _patch(client, bob, "2024-03-05", mood="开心")

        response = await client.get(
            "/api/period-tracker", params={"start": "2024-03-02", "end": "2024-03-31"}, headers=auth_headers(bob)
        )
        entries = response.json()["entries"]
        assert [e["date"] for e in entries] == ["2024-03-10", "2024-03-05"]
        assert {e["userId"] for e in entries} == {alice["id"], bob["id"]}

    async def test_bad_range(self, client: AsyncClient, alice):
        response = await client.get("/api/period-tracker", params={"start": "yesterday"}, headers=auth_headers(alice))
        assert response.status_code == 400

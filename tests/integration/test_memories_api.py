"""Tests for the memories API."""

from httpx import AsyncClient

from gifts import tasks
from gifts.memories.service import ROTATIONS
from gifts.rowstore import eq
from tests.helpers import TINY_PNG, auth_headers


def _memory(title: str = "Picnic", date: str = "2024-03-05", image: str = TINY_PNG, **extra) -> dict:
    return {"title": title, "date": date, "image": image, **extra}


async def _create(client: AsyncClient, user, **kwargs):
    return await client.post("/api/memories", json=_memory(**kwargs), headers=auth_headers(user))


class TestCreateMemory:
    async def test_data_url_is_stored_in_bucket(self, client: AsyncClient, store, blob_store, alice):
        response = await _create(client, alice)
        assert response.status_code == 201
        memory = response.json()["memory"]
        assert memory["title"] == "Picnic"
        assert memory["date"] == "2024-03-05"
        assert memory["rotation"] in ROTATIONS
        assert memory["userId"] == alice["id"]
        assert memory["image"].startswith("https://blobs.test/signed/memories/")

        row = await store.get("memories", where=eq("id", memory["id"]))
        assert row["image"].startswith("storage:memories/")
        assert list(blob_store.objects) == [row["image"].removeprefix("storage:")]

    async def test_plain_url_kept(self, client: AsyncClient, blob_store, alice):
        response = await _create(client, alice, image="https://img.test/a.jpg")
        assert response.json()["memory"]["image"] == "https://img.test/a.jpg"
        assert blob_store.objects == {}

    async def test_loose_date_normalized(self, client: AsyncClient, alice):
        response = await _create(client, alice, date="2024/3/5")
        assert response.json()["memory"]["date"] == "2024-03-05"

    async def test_explicit_rotation(self, client: AsyncClient, alice):
        response = await _create(client, alice, rotation="-rotate-1")
        assert response.json()["memory"]["rotation"] == "-rotate-1"

    async def test_invalid_rotation(self, client: AsyncClient, alice):
        response = await _create(client, alice, rotation="sideways")
        assert response.status_code == 400

    async def test_missing_fields(self, client: AsyncClient, alice):
        response = await client.post("/api/memories", json={"title": "x"}, headers=auth_headers(alice))
        assert response.status_code == 400
        assert response.json()["detail"] == "title, date and image are required"

    async def test_bad_date(self, client: AsyncClient, alice):
        response = await _create(client, alice, date="sometime")
        assert response.status_code == 400

    async def test_retry_is_deduplicated(self, client: AsyncClient, store, alice):
        first = await _create(client, alice)
        second = await _create(client, alice)
        assert second.status_code == 200
        assert second.json()["deduped"] is True
        assert second.json()["memory"]["id"] == first.json()["memory"]["id"]
        assert await store.count("memories") == 1

    async def test_different_title_is_not_deduplicated(self, client: AsyncClient, store, alice):
        await _create(client, alice)
        response = await _create(client, alice, title="Dinner")
        assert response.status_code == 201
        assert await store.count("memories") == 2

    async def test_upload_failure_falls_back_to_inline(self, client: AsyncClient, store, blob_store, alice):
        blob_store.fail_uploads = True
        response = await _create(client, alice)
        assert response.status_code == 201
        assert response.json()["memory"]["image"] == TINY_PNG

    async def test_requires_auth(self, client: AsyncClient):
        response = await client.post("/api/memories", json=_memory())
        assert response.status_code == 401


class TestBatch:
    async def test_batch_create(self, client: AsyncClient, store, blob_store, alice):
        items = [_memory(title=f"Photo {i}") for i in range(3)]
        response = await client.post("/api/memories/batch", json={"memories": items}, headers=auth_headers(alice))
        assert response.status_code == 201
        memories = response.json()["memories"]
        assert [m["title"] for m in memories] == ["Photo 0", "Photo 1", "Photo 2"]
        assert await store.count("memories") == 3
        assert len(blob_store.objects) == 3

    async def test_too_many(self, client: AsyncClient, alice):
        items = [_memory(title=f"Photo {i}", image="https://img.test/a.jpg") for i in range(31)]
        response = await client.post("/api/memories/batch", json={"memories": items}, headers=auth_headers(alice))
        assert response.status_code == 400

    async def test_empty(self, client: AsyncClient, alice):
        response = await client.post("/api/memories/batch", json={"memories": []}, headers=auth_headers(alice))
        assert response.status_code == 400
        assert response.json()["detail"] == "memories is required"

    async def test_invalid_item_removes_uploads(self, client: AsyncClient, store, blob_store, alice):
        items = [_memory(title="Fine"), _memory(title="Broken", date="")]
        response = await client.post("/api/memories/batch", json={"memories": items}, headers=auth_headers(alice))
        assert response.status_code == 400
        assert blob_store.objects == {}
        assert await store.count("memories") == 0

    async def test_invalid_item_waits_for_running_uploads(self, client: AsyncClient, store, blob_store, alice):
        blob_store.upload_delay = 0.05
        items = [_memory(title="Slow"), _memory(title="Broken", date=""), _memory(title="Never started")]
        response = await client.post("/api/memories/batch", json={"memories": items}, headers=auth_headers(alice))
        assert response.status_code == 400
        assert response.json()["detail"] == "Item 2 is missing title, date or image"
        assert blob_store.objects == {}
        assert len(blob_store.removed) == 1
        assert await store.count("memories") == 0


class TestListMemories:
    async def test_partner_memories_visible(self, client: AsyncClient, couple):
        alice, bob = couple
        await _create(client, bob, title="Bob's photo")
        response = await client.get("/api/memories", headers=auth_headers(alice))
        assert response.status_code == 200
        memories = response.json()["memories"]
        assert len(memories) == 1
        assert memories[0]["author"]["name"] == "Bob"

    async def test_strangers_hidden(self, client: AsyncClient, alice, bob):
        await _create(client, bob)
        response = await client.get("/api/memories", headers=auth_headers(alice))
        assert response.json()["memories"] == []

    async def test_full_list_includes_year_stats(self, client: AsyncClient, alice):
        await _create(client, alice, title="a", date="2023-01-01")
        await _create(client, alice, title="b", date="2024-05-01")
        await _create(client, alice, title="c", date="2024-06-01")
        data = (await client.get("/api/memories", headers=auth_headers(alice))).json()
        assert len(data["memories"]) == 3
        assert data["memoryPagination"]["total"] == 3
        assert data["memoryPagination"]["hasMore"] is False
        assert [(s["year"], s["count"]) for s in data["yearStats"]] == [("2024", 2), ("2023", 1)]

    async def test_paginated(self, client: AsyncClient, alice):
        for i in range(3):
            await _create(client, alice, title=f"m{i}")
        response = await client.get("/api/memories", params={"page": 1, "limit": 2}, headers=auth_headers(alice))
        data = response.json()
        assert len(data["memories"]) == 2
        assert data["memoryPagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2, "hasMore": True}
        assert "yearStats" not in data

        second = await client.get("/api/memories", params={"page": 2, "limit": 2}, headers=auth_headers(alice))
        assert len(second.json()["memories"]) == 1

        with_stats = await client.get(
            "/api/memories", params={"page": 1, "limit": 2, "includeYearStats": "1"}, headers=auth_headers(alice)
        )
        assert with_stats.json()["yearStats"] == [
            {"year": "2024", "count": 3, "coverMemoryId": with_stats.json()["yearStats"][0]["coverMemoryId"]}
        ]

    async def test_pages_cover_full_list_in_order(self, client: AsyncClient, alice):
        for i in range(5):
            await _create(client, alice, title=f"m{i}", image=f"https://img.test/{i}.jpg")
        full = (await client.get("/api/memories", headers=auth_headers(alice))).json()["memories"]
        assert len(full) == 5

        walked = []
        page, total_pages = 1, None
        while total_pages is None or page <= total_pages:
            data = (
                await client.get("/api/memories", params={"page": page, "limit": 2}, headers=auth_headers(alice))
            ).json()
            meta = data["memoryPagination"]
            total_pages = meta["totalPages"]
            assert meta["page"] == page
            assert meta["total"] == 5
            assert meta["hasMore"] is (page < total_pages)
            walked.extend(m["id"] for m in data["memories"])
            page += 1

        assert total_pages == 3
        assert len(walked) == len(set(walked))
        assert walked == [m["id"] for m in full]


class TestUpdateDeleteMemory:
    async def test_update_fields(self, client: AsyncClient, alice):
        memory = (await _create(client, alice)).json()["memory"]
        response = await client.patch(
            f"/api/memories/{memory['id']}",
            json={"title": "Renamed", "rotation": "rotate-1"},
            headers=auth_headers(alice),
        )
        assert response.status_code == 200
        assert response.json()["memory"]["title"] == "Renamed"
        assert response.json()["memory"]["rotation"] == "rotate-1"

    async def test_replacing_image_removes_old_blob(self, client: AsyncClient, store, blob_store, alice):
        memory = (await _create(client, alice)).json()["memory"]
        old_key = (await store.get("memories", where=eq("id", memory["id"])))["image"].removeprefix("storage:")
        response = await client.patch(
            f"/api/memories/{memory['id']}", json={"image": "https://img.test/new.jpg"}, headers=auth_headers(alice)
        )
        assert response.json()["memory"]["image"] == "https://img.test/new.jpg"
        await tasks.drain()
        assert blob_store.removed == [old_key]

    async def test_partner_cannot_edit(self, client: AsyncClient, couple):
        alice, bob = couple
        memory = (await _create(client, alice)).json()["memory"]
        response = await client.patch(f"/api/memories/{memory['id']}", json={"title": "x"}, headers=auth_headers(bob))
        assert response.status_code == 404
        assert response.json()["detail"] == "Memory not found"

    async def test_nothing_to_update(self, client: AsyncClient, alice):
        memory = (await _create(client, alice)).json()["memory"]
        response = await client.patch(f"/api/memories/{memory['id']}", json={}, headers=auth_headers(alice))
        assert response.status_code == 400
        assert response.json()["detail"] == "No fields to update"

    async def test_delete_removes_blob(self, client: AsyncClient, store, blob_store, alice):
        memory = (await _create(client, alice)).json()["memory"]
        response = await client.delete(f"/api/memories/{memory['id']}", headers=auth_headers(alice))
        assert response.status_code == 204
        assert await store.count("memories") == 0
        assert blob_store.objects == {}

    async def test_delete_survives_blob_failure(self, client: AsyncClient, store, blob_store, alice):
        memory = (await _create(client, alice)).json()["memory"]
        blob_store.fail_removes = True
        response = await client.delete(f"/api/memories/{memory['id']}", headers=auth_headers(alice))
        assert response.status_code == 204
        assert await store.count("memories") == 0

    async def test_delete_foreign(self, client: AsyncClient, alice, bob):
        memory = (await _create(client, alice)).json()["memory"]
        response = await client.delete(f"/api/memories/{memory['id']}", headers=auth_headers(bob))
        assert response.status_code == 404

"""Tests for the SQLAlchemy row store against SQLite."""

from datetime import date, timedelta

import pytest

from gifts.db.base import utcnow
from gifts.rowstore import (
    ConstraintViolation,
    UniqueViolation,
    all_of,
    any_of,
    asc,
    desc,
    eq,
    gte,
    in_,
    is_null,
    lt,
)


async def _user(store, email: str, **extra) -> dict:
    rows = await store.insert("users", {"email": email, "email_verified": True, **extra})
    return rows[0]


class TestCrud:
    async def test_insert_returns_stored_row_with_defaults(self, store):
        row = await _user(store, "a@example.com")
        assert len(row["id"]) == 36
        assert row["gender"] == "male"
        assert row["token_version"] == 0
        assert row["created_at"] is not None

    async def test_insert_many_keeps_order(self, store):
        rows = await store.insert("users", [{"email": f"u{i}@example.com"} for i in range(5)])
        assert [r["email"] for r in rows] == [f"u{i}@example.com" for i in range(5)]

    async def test_select_filters_and_order(self, store):
        for i in range(4):
            await _user(store, f"u{i}@example.com", name=f"n{i}")
        rows = await store.select(
            "users",
            where=in_("email", ["u1@example.com", "u3@example.com"]),
            columns=["email", "name"],
            order_by=[desc("name")],
        )
        assert rows == [{"email": "u3@example.com", "name": "n3"}, {"email": "u1@example.com", "name": "n1"}]

    async def test_limit_offset_and_count(self, store):
        for i in range(5):
            await _user(store, f"u{i}@example.com", name=f"n{i}")
        rows = await store.select("users", order_by=[asc("name")], limit=2, offset=2)
        assert [r["name"] for r in rows] == ["n2", "n3"]
        assert await store.count("users") == 5
        assert await store.count("users", where=eq("name", "n1")) == 1

    async def test_empty_in_matches_nothing(self, store):
        await _user(store, "a@example.com")
        assert await store.select("users", where=in_("id", [])) == []

    async def test_get(self, store):
        created = await _user(store, "a@example.com")
        assert (await store.get("users", where=eq("id", created["id"])))["email"] == "a@example.com"
        assert await store.get("users", where=eq("id", "missing")) is None

    async def test_guarded_update_matches_nothing(self, store):
        user = await _user(store, "a@example.com", partner_id=None)
        first = await store.update("users", {"name": "x"}, where=all_of(eq("id", user["id"]), is_null("partner_id")))
        assert len(first) == 1
        await store.update("users", {"partner_id": user["id"]}, where=eq("id", user["id"]))
        second = await store.update(
            "users", {"name": "y"}, where=all_of(eq("id", user["id"]), is_null("partner_id"))
        )
        assert second == []

    async def test_any_of_update(self, store):
        a = await _user(store, "a@example.com")
        b = await _user(store, "b@example.com")
        await _user(store, "c@example.com")
        rows = await store.update("users", {"name": "z"}, where=any_of(eq("id", a["id"]), eq("id", b["id"])))
        assert {r["id"] for r in rows} == {a["id"], b["id"]}

    async def test_delete_returns_rows(self, store):
        user = await _user(store, "a@example.com")
        deleted = await store.delete("users", where=eq("id", user["id"]))
        assert [r["id"] for r in deleted] == [user["id"]]
        assert await store.count("users") == 0

    async def test_unknown_table(self, store):
        with pytest.raises(ValueError, match="Unknown table"):
            await store.select("nope")


class TestUpsert:
    async def test_insert_then_update_on_conflict(self, store):
        user = await _user(store, "a@example.com")
        day = date(2024, 1, 2)
        first = await store.upsert(
            "period_tracker_entries",
            {"user_id": user["id"], "entry_date": day, "is_period": True, "flow": "light"},
            conflict=["user_id", "entry_date"],
        )
        second = await store.upsert(
            "period_tracker_entries",
            {"user_id": user["id"], "entry_date": day, "is_period": True, "flow": "heavy"},
            conflict=["user_id", "entry_date"],
        )
        assert second[0]["id"] == first[0]["id"]
        assert second[0]["flow"] == "heavy"
        assert await store.count("period_tracker_entries") == 1

    async def test_upsert_on_primary_key(self, store):
        user = await _user(store, "a@example.com")
        await store.upsert("user_settings", {"user_id": user["id"], "is_connected": False}, conflict=["user_id"])
        rows = await store.upsert(
            "user_settings", {"user_id": user["id"], "is_connected": True}, conflict=["user_id"]
        )
        assert rows[0]["is_connected"] is True


class TestErrors:
    async def test_unique_violation(self, store):
        await _user(store, "a@example.com")
        with pytest.raises(UniqueViolation) as exc:
            await _user(store, "a@example.com")
        assert exc.value.touches("email")
        assert not exc.value.touches("invitation_code")

    async def test_partial_unique_index_for_pending_requests(self, store):
        a = await _user(store, "a@example.com")
        b = await _user(store, "b@example.com")
        c = await _user(store, "c@example.com")
        expires = utcnow() + timedelta(hours=1)

        def request(target: dict, token: str, status: str = "pending") -> dict:
            return {
                "requester_user_id": a["id"],
                "target_user_id": target["id"],
                "invite_code": "GIFT-AAAA",
                "confirm_token": token,
                "status": status,
                "expires_at": expires,
            }

        await store.insert("binding_requests", request(b, "t1"))
        await store.insert("binding_requests", request(c, "t2", status="rejected"))
        with pytest.raises(UniqueViolation) as exc:
            await store.insert("binding_requests", request(c, "t3"))
        assert exc.value.touches("requester_user_id")

    async def test_check_constraint(self, store):
        with pytest.raises(ConstraintViolation) as exc:
            await _user(store, "a@example.com", gender="other")
        assert not isinstance(exc.value, UniqueViolation)

    async def test_datetime_comparison(self, store):
        user = await _user(store, "a@example.com")
        await store.insert(
            "email_verifications",
            {
                "email": user["email"],
                "purpose": "signup",
                "code_hash": "h",
                "expires_at": utcnow() - timedelta(minutes=1),
            },
        )
        assert await store.count("email_verifications", where=lt("expires_at", utcnow())) == 1
        assert await store.count("email_verifications", where=gte("expires_at", utcnow())) == 0

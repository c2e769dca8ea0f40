import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tests.conftest import NOW


@pytest.mark.asyncio
async def test_guarded_update_only_matches_once(db):
    await db.jobs.insert_one({"_id": "j1", "status": "pending"})

    async def claim():
        result = await db.jobs.update_one(
            {"_id": "j1", "status": "pending"},
            {"$set": {"status": "processing"}},
        )
        return result.matched_count

    results = await asyncio.gather(claim(), claim(), claim())

    assert sorted(results) == [0, 0, 1]
    assert (await db.jobs.find_one({"_id": "j1"}))["status"] == "processing"


@pytest.mark.asyncio
async def test_datetimes_round_trip_as_aware_utc_and_compare_in_queries(db):
    naive = datetime(2025, 3, 3, 12, 0)
    offset = datetime(2025, 3, 3, 14, 0, tzinfo=timezone(timedelta(hours=3)))  # 11:00 UTC
    await db.events.insert_many([
        {"_id": "naive", "scheduledAt": naive},
        {"_id": "offset", "scheduledAt": offset},
        {"_id": "later", "scheduledAt": NOW + timedelta(seconds=1)},
    ])

    due = await db.events.find({"scheduledAt": {"$lte": NOW}}).sort("scheduledAt", 1).to_list()

    assert [d["_id"] for d in due] == ["offset", "naive"]
    assert due[0]["scheduledAt"] == offset
    assert due[0]["scheduledAt"].tzinfo is not None


@pytest.mark.asyncio
async def test_upsert_applies_set_on_insert_only_when_creating(db):
    first = await db.prefs.find_one_and_update(
        {"userId": "u1"},
        {"$set": {"emailEnabled": False}, "$setOnInsert": {"pushEnabled": True}},
        upsert=True,
        return_document=True,
    )
    second = await db.prefs.find_one_and_update(
        {"userId": "u1"},
        {"$set": {"emailEnabled": True}, "$setOnInsert": {"pushEnabled": False}},
        upsert=True,
        return_document=True,
    )

    assert first["userId"] == "u1"
    assert first["pushEnabled"] is True
    assert second["emailEnabled"] is True
    assert second["pushEnabled"] is True
    assert await db.prefs.count_documents({}) == 1


@pytest.mark.asyncio
async def test_none_matches_missing_and_null_fields(db):
    await db.items.insert_many([
        {"_id": "a", "readAt": None},
        {"_id": "b"},
        {"_id": "c", "readAt": NOW},
    ])

    unread = await db.items.find({"readAt": None}).to_list()

    assert sorted(d["_id"] for d in unread) == ["a", "b"]


@pytest.mark.asyncio
async def test_aggregate_groups_and_counts(db):
    await db.items.insert_many([
        {"userId": "u1", "type": "A"},
        {"userId": "u1", "type": "A"},
        {"userId": "u1", "type": "B"},
        {"userId": "u2", "type": "A"},
    ])

    groups = await db.items.aggregate([
        {"$match": {"userId": "u1"}},
        {"$group": {"_id": "$type", "count": {"$sum": 1}}},
    ])

    assert {g["_id"]: g["count"] for g in groups} == {"A": 2, "B": 1}


@pytest.mark.asyncio
async def test_delete_many_with_in_and_range(db):
    old = NOW - timedelta(days=40)
    await db.items.insert_many([
        {"_id": "1", "status": "completed", "updatedAt": old},
        {"_id": "2", "status": "pending", "updatedAt": old},
        {"_id": "3", "status": "failed", "updatedAt": NOW},
    ])

    result = await db.items.delete_many({
        "status": {"$in": ["completed", "failed"]},
        "updatedAt": {"$lt": NOW - timedelta(days=30)},
    })

    assert result.deleted_count == 1
    assert sorted(d["_id"] for d in await db.items.find({}).to_list()) == ["2", "3"]


@pytest.mark.asyncio
async def test_unknown_operator_is_rejected(db):
    with pytest.raises(ValueError):
        await db.items.find({"title": {"$regex": "x"}}).to_list()

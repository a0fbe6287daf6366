import pytest

from errors import StoreError
from models import DatabaseQueue


@pytest.mark.asyncio
async def test_put_get_and_contains(db):
    assert await db.get("article:https://example.com/a") is None
    assert not await db.contains("article:https://example.com/a")

    await db.put("article:https://example.com/a", {"link": "https://example.com/a", "title": "Ünïcode"})

    assert await db.contains("article:https://example.com/a")
    assert await db.get("article:https://example.com/a") == {"link": "https://example.com/a", "title": "Ünïcode"}


@pytest.mark.asyncio
async def test_put_replaces_existing_value(db):
    await db.put("channel:https://example.com/feed", {"title": "Old"})
    await db.put("channel:https://example.com/feed", {"title": "New"})
    assert await db.get("channel:https://example.com/feed") == {"title": "New"}
    assert await db.execute("count_prefix", prefix="channel:") == 1


@pytest.mark.asyncio
async def test_scan_prefix_is_ordered_and_scoped(db):
    await db.put("article:b", {"n": 2})
    await db.put("summary:x", {"n": 0})
    await db.put("article:a", {"n": 1})
    await db.put("articles-not-a-prefix-match", {"n": 9})

    rows = await db.scan_prefix("article:")
    assert rows == [("article:a", {"n": 1}), ("article:b", {"n": 2})]


@pytest.mark.asyncio
async def test_data_survives_restart(tmp_path):
    path = str(tmp_path / "persist.db")
    first = DatabaseQueue(path)
    await first.start()
    await first.put("summary:abc", {"title": "T", "summary": "S"})
    await first.stop()

    second = DatabaseQueue(path)
    await second.start()
    try:
        assert await second.get("summary:abc") == {"title": "T", "summary": "S"}
    finally:
        await second.stop()


@pytest.mark.asyncio
async def test_unknown_operation_raises_store_error(db):
    with pytest.raises(StoreError):
        await db.execute("drop_everything")


@pytest.mark.asyncio
async def test_execute_requires_running_worker(tmp_path):
    queue = DatabaseQueue(str(tmp_path / "idle.db"))
    with pytest.raises(StoreError):
        await queue.get("article:x")

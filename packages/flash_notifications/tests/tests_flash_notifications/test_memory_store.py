import pytest
from flash_notifications.stores.memory import MemoryKeyValueStore

pytestmark = pytest.mark.asyncio


@pytest.fixture
def store():
    return MemoryKeyValueStore()


async def test_put_and_get(store):
    await store.put("1", b'{"id": 1}')

    assert await store.get("1") == b'{"id": 1}'
    assert await store.get("2") is None


async def test_put_replaces(store):
    await store.put("1_occurrence", b"1")
    await store.put("1_occurrence", b"2")

    assert await store.get("1_occurrence") == b"2"


async def test_put_rejects_non_bytes(store):
    with pytest.raises(TypeError, match="Expected bytes"):
        await store.put("1", "text")


async def test_delete_is_idempotent(store):
    await store.put("1", b"x")

    await store.delete("1")
    await store.delete("1")

    assert await store.keys() == []


async def test_get_many_reports_missing_keys(store):
    await store.put("1", b"a")

    assert await store.get_many(["1", "1_occurrence"]) == {
        "1": b"a",
        "1_occurrence": None,
    }


async def test_write_applies_puts_and_deletes(store):
    await store.write({"1": b"a", "1_triggerDate": b"2024"})

    await store.write({"1_occurrence": b"1"}, ["1_triggerDate"])

    assert sorted(await store.keys()) == ["1", "1_occurrence"]


async def test_write_put_wins_over_delete_of_same_key(store):
    await store.write({"1": b"new"}, ["1"])

    assert await store.get("1") == b"new"


async def test_bad_batch_leaves_store_untouched(store):
    await store.put("1", b"a")

    with pytest.raises(TypeError):
        await store.write({"2": b"b", "3": 3}, ["1"])

    assert await store.keys() == ["1"]

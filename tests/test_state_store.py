"""Both state store backends behave the same through the async interface."""

import pytest

from tenantkit.services.state_store import InMemoryStateStore, SQLStateStore


@pytest.fixture(params=["memory", "database"])
def any_store(request, test_session_factory):
    if request.param == "memory":
        return InMemoryStateStore()
    return SQLStateStore(test_session_factory)


@pytest.mark.asyncio
async def test_put_get_delete(any_store):
    assert await any_store.get("database", "acme") is None

    await any_store.put("database", "acme", {"strategy": "prefix", "prefix": "acme_"})
    assert await any_store.get("database", "acme") == {"strategy": "prefix", "prefix": "acme_"}

    await any_store.delete("database", "acme")
    assert await any_store.get("database", "acme") is None


@pytest.mark.asyncio
async def test_put_overwrites(any_store):
    await any_store.put("storage", "acme", {"path": "a"})
    await any_store.put("storage", "acme", {"path": "b"})
    assert await any_store.get("storage", "acme") == {"path": "b"}


@pytest.mark.asyncio
async def test_components_are_separate(any_store):
    await any_store.put("database", "acme", {"strategy": "prefix"})
    assert await any_store.get("storage", "acme") is None
    assert await any_store.list("database") == {"acme": {"strategy": "prefix"}}
    assert await any_store.list("config") == {}


@pytest.mark.asyncio
async def test_delete_missing_is_noop(any_store):
    await any_store.delete("config", "ghost")
    assert await any_store.list("config") == {}


@pytest.mark.asyncio
async def test_memory_store_returns_copies():
    store = InMemoryStateStore()
    record = {"directories": ["uploads"]}
    await store.put("storage", "acme", record)
    record["directories"].append("mutated")

    fetched = await store.get("storage", "acme")
    fetched["directories"].append("again")
    assert (await store.get("storage", "acme")) == {"directories": ["uploads"]}

import threading

import mongomock
import pytest

from docbridge.db.handles import CollectionResolver, HandleCache, sanitize_collection_name
from docbridge.errors import InvalidName

RESERVED = ("system.", "__")


@pytest.mark.parametrize("name", ["users", "Order_Items", "menu-2024", "a" * 64])
def test_valid_names(name):
    assert sanitize_collection_name(name, RESERVED) == name


@pytest.mark.parametrize("name", [
    "", None, 42, "bad$name", "$where", "system.users", "a.b", "a b", "a/b",
    "__activity", "__proto__", "a" * 65, "ümlaut",
    " widgets", "widgets ", "widgets\n", "\twidgets",
])
def test_invalid_names(name):
    with pytest.raises(InvalidName):
        sanitize_collection_name(name, RESERVED)


class CountingDb:
    """Stands in for a Database so tests can see whether the store was touched."""

    def __init__(self):
        self.real = mongomock.MongoClient()["test_db"]
        self.lookups = 0

    def __getitem__(self, name):
        self.lookups += 1
        return self.real[name]

    def list_collection_names(self):
        return self.real.list_collection_names()


def test_resolve_is_idempotent():
    store = CountingDb()
    resolver = CollectionResolver(lambda: store, HandleCache(), RESERVED)
    first = resolver.resolve("users")
    second = resolver.resolve("users")
    assert first is second
    assert first.collection.name == "users"
    assert store.lookups == 1


def test_invalid_name_never_reaches_store():
    calls = []

    def get_database():
        calls.append(1)
        raise AssertionError("store touched")

    resolver = CollectionResolver(get_database, HandleCache(), RESERVED)
    for bad in ("bad$name", "system.indexes", "__activity"):
        with pytest.raises(InvalidName):
            resolver.resolve(bad)
    assert calls == []


def test_concurrent_first_use_converges_on_one_handle():
    store = CountingDb()
    resolver = CollectionResolver(lambda: store, HandleCache(), RESERVED)
    barrier = threading.Barrier(16)
    seen = []

    def worker():
        barrier.wait()
        seen.append(resolver.resolve("events"))

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len({id(h) for h in seen}) == 1
    assert store.lookups == 1


def test_handles_expire_after_ttl():
    now = [0.0]
    cache = HandleCache(ttl=60, clock=lambda: now[0])
    store = CountingDb()
    resolver = CollectionResolver(lambda: store, cache, RESERVED)

    first = resolver.resolve("users")
    now[0] = 59.0
    assert resolver.resolve("users") is first
    now[0] = 61.0
    refreshed = resolver.resolve("users")
    assert refreshed is not first
    assert refreshed.collection.name == "users"
    assert store.lookups == 2


def test_zero_ttl_never_expires():
    now = [0.0]
    cache = HandleCache(ttl=0, clock=lambda: now[0])
    handle = cache.get_or_create("x", lambda n: object())
    now[0] = 10_000.0
    assert cache.get_or_create("x", lambda n: object()) is handle


def test_visible_names_hide_reserved():
    store = CountingDb()
    for name in ("users", "__activity", "orders"):
        store.real[name].insert_one({"x": 1})
    resolver = CollectionResolver(lambda: store, HandleCache(), RESERVED)
    assert resolver.visible_names() == ["orders", "users"]


def test_handles_rebuilt_after_epoch_change():
    epoch = [0]
    store = CountingDb()
    resolver = CollectionResolver(lambda: store, HandleCache(), RESERVED, epoch=lambda: epoch[0])

    first = resolver.resolve("users")
    assert resolver.resolve("users") is first

    epoch[0] = 1
    rebuilt = resolver.resolve("users")
    assert rebuilt is not first
    assert rebuilt.epoch == 1
    assert resolver.resolve("users") is rebuilt
    assert store.lookups == 2

import threading
import time

import mongomock
import pytest
from pymongo.errors import ServerSelectionTimeoutError

from docbridge.db.connection import MongoConnection
from docbridge.db.handles import CollectionResolver, HandleCache
from docbridge.errors import ConnectionFailure


def _race(conn, n=8):
    results, errors = [], []

    def worker():
        try:
            results.append(conn.get_client())
        except ConnectionFailure as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(n)]
    return threads, results, errors


def test_connects_once_under_concurrent_first_use():
    entered, release = threading.Event(), threading.Event()
    calls = []
    client = mongomock.MongoClient()

    def factory(uri, **kw):
        calls.append(uri)
        entered.set()
        release.wait(5)
        return client

    conn = MongoConnection("mongodb://test", "test_db", client_factory=factory)
    first, first_results, _ = _race(conn, 1)
    first[0].start()
    assert entered.wait(5)

    waiters, results, errors = _race(conn, 8)
    for t in waiters:
        t.start()
    time.sleep(0.1)
    release.set()
    for t in first + waiters:
        t.join(5)

    assert calls == ["mongodb://test"]
    assert errors == []
    assert all(r is client for r in first_results + results)
    assert len(results) == 8


def test_waiters_fail_fast_when_attempt_fails():
    entered, release = threading.Event(), threading.Event()
    calls = []

    def factory(uri, **kw):
        calls.append(uri)
        entered.set()
        release.wait(5)
        raise ServerSelectionTimeoutError("no servers")

    conn = MongoConnection("mongodb://down", "test_db", client_factory=factory)
    first, _, first_errors = _race(conn, 1)
    first[0].start()
    assert entered.wait(5)

    waiters, results, errors = _race(conn, 5)
    for t in waiters:
        t.start()
    time.sleep(0.1)
    release.set()
    for t in first + waiters:
        t.join(5)

    assert len(calls) == 1
    assert results == []
    assert len(first_errors) == 1
    assert len(errors) == 5


def test_next_call_after_failure_retries():
    attempts = []
    client = mongomock.MongoClient()

    def factory(uri, **kw):
        attempts.append(uri)
        if len(attempts) == 1:
            raise ServerSelectionTimeoutError("no servers")
        return client

    conn = MongoConnection("mongodb://flaky", "test_db", client_factory=factory)
    with pytest.raises(ConnectionFailure) as exc:
        conn.get_client()
    assert "no servers" in exc.value.details
    assert not conn.connected

    assert conn.get_client() is client
    assert conn.connected
    assert len(attempts) == 2


def test_reset_drops_client():
    clients = []

    def factory(uri, **kw):
        clients.append(mongomock.MongoClient())
        return clients[-1]

    conn = MongoConnection("mongodb://test", "test_db", client_factory=factory)
    assert conn.get_database().name == "test_db"
    conn.reset()
    assert not conn.connected
    conn.get_client()
    assert len(clients) == 2


def test_resolved_handles_follow_reset():
    clients = []

    def factory(uri, **kw):
        clients.append(mongomock.MongoClient())
        return clients[-1]

    conn = MongoConnection("mongodb://test", "test_db", client_factory=factory)
    resolver = CollectionResolver(conn.get_database, HandleCache(), epoch=lambda: conn.epoch)

    before = resolver.resolve("widgets")
    before.collection.insert_one({"name": "bolt"})
    conn.reset()

    after = resolver.resolve("widgets")
    assert after is not before
    assert after.collection.database.client is clients[1]
    after.collection.insert_one({"name": "nut"})
    assert after.collection.find_one({"name": "nut"})["name"] == "nut"
    assert len(clients) == 2

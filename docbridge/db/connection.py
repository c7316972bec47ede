# docbridge/db/connection.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from docbridge.errors import ConnectionFailure

log = logging.getLogger(__name__)


class MongoConnection:
    """
    Lazily established, process-wide store connection.

    The first caller builds the client and pings the server while holding
    the lock. Callers that queued up behind an attempt which failed get a
    ConnectionFailure right away rather than starting their own attempt;
    the next request after that tries again.
    """

    def __init__(
        self,
        uri: str,
        db_name: str,
        client_factory: Callable[..., MongoClient] = MongoClient,
        timeout_ms: int = 5000,
    ):
        self.uri = uri
        self.db_name = db_name
        self._client_factory = client_factory
        self._timeout_ms = timeout_ms
        self._client: Optional[MongoClient] = None
        self._lock = threading.Lock()
        self._generation = 0
        # bumped on every reset; handles built under an older epoch are stale
        self.epoch = 0
        self._last_error: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    def get_client(self) -> MongoClient:
        client = self._client
        if client is not None:
            return client

        seen = self._generation
        with self._lock:
            if self._client is not None:
                return self._client
            if self._generation != seen:
                # an attempt finished (and failed) while we were waiting on it
                raise ConnectionFailure(details=self._last_error)
            try:
                self._client = self._connect()
            finally:
                self._generation += 1
            return self._client

    def get_database(self) -> Database:
        return self.get_client()[self.db_name]

    def _connect(self) -> MongoClient:
        client = None
        try:
            client = self._client_factory(self.uri, serverSelectionTimeoutMS=self._timeout_ms)
            client.admin.command("ping")
        except PyMongoError as e:
            self._last_error = str(e)
            log.error("Database connection failed: %s", e)
            if client is not None:
                client.close()
            raise ConnectionFailure(details=str(e)) from e
        self._last_error = None
        log.info("Connected to database %r", self.db_name)
        return client

    def reset(self) -> None:
        """Drop the current client; the next call reconnects."""
        with self._lock:
            client, self._client = self._client, None
            self.epoch += 1
        if client is not None:
            client.close()
            log.info("Database connection reset")

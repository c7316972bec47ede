# docbridge/db/handles.py
from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from pymongo.collection import Collection
from pymongo.database import Database

from docbridge.errors import InvalidName

NAME_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,64}")


def sanitize_collection_name(raw, reserved_prefixes: Iterable[str] = ()) -> str:
    """
    Return the collection name if it is safe to address, else raise InvalidName.

    Only letters, digits, hyphen and underscore are allowed, which also keeps
    out `$`-operator tokens and dotted namespaces such as `system.users`.
    """
    if not isinstance(raw, str) or not raw:
        raise InvalidName()
    if not NAME_PATTERN.fullmatch(raw):
        raise InvalidName(f"Invalid collection name: {raw[:64]!r}")
    if is_reserved(raw, reserved_prefixes):
        raise InvalidName(f"Collection {raw!r} is reserved")
    return raw


def is_reserved(name: str, reserved_prefixes: Iterable[str]) -> bool:
    return any(name.startswith(p) for p in reserved_prefixes)


@dataclass
class CollectionHandle:
    name: str
    collection: Collection
    created_at: float = field(default_factory=time.monotonic)
    epoch: int = 0


class HandleCache:
    """
    Process-wide name -> CollectionHandle cache.

    get_or_create is idempotent under concurrent first use: whoever loses
    the race gets the handle the winner stored. Entries older than ttl
    seconds are rebuilt on next access (ttl 0/None = keep forever), and so
    are entries built under an older connection epoch.
    """

    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl or None
        self._clock = clock
        self._handles: Dict[str, CollectionHandle] = {}
        self._lock = threading.Lock()

    def _expired(self, handle: CollectionHandle) -> bool:
        return self.ttl is not None and self._clock() - handle.created_at >= self.ttl

    def get_or_create(
        self, name: str, factory: Callable[[str], Collection], epoch: int = 0
    ) -> CollectionHandle:
        with self._lock:
            handle = self._handles.get(name)
            if handle is None or handle.epoch != epoch or self._expired(handle):
                handle = CollectionHandle(
                    name=name, collection=factory(name), created_at=self._clock(), epoch=epoch
                )
                self._handles[name] = handle
            return handle

    def clear(self) -> None:
        with self._lock:
            self._handles.clear()


class CollectionResolver:
    """Validates caller-supplied collection names and hands out cached handles."""

    def __init__(
        self,
        get_database: Callable[[], Database],
        cache: HandleCache,
        reserved_prefixes: Tuple[str, ...] = ("system.",),
        epoch: Callable[[], int] = lambda: 0,
    ):
        self._get_database = get_database
        self._epoch = epoch
        self.cache = cache
        self.reserved_prefixes = tuple(reserved_prefixes)

    def resolve(self, raw_name) -> CollectionHandle:
        # validation happens before the store is touched
        name = sanitize_collection_name(raw_name, self.reserved_prefixes)
        # read before building so a reset mid-build leaves the handle stale
        epoch = self._epoch()
        return self.cache.get_or_create(name, self._collection, epoch)

    def _collection(self, name: str) -> Collection:
        return self._get_database()[name]

    def visible_names(self) -> List[str]:
        """Every collection a caller could address, reserved ones filtered out."""
        names = self._get_database().list_collection_names()
        return sorted(
            n for n in names
            if n and NAME_PATTERN.fullmatch(n) and not is_reserved(n, self.reserved_prefixes)
        )

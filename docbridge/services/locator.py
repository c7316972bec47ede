# docbridge/services/locator.py
"""
Flexible document lookup.

Collections reaching the bridge are schemaless and not consistent about
where an identifier lives, so an id string is tried against progressively
looser interpretations until one of them finds something:

  1. primary key   `_id` as an ObjectId (only when the string is 24 hex chars)
  2. raw `_id`     `_id` equal to the string as given
  3. alt fields    ALTERNATE_ID_FIELDS in order; each tries the string first,
                   then its numeric value when the string parses as a number
  4. nested scan   bounded walk of the collection for `id`/`id2` keys at any
                   depth; every mapping that holds a matching key is returned,
                   together with the top-level document it sits in

Stage 4 is a full collection scan capped at SCAN_MAX_DOCS documents. It is
the one lookup whose cost grows with the collection rather than the index.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bson import ObjectId
from bson.errors import BSONError
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from docbridge import settings
from docbridge.services.query import parse_number

log = logging.getLogger(__name__)

ALTERNATE_ID_FIELDS = ("id", "id2", "slug", "uuid", "email", "username")
NESTED_ID_KEYS = ("id", "id2")

STAGE_PRIMARY_KEY = 1
STAGE_RAW_KEY = 2
STAGE_ALTERNATE = 3
STAGE_NESTED = 4

# a failing stage is logged and skipped, never fatal
_STAGE_ERRORS = (PyMongoError, BSONError, TypeError, ValueError)


@dataclass
class NestedMatch:
    root: Dict[str, Any]
    path: str
    key: str
    container: Dict[str, Any]

    @property
    def root_id(self) -> Any:
        return self.root.get("_id")


@dataclass
class LocateResult:
    stage: Optional[int] = None
    documents: List[Dict[str, Any]] = field(default_factory=list)
    matches: List[NestedMatch] = field(default_factory=list)
    # stage 4: each top-level document holding a match, once, in scan order
    roots: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.documents)

    @property
    def single(self) -> bool:
        """True when a top-level document was resolved (stages 1-3)."""
        return self.stage in (STAGE_PRIMARY_KEY, STAGE_RAW_KEY, STAGE_ALTERNATE)

    @property
    def document(self) -> Optional[Dict[str, Any]]:
        return self.documents[0] if self.single and self.documents else None


def is_primary_key_form(value: str) -> bool:
    return isinstance(value, str) and len(value) == 24 and ObjectId.is_valid(value)


def _values_equal(stored: Any, id_value: str, number) -> bool:
    if isinstance(stored, bool) or stored is None:
        return False
    if isinstance(stored, (dict, list)):
        return False
    if isinstance(stored, (int, float)):
        return number is not None and stored == number
    return str(stored) == id_value


def walk_id_keys(node: Any, id_value: str, path: str = "") -> Iterator[Tuple[str, str, Dict[str, Any]]]:
    """
    Yield (path, key, container) for every mapping below `node` holding an
    `id`/`id2` key equal to id_value (as a string, or numerically).
    Iterative so deeply nested documents don't hit the recursion limit.
    """
    number = parse_number(id_value)
    stack: List[Tuple[str, Any]] = [(path, node)]
    while stack:
        where, current = stack.pop()
        if isinstance(current, dict):
            for key in NESTED_ID_KEYS:
                if key in current and _values_equal(current[key], id_value, number):
                    yield where, key, current
                    break
            children = [
                (f"{where}.{k}" if where else str(k), v)
                for k, v in current.items()
                if isinstance(v, (dict, list))
            ]
            stack.extend(reversed(children))
        elif isinstance(current, list):
            children = [
                (f"{where}.{i}" if where else str(i), v)
                for i, v in enumerate(current)
                if isinstance(v, (dict, list))
            ]
            stack.extend(reversed(children))


class DocumentLocator:
    def __init__(
        self,
        alternate_fields: Tuple[str, ...] = ALTERNATE_ID_FIELDS,
        scan_limit: Optional[int] = None,
    ):
        self.alternate_fields = tuple(alternate_fields)
        self._scan_limit = scan_limit

    @property
    def scan_limit(self) -> int:
        return self._scan_limit if self._scan_limit is not None else settings.SCAN_MAX_DOCS

    def locate(self, collection: Collection, id_value: str, *, nested: bool = True) -> LocateResult:
        """
        Resolve id_value to document(s). The first stage that finds anything
        wins; an empty result means every stage came up empty (or errored).
        nested=False stops after stage 3.
        """
        stages = [
            (STAGE_PRIMARY_KEY, self._by_primary_key),
            (STAGE_RAW_KEY, self._by_raw_key),
            (STAGE_ALTERNATE, self._by_alternate_fields),
        ]
        if nested:
            stages.append((STAGE_NESTED, self._by_nested_scan))

        for stage, lookup in stages:
            try:
                result = lookup(collection, id_value)
            except _STAGE_ERRORS as e:
                log.debug("locate stage %s failed on %s: %s", stage, collection.name, e)
                continue
            if result is not None and result.found:
                result.stage = stage
                log.debug("located %r in %s at stage %s", id_value, collection.name, stage)
                return result
        return LocateResult()

    def primary_filter(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """Filter addressing exactly this document again."""
        return {"_id": document["_id"]}

    @staticmethod
    def _one(doc) -> Optional[LocateResult]:
        return LocateResult(documents=[doc]) if doc is not None else None

    def _by_primary_key(self, collection: Collection, id_value: str) -> Optional[LocateResult]:
        if not is_primary_key_form(id_value):
            return None
        return self._one(collection.find_one({"_id": ObjectId(id_value)}))

    def _by_raw_key(self, collection: Collection, id_value: str) -> Optional[LocateResult]:
        return self._one(collection.find_one({"_id": id_value}))

    def _by_alternate_fields(self, collection: Collection, id_value: str) -> Optional[LocateResult]:
        number = parse_number(id_value)
        for name in self.alternate_fields:
            candidates = [id_value] if number is None else [id_value, number]
            for candidate in candidates:
                try:
                    doc = collection.find_one({name: candidate})
                except _STAGE_ERRORS as e:
                    log.debug("alternate field %s lookup failed: %s", name, e)
                    continue
                if doc is not None:
                    return self._one(doc)
        return None

    def _by_nested_scan(self, collection: Collection, id_value: str) -> Optional[LocateResult]:
        limit = max(0, self.scan_limit)
        if not limit:
            return None
        result = LocateResult()
        scanned = 0
        # one extra document tells a truncated scan apart from an exact fit
        for doc in collection.find({}).limit(limit + 1):
            if scanned == limit:
                log.warning("nested id scan on %s stopped at %d documents", collection.name, limit)
                break
            scanned += 1
            hits = list(walk_id_keys(doc, id_value))
            if hits:
                result.roots.append(doc)
            for path, key, container in hits:
                result.documents.append(container)
                result.matches.append(NestedMatch(root=doc, path=path, key=key, container=container))
        return result


locator = DocumentLocator()

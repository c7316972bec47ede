# docbridge/services/bridge.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from bson import json_util
from bson.errors import BSONError
from pymongo import ReturnDocument
from pymongo.database import Database

from docbridge import db, settings
from docbridge.db.handles import CollectionHandle
from docbridge.errors import MissingBody, NotFound, ValidationFailure, classify
from docbridge.services.locator import STAGE_NESTED, locator
from docbridge.services.query import QuerySpec, safe_field
from docbridge.utils.logger import log_activity

log = logging.getLogger(__name__)

ACTIONS = ("count", "distinct", "aggregate")
WRITE_STAGES = ("$out", "$merge")
STAGE_NAMES = {1: "primaryKey", 2: "rawKey", 3: "alternateField", 4: "nested"}


@dataclass
class Outcome:
    data: Any = None
    status: int = 200
    pagination: Optional[Dict[str, Any]] = None
    meta: Dict[str, Any] = field(default_factory=dict)


def _to_int(raw, default: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def flag(raw) -> bool:
    return str(raw or "").strip().lower() in ("1", "true", "yes")


def _reject_operator_keys(doc: Mapping[str, Any]) -> None:
    bad = [k for k in doc if not isinstance(k, str) or k.startswith("$")]
    if bad:
        raise ValidationFailure(f"Operator keys are not allowed in documents: {bad[:5]}")


# ---------------------------
# Listing (no collection given)
# ---------------------------
def _summarize(database: Database, name: str, sample: int, include_indexes: bool) -> Dict[str, Any]:
    coll = database[name]
    item: Dict[str, Any] = {"count": coll.count_documents({})}
    item["documents"] = list(coll.find({}).limit(sample)) if sample > 0 else []
    if include_indexes:
        item["indexes"] = [
            {"name": idx_name, "key": info.get("key"), "unique": bool(info.get("unique", False))}
            for idx_name, info in coll.index_information().items()
        ]
    return item


def list_collections(params: Mapping[str, str]) -> Outcome:
    names = db.resolver.visible_names()
    if flag(params.get("namesOnly")):
        return Outcome(data=names, meta={"collections": len(names)})

    sample = _to_int(params.get("sample"), settings.LISTING_SAMPLE_SIZE)
    sample = max(0, min(sample, settings.MAX_LIMIT))
    include_indexes = flag(params.get("indexes"))
    database = db.get_db()

    payload: Dict[str, Any] = {}
    if not names:
        return Outcome(data=payload, meta={"collections": 0})

    width = max(1, min(settings.LISTING_CONCURRENCY, len(names)))
    with ThreadPoolExecutor(max_workers=width, thread_name_prefix="docbridge-list") as pool:
        futures = [(name, pool.submit(_summarize, database, name, sample, include_indexes)) for name in names]
        # every sub-fetch settles; one failing collection is reported inline
        for name, fut in futures:
            try:
                payload[name] = fut.result()
            except Exception as e:
                err = classify(e)
                log.warning("listing %s failed: %s", name, e)
                payload[name] = {"error": err.to_dict(include_details=settings.is_development())}

    return Outcome(data=payload, meta={"collections": len(names)})


# ---------------------------
# Reads
# ---------------------------
def list_documents(handle: CollectionHandle, spec: QuerySpec) -> Outcome:
    coll = handle.collection
    window = spec.window
    total = coll.count_documents(spec.filter)

    cursor = coll.find(spec.filter, spec.projection)
    if spec.sort:
        cursor = cursor.sort(spec.sort)
    docs = list(cursor.skip(window.skip).limit(window.limit))

    return Outcome(
        data=docs,
        pagination={
            "total": total,
            "limit": window.limit,
            "skip": window.skip,
            "returned": len(docs),
            "hasMore": window.has_more(len(docs), total),
        },
    )


def get_document(handle: CollectionHandle, id_value: str) -> Outcome:
    result = locator.locate(handle.collection, id_value)
    if not result.found:
        raise NotFound()

    meta: Dict[str, Any] = {"matchedBy": STAGE_NAMES[result.stage]}
    if result.stage == STAGE_NESTED:
        # data holds the top-level documents; each match points into one of them
        meta["matches"] = [
            {"_id": m.root_id, "path": m.path, "key": m.key, "match": m.container}
            for m in result.matches
        ]
        return Outcome(data=result.roots, meta=meta)
    return Outcome(data=result.document, meta=meta)


def _pipeline(raw: Optional[str]) -> List[Dict[str, Any]]:
    if not raw:
        raise ValidationFailure("aggregate requires a 'pipeline' parameter")
    try:
        pipeline = json_util.loads(raw)
    except (ValueError, TypeError, BSONError) as e:
        raise ValidationFailure("pipeline is not valid JSON", details=str(e)) from e
    if not isinstance(pipeline, list) or not all(isinstance(s, dict) for s in pipeline):
        raise ValidationFailure("pipeline must be a JSON array of stages")
    for stage in pipeline:
        if any(k in WRITE_STAGES for k in stage):
            raise ValidationFailure("Write stages ($out, $merge) are not allowed")
    return pipeline


def run_action(handle: CollectionHandle, action: str, params: Mapping[str, str], spec: QuerySpec) -> Outcome:
    coll = handle.collection
    if action == "count":
        return Outcome(data={"count": coll.count_documents(spec.filter)})

    if action == "distinct":
        field_name = params.get("field")
        if not field_name or not safe_field(field_name):
            raise ValidationFailure("distinct requires a 'field' parameter")
        values = coll.distinct(field_name, spec.filter)
        return Outcome(data=values, meta={"field": field_name, "count": len(values)})

    if action == "aggregate":
        pipeline = _pipeline(params.get("pipeline"))
        if spec.filter:
            pipeline = [{"$match": spec.filter}] + pipeline
        docs = list(coll.aggregate(pipeline))
        return Outcome(data=docs, meta={"count": len(docs)})

    raise ValidationFailure(f"Unknown action {action!r}; expected one of {', '.join(ACTIONS)}")


# ---------------------------
# Writes
# ---------------------------
def create(handle: CollectionHandle, body: Any) -> Outcome:
    coll = handle.collection

    if isinstance(body, list):
        if len(body) > settings.MAX_BULK_INSERT:
            raise ValidationFailure(f"At most {settings.MAX_BULK_INSERT} documents per request")
        if not all(isinstance(d, dict) for d in body):
            raise ValidationFailure("Every element of the body array must be an object")
        docs = [dict(d) for d in body]
        for d in docs:
            _reject_operator_keys(d)
        coll.insert_many(docs)
        log_activity("insert_many", handle.name, count=len(docs))
        return Outcome(data=docs, status=201, meta={"inserted": len(docs)})

    if not isinstance(body, dict):
        raise ValidationFailure("Body must be a JSON object or an array of objects")
    doc = dict(body)
    _reject_operator_keys(doc)
    coll.insert_one(doc)
    log_activity("insert", handle.name, _id=str(doc["_id"]))
    return Outcome(data=doc, status=201)


def _update_fields(body: Any) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise ValidationFailure("Update body must be a JSON object")
    _reject_operator_keys(body)
    return {k: v for k, v in body.items() if k != "_id"}


def _locate_one(handle: CollectionHandle, id_value: str) -> Dict[str, Any]:
    # writes only address top-level documents; nested-scan matches are read-only
    result = locator.locate(handle.collection, id_value, nested=False)
    if not result.found:
        raise NotFound()
    return locator.primary_filter(result.document)


def update(handle: CollectionHandle, id_value: str, body: Any, *, replace: bool) -> Outcome:
    fields = _update_fields(body)
    target = _locate_one(handle, id_value)
    coll = handle.collection

    if replace:
        doc = coll.find_one_and_replace(target, fields, return_document=ReturnDocument.AFTER)
    else:
        if not fields:
            raise MissingBody("Nothing to update")
        doc = coll.find_one_and_update(target, {"$set": fields}, return_document=ReturnDocument.AFTER)
    if doc is None:
        # removed between lookup and write
        raise NotFound()

    log_activity("replace" if replace else "update", handle.name, _id=str(target["_id"]))
    return Outcome(data=doc)


def update_many(handle: CollectionHandle, spec: QuerySpec, body: Any) -> Outcome:
    fields = _update_fields(body)
    if not fields:
        raise MissingBody("Nothing to update")
    res = handle.collection.update_many(spec.filter, {"$set": fields})
    log_activity("update_many", handle.name, filter=str(spec.filter), matched=res.matched_count)
    return Outcome(data={"matchedCount": res.matched_count, "modifiedCount": res.modified_count})


def delete(handle: CollectionHandle, id_value: str) -> Outcome:
    target = _locate_one(handle, id_value)
    doc = handle.collection.find_one_and_delete(target)
    if doc is None:
        raise NotFound()
    log_activity("delete", handle.name, _id=str(target["_id"]))
    return Outcome(data=doc)


def delete_many(handle: CollectionHandle, spec: QuerySpec) -> Outcome:
    res = handle.collection.delete_many(spec.filter)
    log_activity("delete_many", handle.name, filter=str(spec.filter), deleted=res.deleted_count)
    return Outcome(data={"deletedCount": res.deleted_count})

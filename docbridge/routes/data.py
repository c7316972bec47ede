# docbridge/routes/data.py
"""
One dynamic endpoint for every collection.

    GET     /api/data                          collections overview
    GET     /api/data/{collection}             filtered / sorted / paginated list
    GET     /api/data/{collection}/{id}        flexible id lookup
    GET     /api/data/{collection}?action=...  count | distinct | aggregate
    POST    /api/data/{collection}             create one (object) or many (array)
    PUT     /api/data/{collection}/{id}        replace
    PATCH   /api/data/{collection}/{id}        merge fields
    DELETE  /api/data/{collection}/{id}        delete
    PUT|PATCH|DELETE ...?bulk=true             apply to every match of the filter

`?collection=` and `?id=` work in place of the path segments.
"""
from __future__ import annotations

import logging
from typing import Optional, Tuple

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import QueryParams

from docbridge import db
from docbridge.errors import BridgeError, InvalidName, MethodNotAllowed, MissingId, classify
from docbridge.serialization import envelope, parse_body
from docbridge.services import bridge, query
from docbridge.services.bridge import Outcome

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/data", tags=["data"])

METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _target(path: str, params: QueryParams) -> Tuple[Optional[str], Optional[str]]:
    segments = [s for s in (path or "").split("/") if s]
    collection = segments[0] if segments else params.get("collection")
    id_value = "/".join(segments[1:]) if len(segments) > 1 else params.get("id")
    return (collection or None), (id_value or None)


def _dispatch(method: str, path: str, params: QueryParams, raw_body: bytes) -> Outcome:
    collection, id_value = _target(path, params)

    if not collection:
        if method != "GET":
            raise InvalidName("A collection name is required")
        return bridge.list_collections(params)

    handle = db.resolve_collection(collection)
    spec = query.build(params)
    bulk = bridge.flag(params.get("bulk"))

    if method == "GET":
        action = params.get("action")
        if action:
            return bridge.run_action(handle, action, params, spec)
        if id_value:
            return bridge.get_document(handle, id_value)
        return bridge.list_documents(handle, spec)

    if method == "POST":
        return bridge.create(handle, parse_body(raw_body))

    if method in ("PUT", "PATCH"):
        if not id_value and not bulk:
            raise MissingId(f"ID is required for {method}")
        body = parse_body(raw_body)
        if id_value:
            return bridge.update(handle, id_value, body, replace=(method == "PUT"))
        return bridge.update_many(handle, spec, body)

    if method == "DELETE":
        if id_value:
            return bridge.delete(handle, id_value)
        if bulk:
            return bridge.delete_many(handle, spec)
        raise MissingId("ID is required for DELETE")

    raise MethodNotAllowed()


@router.api_route("", methods=METHODS)
@router.api_route("/{path:path}", methods=METHODS)
async def data_endpoint(request: Request):
    method = request.method.upper()
    path = request.path_params.get("path", "")
    if method == "OPTIONS":
        return Response(status_code=204)

    raw_body = await request.body() if method in ("POST", "PUT", "PATCH") else b""
    try:
        outcome = await run_in_threadpool(_dispatch, method, path, request.query_params, raw_body)
    except BridgeError:
        raise
    except Exception as e:
        err = classify(e)
        if err.status_code >= 500:
            log.exception("%s %s failed", method, request.url.path)
        raise err from e

    return JSONResponse(
        envelope(request, data=outcome.data, pagination=outcome.pagination, extra_meta=outcome.meta),
        status_code=outcome.status,
    )

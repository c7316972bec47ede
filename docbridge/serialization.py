# docbridge/serialization.py
from __future__ import annotations

import json
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId, json_util
from bson.errors import BSONError
from bson.json_util import RELAXED_JSON_OPTIONS
from fastapi import Request

from docbridge.errors import MissingBody, ValidationFailure


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_jsonable(value: Any) -> Any:
    """Turn store values into plain JSON: ObjectId -> hex, datetimes -> ISO-8601."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    # Decimal128, Binary, Regex, Timestamp, ...
    return json.loads(json_util.dumps(value, json_options=RELAXED_JSON_OPTIONS))


def parse_body(raw: bytes) -> Any:
    """
    Parse a request body as (extended) JSON, so `{"$oid": ...}` / `{"$date": ...}`
    arrive as real BSON types.
    """
    if not raw or not raw.strip():
        raise MissingBody()
    try:
        body = json_util.loads(raw)
    except (ValueError, TypeError, BSONError) as e:
        raise ValidationFailure("Request body is not valid JSON", details=str(e)) from e
    if body is None or body == {} or body == []:
        raise MissingBody()
    return body


def response_time_ms(request: Optional[Request]) -> Optional[float]:
    started = getattr(getattr(request, "state", None), "started_at", None)
    if started is None:
        return None
    return round((time.perf_counter() - started) * 1000.0, 2)


def envelope(
    request: Optional[Request] = None,
    *,
    data: Any = None,
    error: Optional[Dict[str, Any]] = None,
    pagination: Optional[Dict[str, Any]] = None,
    extra_meta: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Uniform response body:
      {success, data | error, meta: {timestamp, responseTime, pagination?, ...}}
    """
    meta: Dict[str, Any] = {"timestamp": _utcnow().isoformat()}
    elapsed = response_time_ms(request)
    if elapsed is not None:
        meta["responseTime"] = f"{elapsed}ms"
    if pagination is not None:
        meta["pagination"] = pagination
    if extra_meta:
        meta.update(extra_meta)

    body: Dict[str, Any] = {"success": error is None}
    if error is None:
        body["data"] = to_jsonable(data)
    else:
        body["error"] = error
    body["meta"] = to_jsonable(meta)
    return body

# docbridge/services/query.py
"""
Query-string -> store query translation.

    ?status=active&age.gte=21&tags=a,b&sort=-created,name&select=name,age&limit=20

becomes

    filter     {"status": "active", "age": {"$gte": 21}, "tags": {"$in": ["a", "b"]}}
    sort       [("created", -1), ("name", 1)]
    projection {"name": 1, "age": 1}
    window     skip=0, limit=20

No validation of the resulting query happens here; the store has the last word.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from bson import ObjectId

from docbridge import settings

RESERVED_PARAMS = frozenset({
    "limit", "skip", "sort", "select", "fields", "populate", "collection", "id", "action",
    # bridge-specific switches
    "bulk", "field", "pipeline", "sample", "indexes", "namesOnly",
})

# suffix -> store operator; only these make it into a filter
ALLOWED_OPERATORS = {
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "ne": "$ne",
    "in": "$in",
    "nin": "$nin",
    "regex": "$regex",
    "exists": "$exists",
}

# operator-looking suffixes that are recognised but never emitted
BLOCKED_OPERATORS = frozenset({
    "eq", "where", "expr", "function", "accumulator", "text", "all", "size", "mod",
    "type", "elemMatch", "not", "or", "and", "nor", "jsonSchema", "options",
})

_BRACKET_KEY = re.compile(r"^(?P<field>[^\[\]]+)\[(?P<op>[^\[\]]*)\]$")
_INT = re.compile(r"^[-+]?\d+$")
_HEX_ID = re.compile(r"[0-9a-fA-F]{24}")

Params = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


@dataclass
class Pagination:
    skip: int = 0
    limit: int = 100

    def has_more(self, returned: int, total: int) -> bool:
        return self.skip + returned < total


@dataclass
class QuerySpec:
    filter: Dict[str, Any] = field(default_factory=dict)
    sort: List[Tuple[str, int]] = field(default_factory=list)
    projection: Optional[Dict[str, int]] = None
    window: Pagination = field(default_factory=Pagination)


def parse_number(value: str) -> Optional[Union[int, float]]:
    """Full-string numeric parse; returns None for anything that isn't plainly a number."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text or text != value or "_" in text:
        return None
    if _INT.match(text):
        return int(text)
    try:
        number = float(text)
    except ValueError:
        return None
    # "nan", "inf", "1e999" are not identifiers or filter values anyone means
    if not math.isfinite(number):
        return None
    return number


def _split(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def coerce_scalar(value: str) -> Any:
    if value == "true":
        return True
    if value == "false":
        return False
    number = parse_number(value)
    if number is not None:
        return number
    return value


def coerce_value(value: str) -> Any:
    """Equality value: booleans, numbers, comma lists as membership, else the string."""
    if "," in value:
        return {"$in": [coerce_scalar(v) for v in _split(value)]}
    return coerce_scalar(value)


def _operator_value(op: str, value: str) -> Any:
    if op in ("in", "nin"):
        return [coerce_scalar(v) for v in _split(value)]
    if op == "exists":
        return value.strip().lower() not in ("false", "0", "no")
    if op == "regex":
        return value
    return coerce_scalar(value)


def safe_field(name: str) -> bool:
    return bool(name) and not name.startswith("$") and "\x00" not in name


def split_operator(key: str) -> Tuple[str, Optional[str]]:
    """
    Split "age.gt" / "age[gt]" into ("age", "gt").

    Bracket keys always carry an operator. A dotted key only does when its
    last segment is an operator name; otherwise it is a nested field path.
    """
    m = _BRACKET_KEY.match(key)
    if m:
        return m.group("field"), m.group("op")
    head, dot, tail = key.rpartition(".")
    if dot and head and (tail in ALLOWED_OPERATORS or tail in BLOCKED_OPERATORS):
        return head, tail
    return key, None


def _id_forms(raw: str) -> List[Any]:
    """A 24-hex `_id` may be stored as an ObjectId or as the plain string; both are matched."""
    if _HEX_ID.fullmatch(raw):
        return [ObjectId(raw), raw]
    return [coerce_scalar(raw)]


def _id_membership(raw_values: Iterable[str]) -> List[Any]:
    return [form for v in raw_values for form in _id_forms(v)]


def _id_equality(raw: str) -> Any:
    if "," in raw:
        return {"$in": _id_membership(_split(raw))}
    forms = _id_forms(raw)
    return forms[0] if len(forms) == 1 else {"$in": forms}


def _id_operator(op: str, raw: str) -> Tuple[str, Any]:
    if op in ("in", "nin"):
        return ALLOWED_OPERATORS[op], _id_membership(_split(raw))
    if op == "ne":
        forms = _id_forms(raw)
        return ("$ne", forms[0]) if len(forms) == 1 else ("$nin", forms)
    if op in ("gt", "gte", "lt", "lte"):
        # ordering only makes sense against one type
        return ALLOWED_OPERATORS[op], _id_forms(raw)[0]
    return ALLOWED_OPERATORS[op], _operator_value(op, raw)


def _items(params: Params) -> List[Tuple[str, str]]:
    if hasattr(params, "multi_items"):
        return list(params.multi_items())
    if isinstance(params, Mapping):
        out = []
        for k, v in params.items():
            if isinstance(v, (list, tuple)):
                out.extend((k, str(x)) for x in v)
            else:
                out.append((k, str(v)))
        return out
    return [(k, str(v)) for k, v in params]


def build_filter(params: Params) -> Dict[str, Any]:
    predicate: Dict[str, Any] = {}
    equality: Dict[str, List[str]] = {}

    for key, value in _items(params):
        if key in RESERVED_PARAMS:
            continue
        field_name, op = split_operator(key)
        if not safe_field(field_name):
            continue
        if op is None:
            equality.setdefault(field_name, []).append(value)
            continue
        if op not in ALLOWED_OPERATORS:
            continue
        clause = predicate.setdefault(field_name, {})
        if field_name == "_id":
            operator, operand = _id_operator(op, value)
        else:
            operator, operand = ALLOWED_OPERATORS[op], _operator_value(op, value)
        if operator in ("$in", "$nin") and operator in clause:
            clause[operator] = clause[operator] + operand
        else:
            clause[operator] = operand

    for field_name, values in equality.items():
        if field_name in predicate:
            # operator clauses on the same field win over a plain value
            continue
        if field_name == "_id":
            if len(values) == 1:
                predicate[field_name] = _id_equality(values[0])
            else:
                predicate[field_name] = {"$in": _id_membership(values)}
        elif len(values) == 1:
            predicate[field_name] = coerce_value(values[0])
        else:
            predicate[field_name] = {"$in": [coerce_scalar(v) for v in values]}

    return predicate


def build_sort(raw: Optional[str]) -> List[Tuple[str, int]]:
    spec: List[Tuple[str, int]] = []
    seen = set()
    for part in (raw or "").split(","):
        part = part.strip()
        direction = 1
        if part.startswith("-"):
            direction, part = -1, part[1:]
        elif part.startswith("+"):
            part = part[1:]
        if not safe_field(part) or part in seen:
            continue
        seen.add(part)
        spec.append((part, direction))
    return spec


def build_projection(raw: Optional[str]) -> Optional[Dict[str, int]]:
    if not raw:
        return None
    fields = [f.strip() for f in raw.split(",")]
    fields = [f for f in fields if safe_field(f)]
    return {f: 1 for f in fields} or None


def _to_int(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def build_window(limit: Any = None, skip: Any = None) -> Pagination:
    max_limit = max(1, settings.MAX_LIMIT)
    default_limit = min(max(1, settings.DEFAULT_LIMIT), max_limit)

    n = _to_int(limit)
    if n is None or n <= 0:
        n = default_limit
    s = _to_int(skip)
    if s is None or s < 0:
        s = 0
    return Pagination(skip=s, limit=min(n, max_limit))


def _first(params: Params, *names: str) -> Optional[str]:
    pairs = _items(params)
    for name in names:
        for k, v in pairs:
            if k == name and v != "":
                return v
    return None


def build(params: Params) -> QuerySpec:
    return QuerySpec(
        filter=build_filter(params),
        sort=build_sort(_first(params, "sort")),
        projection=build_projection(_first(params, "select", "fields")),
        window=build_window(_first(params, "limit"), _first(params, "skip")),
    )

from __future__ import annotations

import math
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence, Tuple

from src.metaalert.schemas.metaalerts import (
    Group,
    GroupRequest,
    GroupResponse,
    GroupResult,
    SearchRequest,
    SearchResponse,
    SearchResult,
    SortField,
)
from src.metaalert.services.aggregation import safe_float
from src.metaalert.services.constants import (
    ALERT_FIELD,
    GUID_FIELD,
    METAALERT_FIELD,
    METAALERT_TYPE,
    SOURCE_TYPE_FIELD,
    STATUS_FIELD,
    MetaAlertStatus,
)
from src.metaalert.services.errors import InvalidSearchError
from src.metaalert.services.store import MetaAlertStore

MATCH_ALL = "*:*"

# Alerts that are not part of any active meta alert (backlink missing, null or empty).
STANDALONE_ALERTS: Dict[str, Any] = {"$or": [{METAALERT_FIELD: None}, {METAALERT_FIELD: {"$size": 0}}]}


def _base_query(query: Any) -> Dict[str, Any]:
    if query is None:
        return {}
    if isinstance(query, dict):
        return query
    text = str(query).strip()
    if text in ("", MATCH_ALL):
        return {}
    raise InvalidSearchError(f"Unsupported query {text!r}; use '{MATCH_ALL}' or a filter document")


def _and(*clauses: Dict[str, Any]) -> Dict[str, Any]:
    parts = [c for c in clauses if c]
    if not parts:
        return {}
    if len(parts) == 1:
        return parts[0]
    return {"$and": parts}


def _split_indices(indices: Sequence[str]) -> Tuple[Optional[List[str]], bool]:
    """(sensor types to search, or None for all; whether meta alerts are included)."""
    if not indices:
        return None, True
    return [i for i in indices if i != METAALERT_TYPE], METAALERT_TYPE in indices


def _alert_filter(query: Dict[str, Any], sensor_types: Optional[List[str]]) -> Dict[str, Any]:
    type_filter = {SOURCE_TYPE_FIELD: {"$in": sensor_types}} if sensor_types is not None else {}
    return _and(query, type_filter, STANDALONE_ALERTS)


def _meta_alert_filter(query: Dict[str, Any]) -> Dict[str, Any]:
    active = {STATUS_FIELD: MetaAlertStatus.active.value}
    if not query:
        return active
    # A meta alert matches on its own fields or on any member snapshot.
    return _and(active, {"$or": [query, {ALERT_FIELD: {"$elemMatch": query}}]})


def _value_key(value: Any) -> Tuple[int, Any]:
    if isinstance(value, bool):
        return (1, str(value))
    if isinstance(value, (int, float)):
        f = float(value)
        return (0, f) if not math.isnan(f) else (1, "nan")
    return (1, str(value))


def _sort_docs(docs: List[Dict[str, Any]], sort: Sequence[SortField]) -> List[Dict[str, Any]]:
    """Stable multi-key sort; documents missing a key go last in either direction."""
    out = list(docs)
    for sf in reversed(list(sort)):
        desc = sf.sort_order == "desc"
        present = [d for d in out if d.get(sf.field) is not None]
        missing = [d for d in out if d.get(sf.field) is None]
        present.sort(key=lambda d: _value_key(d.get(sf.field)), reverse=desc)
        out = present + missing
    return out


def _to_result(doc: Dict[str, Any], fields: Optional[List[str]]) -> SearchResult:
    source = {k: doc[k] for k in fields if k in doc} if fields else doc
    return SearchResult(id=str(doc.get(GUID_FIELD, "")), source=source, index=str(doc.get(SOURCE_TYPE_FIELD, "")))


# PUBLIC_INTERFACE
def search(store: MetaAlertStore, request: SearchRequest, max_results: int) -> SearchResponse:
    """
    Search alerts and meta alerts together.

    Alerts that belong to an active meta alert are hidden (the meta alert stands in for
    them), and inactive meta alerts are hidden.
    """
    if request.size > max_results:
        raise InvalidSearchError(f"Search result size must be less than {max_results}")

    query = _base_query(request.query)
    sensor_types, include_meta = _split_indices(request.indices)

    docs: List[Dict[str, Any]] = []
    if sensor_types is None or sensor_types:
        docs.extend(store.find_alerts(_alert_filter(query, sensor_types)))
    if include_meta:
        docs.extend(store.find_meta_alerts(_meta_alert_filter(query)))

    ordered = _sort_docs(docs, request.sort)
    page = ordered[request.from_ : request.from_ + request.size]
    return SearchResponse(total=len(ordered), results=[_to_result(d, request.fields) for d in page])


# PUBLIC_INTERFACE
def get_all_meta_alerts_for_alert(
    store: MetaAlertStore, guid: str, status: Optional[MetaAlertStatus] = None
) -> SearchResponse:
    """Every meta alert (any status unless `status` is given) with a member of this guid. Not paginated."""
    if not guid or not guid.strip():
        raise InvalidSearchError("Guid cannot be empty")
    query: Dict[str, Any] = {f"{ALERT_FIELD}.{GUID_FIELD}": guid}
    if status is not None:
        query[STATUS_FIELD] = status.value
    docs = sorted(store.find_meta_alerts(query), key=lambda d: str(d.get(GUID_FIELD, "")))
    return SearchResponse(total=len(docs), results=[_to_result(d, None) for d in docs])


def _bucket_keys(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return [v for v in value if v is not None and not isinstance(v, (dict, list))]
    if isinstance(value, dict):
        return [str(value)]
    return [value]


def _group_level(
    docs: List[Dict[str, Any]], groups: Sequence[Group], score_field: Optional[str]
) -> List[GroupResult]:
    level, rest = groups[0], groups[1:]
    buckets: "OrderedDict[Any, List[Dict[str, Any]]]" = OrderedDict()
    for doc in docs:
        for key in _bucket_keys(doc.get(level.field)):
            buckets.setdefault(key, []).append(doc)

    results: List[GroupResult] = []
    for key, members in buckets.items():
        score = sum(safe_float(d.get(score_field)) for d in members) if score_field else 0.0
        results.append(
            GroupResult(
                key=key,
                total=len(members),
                score=float(score),
                grouped_by=rest[0].field if rest else None,
                group_results=_group_level(members, rest, score_field) if rest else [],
            )
        )

    desc = level.order.sort_order == "desc"
    results.sort(key=lambda r: _value_key(r.key))
    if level.order.group_order_type == "count":
        results.sort(key=lambda r: r.total, reverse=desc)
    elif desc:
        results.reverse()
    return results


# PUBLIC_INTERFACE
def group(store: MetaAlertStore, request: GroupRequest) -> GroupResponse:
    """
    Group standalone alerts by one or more fields.

    Meta alerts and the alerts inside active meta alerts do not take part. Each bucket's
    score is the sum of `scoreField` over its alerts.
    """
    query = _base_query(request.query)
    sensor_types, _ = _split_indices(request.indices)

    docs: List[Dict[str, Any]] = []
    if sensor_types is None or sensor_types:
        docs = store.find_alerts(_alert_filter(query, sensor_types))

    return GroupResponse(
        grouped_by=request.groups[0].field,
        group_results=_group_level(docs, request.groups, request.score_field),
    )

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List

from src.metaalert.services.constants import ALERT_FIELD, THREAT_FIELD_DEFAULT


def safe_float(v: Any, default: float = 0.0) -> float:
    if v is None or isinstance(v, bool):
        return default
    try:
        f = float(v)
    except Exception:
        return default
    return f if not math.isnan(f) else default


def threat_scores(members: Iterable[Dict[str, Any]], threat_field: str = THREAT_FIELD_DEFAULT) -> List[float]:
    """Threat score of each member, in member order; missing or non-numeric scores count as 0."""
    return [safe_float(m.get(threat_field)) for m in members]


def _median(sorted_vals: List[float]) -> float:
    n = len(sorted_vals)
    if n == 0:
        return math.nan
    mid = n // 2
    if n % 2:
        return sorted_vals[mid]
    return (sorted_vals[mid - 1] + sorted_vals[mid]) / 2.0


# PUBLIC_INTERFACE
def compute_stats(members: Iterable[Dict[str, Any]], threat_field: str = THREAT_FIELD_DEFAULT) -> Dict[str, Any]:
    """
    Compute aggregate threat statistics over member snapshots.

    Always a full pass over the members. With no members the extremes are undefined:
    min=+inf, max=-inf, median=nan, and average is reported as 0.0.
    """
    vals = sorted(threat_scores(members, threat_field))
    count = len(vals)
    total = float(sum(vals))
    return {
        "count": count,
        "sum": total,
        "average": total / count if count else 0.0,
        "min": vals[0] if vals else math.inf,
        "max": vals[-1] if vals else -math.inf,
        "median": _median(vals),
    }


# PUBLIC_INTERFACE
def apply_stats(
    meta_alert: Dict[str, Any],
    threat_field: str = THREAT_FIELD_DEFAULT,
    threat_sort: str = "sum",
) -> Dict[str, Any]:
    """
    Recompute stats from the meta alert's current members and write them onto it.

    The meta alert's own threat score is the stat named by `threat_sort` (sum by default).
    Returns the stats that were written.
    """
    stats = compute_stats(meta_alert.get(ALERT_FIELD) or [], threat_field)
    meta_alert.update(stats)
    meta_alert[threat_field] = float(stats[threat_sort])
    return stats

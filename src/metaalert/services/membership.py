from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from src.metaalert.schemas.metaalerts import AlertRef
from src.metaalert.services.aggregation import apply_stats
from src.metaalert.services.constants import (
    ALERT_FIELD,
    GROUPS_FIELD,
    GUID_FIELD,
    METAALERT_TYPE,
    SOURCE_TYPE_FIELD,
    STATUS_FIELD,
    MetaAlertStatus,
)
from src.metaalert.services.errors import InvalidArgumentError, InvalidStateError
from src.metaalert.services.status import member_refs, require_active
from src.metaalert.services.store import Document, MetaAlertStore

logger = logging.getLogger(__name__)

EMPTY_META_ALERT_MESSAGE = (
    "Removing these alerts will result in an empty meta alert.  Empty meta alerts are not allowed."
)


def _snapshot(alert: Document) -> Dict[str, Any]:
    return copy.deepcopy(alert.document)


def _member_guids(members: Sequence[Dict[str, Any]]) -> set:
    return {m.get(GUID_FIELD) for m in members}


def _base_alert_refs(refs: Sequence[AlertRef]) -> List[AlertRef]:
    # Meta alerts cannot be members of other meta alerts.
    return [r for r in refs if r.sensor_type != METAALERT_TYPE]


# PUBLIC_INTERFACE
def create_meta_alert(
    store: MetaAlertStore,
    refs: Sequence[AlertRef],
    groups: Optional[Sequence[str]] = None,
    threat_sort: str = "sum",
) -> Document:
    """
    Create an active meta alert over the referenced alerts.

    Each member gets the new guid in its backlink before its snapshot is taken, so the
    snapshots stored on the meta alert already carry the link.
    """
    if not refs:
        raise InvalidArgumentError("A meta alert must be created with at least one alert")

    alerts = store.get_all_latest(_base_alert_refs(refs))
    if not alerts:
        raise InvalidArgumentError("None of the requested alerts could be found")

    guid = str(uuid4())
    members: List[Dict[str, Any]] = []
    seen: set = set()
    for alert in alerts:
        if alert.guid in seen:
            continue
        seen.add(alert.guid)
        store.add_meta_alert_ref(alert, guid)
        members.append(_snapshot(alert))

    meta_alert: Dict[str, Any] = {
        GUID_FIELD: guid,
        SOURCE_TYPE_FIELD: METAALERT_TYPE,
        STATUS_FIELD: MetaAlertStatus.active.value,
        GROUPS_FIELD: list(groups or []),
        ALERT_FIELD: members,
    }
    apply_stats(meta_alert, store.threat_field, threat_sort)

    created = store.persist_meta_alert(meta_alert)
    logger.info("Created meta alert %s with %d alerts (requested %d)", guid, len(members), len(refs))
    return created


# PUBLIC_INTERFACE
def add_alerts(
    store: MetaAlertStore,
    guid: str,
    refs: Sequence[AlertRef],
    threat_sort: str = "sum",
) -> Document:
    """
    Add alerts to an active meta alert.

    Refs that do not resolve, and alerts that are already members, are skipped. The meta
    alert is re-persisted even when nothing was added.
    """
    meta = store.require_meta_alert(guid)
    require_active(meta, "Adding alerts to an INACTIVE meta alert is not allowed")

    members: List[Dict[str, Any]] = list(meta.document.get(ALERT_FIELD) or [])
    present = _member_guids(members)

    candidates = [r for r in _base_alert_refs(refs) if r.guid not in present]
    added = 0
    for alert in store.get_all_latest(candidates):
        if alert.guid in present:
            continue
        store.add_meta_alert_ref(alert, guid)
        members.append(_snapshot(alert))
        present.add(alert.guid)
        added += 1

    if added < len(refs):
        logger.debug("Meta alert %s: %d of %d refs skipped (missing or already members)", guid, len(refs) - added, len(refs))

    meta.document[ALERT_FIELD] = members
    apply_stats(meta.document, store.threat_field, threat_sort)
    return store.persist_meta_alert(meta.document)


# PUBLIC_INTERFACE
def remove_alerts(
    store: MetaAlertStore,
    guid: str,
    refs: Sequence[AlertRef],
    threat_sort: str = "sum",
) -> Document:
    """
    Remove alerts (matched by guid) from an active meta alert.

    The removal is checked first: if it would leave no members, InvalidStateError is
    raised and nothing is written. Refs that are not members are ignored.
    """
    meta = store.require_meta_alert(guid)
    require_active(meta, "Removing alerts from an INACTIVE meta alert is not allowed")

    remove_guids = {r.guid for r in refs}
    members: List[Dict[str, Any]] = list(meta.document.get(ALERT_FIELD) or [])
    kept = [m for m in members if m.get(GUID_FIELD) not in remove_guids]
    removed = [m for m in members if m.get(GUID_FIELD) in remove_guids]

    if not kept:
        raise InvalidStateError(EMPTY_META_ALERT_MESSAGE)

    # Backlinks are resolved from the snapshots, which know each member's sensor type.
    for alert in store.get_all_latest(member_refs({ALERT_FIELD: removed})):
        store.remove_meta_alert_ref(alert, guid)

    if removed:
        logger.debug("Meta alert %s: removed %d alerts", guid, len(removed))

    meta.document[ALERT_FIELD] = kept
    apply_stats(meta.document, store.threat_field, threat_sort)
    return store.persist_meta_alert(meta.document)

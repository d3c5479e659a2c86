from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional

from src.metaalert.services.aggregation import apply_stats
from src.metaalert.services.constants import (
    ALERT_FIELD,
    GUID_FIELD,
    METAALERT_FIELD,
    METAALERT_TYPE,
    SOURCE_TYPE_FIELD,
    MetaAlertStatus,
)
from src.metaalert.services.errors import NotFoundError, UnsupportedOperationError
from src.metaalert.services.locks import KeyedLock
from src.metaalert.services.patch_guard import apply_patch
from src.metaalert.services.status import current_status
from src.metaalert.services.store import Document, MetaAlertStore, backlink_refs

logger = logging.getLogger(__name__)


def replace_member_snapshot(meta_alert: Dict[str, Any], alert: Dict[str, Any]) -> bool:
    """Swap the member snapshot with the alert's guid for a copy of `alert`. Returns False if not a member."""
    members = list(meta_alert.get(ALERT_FIELD) or [])
    for i, member in enumerate(members):
        if member.get(GUID_FIELD) == alert.get(GUID_FIELD):
            members[i] = copy.deepcopy(alert)
            meta_alert[ALERT_FIELD] = members
            return True
    return False


def _propagate_to(
    store: MetaAlertStore,
    meta_guid: str,
    alert: Dict[str, Any],
    threat_sort: str,
) -> bool:
    meta = store.get_meta_alert(meta_guid)
    if meta is None:
        logger.debug("Alert %s references missing meta alert %s", alert.get(GUID_FIELD), meta_guid)
        return False
    if current_status(meta.document) != MetaAlertStatus.active:
        return False
    if not replace_member_snapshot(meta.document, alert):
        logger.debug("Alert %s is not a member of meta alert %s", alert.get(GUID_FIELD), meta_guid)
        return False
    apply_stats(meta.document, store.threat_field, threat_sort)
    store.persist_meta_alert(meta.document)
    return True


# PUBLIC_INTERFACE
def update_alert(
    store: MetaAlertStore,
    document: Document,
    locks: KeyedLock,
    threat_sort: str = "sum",
    timestamp: Optional[int] = None,
) -> Document:
    """
    Write a base alert and refresh its snapshot in every active meta alert it belongs to.

    The backlink is maintained by the meta alert operations, so the write leaves the
    stored backlink alone and the fan-out reads it back afterwards. Inactive meta
    alerts keep their stale snapshot.
    """
    if document.sensor_type == METAALERT_TYPE or document.document.get(SOURCE_TYPE_FIELD) == METAALERT_TYPE:
        raise UnsupportedOperationError("Meta alerts cannot be directly updated")

    body = copy.deepcopy(document.document)
    body[GUID_FIELD] = document.guid
    body[SOURCE_TYPE_FIELD] = document.sensor_type

    persisted = store.persist_alert_fields(body, timestamp)
    alert = persisted.document

    refs = backlink_refs(alert.get(METAALERT_FIELD))
    updated = 0
    for meta_guid in refs:
        with locks.hold(meta_guid):
            if _propagate_to(store, meta_guid, alert, threat_sort):
                updated += 1

    if refs:
        logger.info("Alert %s updated; refreshed %d of %d referencing meta alerts", document.guid, updated, len(refs))
    return persisted


# PUBLIC_INTERFACE
def patch_alert(
    store: MetaAlertStore,
    guid: str,
    sensor_type: str,
    operations: List[Dict[str, Any]],
    locks: KeyedLock,
    threat_sort: str = "sum",
    timestamp: Optional[int] = None,
) -> Document:
    """Apply a patch to a base alert and send the result down the update path."""
    stored = store.get_alert(guid, sensor_type)
    if stored is None:
        raise NotFoundError(f"Alert {guid} ({sensor_type}) not found")
    patched = apply_patch(stored.document, operations)
    return update_alert(store, Document(guid, sensor_type, patched), locks, threat_sort, timestamp)

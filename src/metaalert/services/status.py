from __future__ import annotations

import logging
from typing import Any, Dict, List

from src.metaalert.schemas.metaalerts import AlertRef
from src.metaalert.services.constants import (
    ALERT_FIELD,
    GUID_FIELD,
    SOURCE_TYPE_FIELD,
    STATUS_FIELD,
    MetaAlertStatus,
)
from src.metaalert.services.errors import InvalidStateError
from src.metaalert.services.store import Document, MetaAlertStore

logger = logging.getLogger(__name__)


def current_status(meta_alert: Dict[str, Any]) -> MetaAlertStatus:
    """Status of a meta alert document; a document without one is treated as active."""
    raw = meta_alert.get(STATUS_FIELD) or MetaAlertStatus.active.value
    try:
        return MetaAlertStatus(str(raw).lower())
    except ValueError:
        raise InvalidStateError(f"Meta alert {meta_alert.get(GUID_FIELD)} has unknown status {raw!r}")


def require_active(meta_alert: Document, message: str) -> None:
    """Gate for membership changes: raise InvalidStateError unless the meta alert is active."""
    if current_status(meta_alert.document) != MetaAlertStatus.active:
        raise InvalidStateError(message)


def member_refs(meta_alert: Dict[str, Any]) -> List[AlertRef]:
    """References to the base alerts behind a meta alert's member snapshots."""
    refs: List[AlertRef] = []
    for member in meta_alert.get(ALERT_FIELD) or []:
        guid = member.get(GUID_FIELD)
        sensor_type = member.get(SOURCE_TYPE_FIELD)
        if guid and sensor_type:
            refs.append(AlertRef(guid=guid, sensor_type=sensor_type))
    return refs


# PUBLIC_INTERFACE
def set_status(store: MetaAlertStore, guid: str, target: MetaAlertStatus) -> Document:
    """
    Move a meta alert to `target`.

    ACTIVE -> INACTIVE drops this meta alert from every member's backlink, INACTIVE -> ACTIVE
    restores it. Members and stats are left as they are. Setting the current status again
    only re-persists the document.
    """
    meta = store.require_meta_alert(guid)
    current = current_status(meta.document)

    if target != current:
        alerts = store.get_all_latest(member_refs(meta.document))
        for alert in alerts:
            if target == MetaAlertStatus.inactive:
                store.remove_meta_alert_ref(alert, guid)
            else:
                store.add_meta_alert_ref(alert, guid)
        meta.document[STATUS_FIELD] = target.value
        logger.info(
            "Meta alert %s status %s -> %s (%d member backlinks updated)",
            guid,
            current.value,
            target.value,
            len(alerts),
        )

    return store.persist_meta_alert(meta.document)

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from src.metaalert.config import BackendConfig
from src.metaalert.db.mongo import MongoManager
from src.metaalert.schemas.metaalerts import (
    AlertRef,
    GroupRequest,
    GroupResponse,
    SearchRequest,
    SearchResponse,
)
from src.metaalert.services import membership, patch_guard, propagation, search, status
from src.metaalert.services.constants import METAALERT_TYPE, MetaAlertStatus
from src.metaalert.services.locks import KeyedLock
from src.metaalert.services.reconciler import ConsistencyReconciler
from src.metaalert.services.store import Document, MetaAlertStore


class MetaAlertService:
    """
    Entry point for every meta alert operation.

    Read-modify-write operations on a meta alert hold that meta alert's lock for the
    whole cycle, so concurrent changes to the same meta alert cannot lose each other's
    updates while different meta alerts never wait on one another.
    """

    def __init__(
        self,
        store: MetaAlertStore,
        reconciler: Optional[ConsistencyReconciler] = None,
        threat_sort: str = "sum",
        search_max_results: int = 1000,
    ):
        self.store = store
        self.reconciler = reconciler or ConsistencyReconciler()
        self.threat_sort = threat_sort
        self.search_max_results = search_max_results
        self.locks = KeyedLock()

    @classmethod
    def from_config(cls, mongo: MongoManager, config: BackendConfig) -> "MetaAlertService":
        store = MetaAlertStore(
            mongo,
            threat_field=config.threat_field,
            empty_backlink_policy=config.empty_backlink_policy,
        )
        reconciler = ConsistencyReconciler(config.consistency_max_retries, config.consistency_sleep_ms)
        return cls(
            store,
            reconciler=reconciler,
            threat_sort=config.threat_sort,
            search_max_results=config.search_max_results,
        )

    # ---- Membership and status ----

    # PUBLIC_INTERFACE
    def create_meta_alert(self, refs: Sequence[AlertRef], groups: Optional[Sequence[str]] = None) -> Document:
        """Create an active meta alert from the referenced alerts."""
        return membership.create_meta_alert(self.store, refs, groups, self.threat_sort)

    # PUBLIC_INTERFACE
    def add_alerts_to_meta_alert(self, guid: str, refs: Sequence[AlertRef]) -> Document:
        """Add alerts to an active meta alert (idempotent for existing members)."""
        with self.locks.hold(guid):
            return membership.add_alerts(self.store, guid, refs, self.threat_sort)

    # PUBLIC_INTERFACE
    def remove_alerts_from_meta_alert(self, guid: str, refs: Sequence[AlertRef]) -> Document:
        """Remove alerts from an active meta alert; never leaves it empty."""
        with self.locks.hold(guid):
            return membership.remove_alerts(self.store, guid, refs, self.threat_sort)

    # PUBLIC_INTERFACE
    def update_meta_alert_status(self, guid: str, target: MetaAlertStatus) -> Document:
        """Activate or deactivate a meta alert."""
        with self.locks.hold(guid):
            return status.set_status(self.store, guid, MetaAlertStatus(target))

    # ---- Patch and update ----

    # PUBLIC_INTERFACE
    def patch(
        self,
        guid: str,
        sensor_type: str,
        operations: List[Dict[str, Any]],
        timestamp: Optional[int] = None,
    ) -> Document:
        """
        Patch a document.

        Meta alert patches may not touch /alert or /status; base alert patches go through
        the update path so the change reaches the meta alerts containing the alert.
        """
        if sensor_type == METAALERT_TYPE:
            with self.locks.hold(guid):
                return patch_guard.patch_meta_alert(self.store, guid, operations, timestamp)
        return propagation.patch_alert(
            self.store, guid, sensor_type, operations, self.locks, self.threat_sort, timestamp
        )

    # PUBLIC_INTERFACE
    def update(self, document: Document) -> Document:
        """Generic document update; rejects meta alerts and propagates alert edits."""
        return propagation.update_alert(self.store, document, self.locks, self.threat_sort, document.timestamp)

    on_alert_updated = update

    # ---- Reads ----

    # PUBLIC_INTERFACE
    def get_latest(self, guid: str, sensor_type: str) -> Optional[Document]:
        """Latest version of a document, or None."""
        return self.store.get_latest(guid, sensor_type)

    # PUBLIC_INTERFACE
    def get_all_latest(self, refs: Sequence[AlertRef]) -> List[Document]:
        """Multi-get; missing documents are omitted."""
        return self.store.get_all_latest(refs)

    # PUBLIC_INTERFACE
    def get_all_meta_alerts_for_alert(
        self, guid: str, status_filter: Optional[MetaAlertStatus] = None
    ) -> SearchResponse:
        """All meta alerts containing the alert."""
        if status_filter is not None:
            status_filter = MetaAlertStatus(status_filter)
        return search.get_all_meta_alerts_for_alert(self.store, guid, status_filter)

    # PUBLIC_INTERFACE
    def search(self, request: SearchRequest) -> SearchResponse:
        """Meta alert aware search."""
        return search.search(self.store, request, self.search_max_results)

    # PUBLIC_INTERFACE
    def group(self, request: GroupRequest) -> GroupResponse:
        """Group standalone alerts."""
        return search.group(self.store, request)

    # ---- Read-after-write ----

    # PUBLIC_INTERFACE
    def await_meta_alert(self, document: Document) -> Document:
        """Poll until the given meta alert state is readable; NotFoundError when the budget runs out."""
        return self.reconciler.find_updated_doc(self.store, document.document, document.guid, METAALERT_TYPE)

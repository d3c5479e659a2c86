from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymongo.collection import Collection

from src.metaalert.db.mongo import MongoCollections, MongoManager
from src.metaalert.schemas.common import utc_now_millis
from src.metaalert.schemas.metaalerts import AlertRef
from src.metaalert.services.constants import (
    GUID_FIELD,
    METAALERT_FIELD,
    METAALERT_TYPE,
    SOURCE_TYPE_FIELD,
    THREAT_FIELD_DEFAULT,
)
from src.metaalert.services.errors import NotFoundError

logger = logging.getLogger(__name__)

_PROJECTION = {"_id": 0}


@dataclass
class Document:
    """A stored document together with its identity."""

    guid: str
    sensor_type: str
    document: Dict[str, Any]
    timestamp: Optional[int] = None

    def copy(self) -> "Document":
        return Document(self.guid, self.sensor_type, copy.deepcopy(self.document), self.timestamp)


def _alert_key(guid: str, sensor_type: str) -> Dict[str, Any]:
    return {GUID_FIELD: guid, SOURCE_TYPE_FIELD: sensor_type}


def backlink_refs(value: Any) -> List[str]:
    """Meta alert guids held in a backlink value; a single string counts as one ref."""
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


class MetaAlertStore:
    """
    Reads and writes alert and meta alert documents.

    Base alerts live in the `alerts` collection keyed by (guid, sourceType); meta
    alerts live in `metaalerts` keyed by guid. Reads go to the primary, so a caller
    sees its own acknowledged writes; other readers may lag (see reconciler.py).
    """

    def __init__(
        self,
        mongo: MongoManager,
        threat_field: str = THREAT_FIELD_DEFAULT,
        empty_backlink_policy: str = "empty_list",
    ):
        self.mongo = mongo
        self.threat_field = threat_field
        self.empty_backlink_policy = empty_backlink_policy

    def _cols(self) -> MongoCollections:
        return self.mongo.collections()

    def _collection_for(self, sensor_type: str) -> Collection:
        cols = self._cols()
        return cols.metaalerts if sensor_type == METAALERT_TYPE else cols.alerts

    # ---- Reads ----

    # PUBLIC_INTERFACE
    def get_meta_alert(self, guid: str) -> Optional[Document]:
        """Fetch a meta alert by guid; None if absent."""
        doc = self._cols().metaalerts.find_one({GUID_FIELD: guid}, projection=_PROJECTION)
        return Document(guid, METAALERT_TYPE, doc) if doc else None

    def require_meta_alert(self, guid: str) -> Document:
        """Fetch a meta alert by guid or raise NotFoundError."""
        meta = self.get_meta_alert(guid)
        if meta is None:
            raise NotFoundError(f"Meta alert {guid} not found")
        return meta

    # PUBLIC_INTERFACE
    def get_alert(self, guid: str, sensor_type: str) -> Optional[Document]:
        """Fetch a base alert by guid and sensor type; None if absent."""
        doc = self._cols().alerts.find_one(_alert_key(guid, sensor_type), projection=_PROJECTION)
        return Document(guid, sensor_type, doc) if doc else None

    # PUBLIC_INTERFACE
    def get_latest(self, guid: str, sensor_type: str) -> Optional[Document]:
        """Fetch any document, routing the meta alert sensor type to its own collection."""
        if sensor_type == METAALERT_TYPE:
            return self.get_meta_alert(guid)
        return self.get_alert(guid, sensor_type)

    # PUBLIC_INTERFACE
    def get_all_latest(self, refs: Iterable[AlertRef]) -> List[Document]:
        """
        Multi-get. Missing documents are omitted; callers compare counts to detect them.

        Results follow request order and each (guid, sensor type) appears once.
        """
        wanted: List[Tuple[str, str]] = []
        for ref in refs:
            key = (ref.guid, ref.sensor_type)
            if key not in wanted:
                wanted.append(key)
        if not wanted:
            return []

        cols = self._cols()
        found: Dict[Tuple[str, str], Dict[str, Any]] = {}

        meta_guids = [g for g, t in wanted if t == METAALERT_TYPE]
        if meta_guids:
            for doc in cols.metaalerts.find({GUID_FIELD: {"$in": meta_guids}}, projection=_PROJECTION):
                found[(doc[GUID_FIELD], METAALERT_TYPE)] = doc

        alert_keys = [_alert_key(g, t) for g, t in wanted if t != METAALERT_TYPE]
        if alert_keys:
            for doc in cols.alerts.find({"$or": alert_keys}, projection=_PROJECTION):
                found[(doc[GUID_FIELD], doc[SOURCE_TYPE_FIELD])] = doc

        return [Document(g, t, found[(g, t)]) for g, t in wanted if (g, t) in found]

    # PUBLIC_INTERFACE
    def find_alerts(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return raw base alert documents matching a pymongo filter."""
        return list(self._cols().alerts.find(query, projection=_PROJECTION))

    # PUBLIC_INTERFACE
    def find_meta_alerts(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return raw meta alert documents matching a pymongo filter."""
        return list(self._cols().metaalerts.find(query, projection=_PROJECTION))

    # ---- Writes ----

    # PUBLIC_INTERFACE
    def persist_meta_alert(
        self, document: Dict[str, Any], timestamp: Optional[int] = None, guid: Optional[str] = None
    ) -> Document:
        """Upsert a full meta alert document, keyed by `guid` or else the document's own guid."""
        guid = guid or document[GUID_FIELD]
        self._cols().metaalerts.replace_one({GUID_FIELD: guid}, dict(document), upsert=True)
        return Document(guid, METAALERT_TYPE, document, timestamp or utc_now_millis())

    # PUBLIC_INTERFACE
    def persist_alert(self, document: Dict[str, Any], timestamp: Optional[int] = None) -> Document:
        """Upsert a full base alert document."""
        guid = document[GUID_FIELD]
        sensor_type = document[SOURCE_TYPE_FIELD]
        self._cols().alerts.replace_one(_alert_key(guid, sensor_type), dict(document), upsert=True)
        return Document(guid, sensor_type, document, timestamp or utc_now_millis())

    # PUBLIC_INTERFACE
    def persist_alert_fields(self, document: Dict[str, Any], timestamp: Optional[int] = None) -> Document:
        """
        Upsert a base alert's own fields without writing its backlink.

        Fields of the stored alert missing from `document` are unset. The backlink is
        only ever changed through add_meta_alert_ref/remove_meta_alert_ref; an incoming
        backlink is kept only when the alert is inserted. Returns the stored alert as
        read back after the write.
        """
        guid = document[GUID_FIELD]
        sensor_type = document[SOURCE_TYPE_FIELD]
        col = self._cols().alerts
        key = _alert_key(guid, sensor_type)

        fields = {k: v for k, v in document.items() if k not in (METAALERT_FIELD, "_id")}
        update: Dict[str, Any] = {"$set": fields}
        stored = col.find_one(key, projection=_PROJECTION)
        if stored is not None:
            dropped = [k for k in stored if k not in fields and k != METAALERT_FIELD]
            if dropped:
                update["$unset"] = {k: "" for k in dropped}
        elif METAALERT_FIELD in document:
            update["$setOnInsert"] = {METAALERT_FIELD: backlink_refs(document[METAALERT_FIELD])}
        col.update_one(key, update, upsert=True)

        fresh = col.find_one(key, projection=_PROJECTION)
        if fresh is None:
            raise NotFoundError(f"Alert {guid} ({sensor_type}) not found after write")
        return Document(guid, sensor_type, fresh, timestamp or utc_now_millis())

    def _normalize_backlink(self, key: Dict[str, Any], raw: Any) -> None:
        # $addToSet and $pull need an array; a scalar backlink is rewritten as a list first.
        if isinstance(raw, str):
            self._cols().alerts.update_one(
                {**key, METAALERT_FIELD: {"$type": "string"}},
                {"$set": {METAALERT_FIELD: [raw]}},
            )

    # PUBLIC_INTERFACE
    def add_meta_alert_ref(self, alert: Document, meta_guid: str) -> bool:
        """
        Add a meta alert guid to an alert's backlink.

        The write is a single atomic $addToSet, so concurrent meta alerts sharing the
        alert cannot overwrite each other's refs. The in-memory document is updated to
        match. Returns False when the ref was already present.
        """
        raw = alert.document.get(METAALERT_FIELD)
        refs = backlink_refs(raw)
        if meta_guid in refs:
            return False
        refs.append(meta_guid)
        alert.document[METAALERT_FIELD] = refs
        key = _alert_key(alert.guid, alert.sensor_type)
        self._normalize_backlink(key, raw)
        self._cols().alerts.update_one(key, {"$addToSet": {METAALERT_FIELD: meta_guid}})
        return True

    # PUBLIC_INTERFACE
    def remove_meta_alert_ref(self, alert: Document, meta_guid: str) -> bool:
        """
        Remove a meta alert guid from an alert's backlink.

        An emptied backlink is stored as [] or dropped entirely, according to the
        configured policy. Returns False when the ref was not present.
        """
        raw = alert.document.get(METAALERT_FIELD)
        refs = backlink_refs(raw)
        if meta_guid not in refs:
            return False
        refs = [r for r in refs if r != meta_guid]

        col = self._cols().alerts
        key = _alert_key(alert.guid, alert.sensor_type)
        self._normalize_backlink(key, raw)
        col.update_one(key, {"$pull": {METAALERT_FIELD: meta_guid}})

        if refs:
            alert.document[METAALERT_FIELD] = refs
        elif self.empty_backlink_policy == "remove_field":
            alert.document.pop(METAALERT_FIELD, None)
            # Only unset if nothing was added concurrently since the pull.
            col.update_one({**key, METAALERT_FIELD: {"$size": 0}}, {"$unset": {METAALERT_FIELD: ""}})
        else:
            alert.document[METAALERT_FIELD] = []
        return True

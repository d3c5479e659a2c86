from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


DEFAULT_DB_NAME = "metaalerts"


@dataclass(frozen=True)
class MongoCollections:
    """Convenience wrapper for app collections."""

    # Base alerts from every sensor, keyed by (guid, sourceType).
    alerts: Collection

    metaalerts: Collection


class MongoManager:
    """
    MongoDB connection manager.

    Maintains one MongoClient for the service's storage DB. A pre-built client
    (e.g. an in-memory one) may be handed in instead of a URI-driven connection.
    """

    def __init__(self, mongo_uri: str, db_name: str = DEFAULT_DB_NAME, client: Optional[MongoClient] = None):
        self._mongo_uri = mongo_uri
        self._db_name = db_name
        self._client: Optional[MongoClient] = client
        self._lock = RLock()

    def connect(self) -> None:
        """Initialize the Mongo client if needed."""
        with self._lock:
            if self._client is not None:
                return
            # MongoClient is thread-safe and manages internal pooling.
            self._client = MongoClient(self._mongo_uri, connect=True)

    # PUBLIC_INTERFACE
    def ping(self, timeout_ms: int = 1500) -> bool:
        """
        Ping the configured MongoDB to validate connectivity.

        This is used by startup validation and the connectivity-check endpoint.
        """
        try:
            if self._client is None:
                self.connect()
            assert self._client is not None
            self._client.admin.command("ping", maxTimeMS=int(max(250, timeout_ms)))
            return True
        except PyMongoError:
            logger.exception("Mongo ping failed (PyMongoError)")
            return False
        except Exception:
            logger.exception("Mongo ping failed (unexpected)")
            return False

    def close(self) -> None:
        """Close the Mongo client."""
        with self._lock:
            if self._client is not None:
                try:
                    self._client.close()
                except Exception:
                    logger.exception("Error closing MongoClient")
                self._client = None

    def db(self) -> Database:
        """Return the service database handle."""
        if self._client is None:
            self.connect()
        assert self._client is not None
        return self._client[self._db_name]

    def collections(self) -> MongoCollections:
        """Return app collections."""
        db = self.db()
        return MongoCollections(alerts=db["alerts"], metaalerts=db["metaalerts"])

    def init_indexes(self, threat_field: str = "threatScore") -> None:
        """Create required indexes (idempotent)."""
        cols = self.collections()

        # ---- Alerts ----
        cols.alerts.create_index([("guid", ASCENDING), ("sourceType", ASCENDING)], unique=True, name="idx_alerts_guid_type")
        # Backlink lookups and the "standalone alerts" filter used by search/group.
        cols.alerts.create_index([("metaalerts", ASCENDING)], name="idx_alerts_metaalerts")
        cols.alerts.create_index([(threat_field, DESCENDING)], name="idx_alerts_threat_desc")

        # ---- Meta alerts ----
        cols.metaalerts.create_index([("guid", ASCENDING)], unique=True, name="idx_metaalerts_guid")
        cols.metaalerts.create_index([("status", ASCENDING)], name="idx_metaalerts_status")
        # Nested member lookup (all meta alerts containing a given alert guid).
        cols.metaalerts.create_index([("alert.guid", ASCENDING)], name="idx_metaalerts_alert_guid")
        cols.metaalerts.create_index([(threat_field, DESCENDING)], name="idx_metaalerts_threat_desc")

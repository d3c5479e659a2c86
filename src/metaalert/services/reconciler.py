from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from src.metaalert.schemas.metaalerts import AlertRef
from src.metaalert.services.constants import ALERT_FIELD, GUID_FIELD
from src.metaalert.services.errors import NotFoundError
from src.metaalert.services.store import Document, MetaAlertStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _members_by_guid(document: Dict[str, Any]) -> Dict[str, Any]:
    """Replace the member list with a guid-keyed map so ordering does not matter."""
    out = dict(document)
    members = out.get(ALERT_FIELD)
    if isinstance(members, list):
        out[ALERT_FIELD] = {str(m.get(GUID_FIELD)): m for m in members if isinstance(m, dict)}
    return out


def documents_match(expected: Dict[str, Any], actual: Optional[Dict[str, Any]]) -> bool:
    """Compare two documents, treating the meta alert member list as unordered."""
    if actual is None:
        return False
    return _members_by_guid(expected) == _members_by_guid(actual)


class ConsistencyReconciler:
    """
    Bounded polling for writes to become visible to readers.

    The store acknowledges writes before every reader is guaranteed to observe them.
    Callers that need read-after-write poll through this class: a fixed number of
    attempts with a fixed delay, after which NotFoundError is raised.
    """

    def __init__(self, max_retries: int = 10, sleep_ms: int = 500, sleep: Callable[[float], None] = time.sleep):
        self.max_retries = max(1, int(max_retries))
        self.sleep_ms = max(0, int(sleep_ms))
        self._sleep = sleep

    # PUBLIC_INTERFACE
    def await_visible(self, fetch: Callable[[], T], predicate: Callable[[T], bool], description: str) -> T:
        """Poll `fetch` until `predicate` accepts its result; raise NotFoundError once the budget is spent."""
        for attempt in range(self.max_retries):
            result = fetch()
            if predicate(result):
                return result
            logger.debug("%s not visible yet (attempt %d/%d)", description, attempt + 1, self.max_retries)
            if attempt < self.max_retries - 1:
                self._sleep(self.sleep_ms / 1000.0)
        raise NotFoundError(f"Could not find {description} after {self.max_retries} tries")

    # PUBLIC_INTERFACE
    def find_created_doc(self, store: MetaAlertStore, guid: str, sensor_type: str) -> Document:
        """Wait until a document exists."""
        return self.await_visible(
            lambda: store.get_latest(guid, sensor_type),
            lambda doc: doc is not None,
            guid,
        )

    # PUBLIC_INTERFACE
    def find_created_docs(self, store: MetaAlertStore, refs: Sequence[AlertRef]) -> List[Document]:
        """Wait until every referenced document exists."""
        wanted = len({(r.guid, r.sensor_type) for r in refs})
        return self.await_visible(
            lambda: store.get_all_latest(refs),
            lambda docs: len(docs) == wanted,
            "guids " + ", ".join(r.guid for r in refs),
        )

    # PUBLIC_INTERFACE
    def find_updated_doc(
        self, store: MetaAlertStore, expected: Dict[str, Any], guid: str, sensor_type: str
    ) -> Document:
        """Wait until the stored document equals `expected` (member order ignored)."""
        return self.await_visible(
            lambda: store.get_latest(guid, sensor_type),
            lambda doc: doc is not None and documents_match(expected, doc.document),
            guid,
        )

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Callable, Iterator
from typing import Any, Dict, List

# main.py builds a module-level app from env config on import.
os.environ.setdefault("BACKEND_MONGO_URI", "mongodb://localhost:27017")

import httpx  # noqa: E402
import mongomock  # noqa: E402
import pytest  # noqa: E402

from src.metaalert.config import BackendConfig  # noqa: E402
from src.metaalert.db.mongo import MongoManager  # noqa: E402
from src.metaalert.main import create_app  # noqa: E402
from src.metaalert.schemas.metaalerts import AlertRef  # noqa: E402
from src.metaalert.services.metaalert_service import MetaAlertService  # noqa: E402
from src.metaalert.services.store import Document, MetaAlertStore  # noqa: E402

TEST_MONGO_URI = "mongodb://localhost:27017"


def build_alert(i: int, sensor_type: str = "snort") -> Dict[str, Any]:
    """Alert body with threatScore == i and two alternating source IPs."""
    return {
        "guid": f"message_{i}",
        "sourceType": sensor_type,
        "threatScore": float(i),
        "timestamp": 1_000 + i,
        "ip_src_addr": "192.168.1.1" if i % 2 == 0 else "192.168.1.2",
    }


@pytest.fixture
def config() -> BackendConfig:
    """Deterministic config: short consistency budget, no sleeping."""
    return BackendConfig(
        mongo_uri=TEST_MONGO_URI,
        db_name="metaalerts_test",
        threat_field="threatScore",
        threat_sort="sum",
        empty_backlink_policy="empty_list",
        consistency_max_retries=3,
        consistency_sleep_ms=0,
        search_max_results=100,
        log_level="DEBUG",
        mongo_uri_source="BACKEND_MONGO_URI",
    )


@pytest.fixture
def mongo(config: BackendConfig) -> Iterator[MongoManager]:
    """MongoManager over an in-memory mongomock client, with indexes created."""
    manager = MongoManager(config.mongo_uri, db_name=config.db_name, client=mongomock.MongoClient())
    manager.init_indexes(threat_field=config.threat_field)
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture
def service(mongo: MongoManager, config: BackendConfig) -> MetaAlertService:
    return MetaAlertService.from_config(mongo, config)


@pytest.fixture
def store(service: MetaAlertService) -> MetaAlertStore:
    return service.store


@pytest.fixture
def seed_alerts(store: MetaAlertStore) -> Callable[..., List[Document]]:
    """Helper fixture: persist alerts message_<start>..message_<start+count-1> and return them."""

    def _seed(count: int, sensor_type: str = "snort", start: int = 0) -> List[Document]:
        return [store.persist_alert(build_alert(i, sensor_type)) for i in range(start, start + count)]

    return _seed


@pytest.fixture
def to_refs() -> Callable[..., List[AlertRef]]:
    """Helper fixture: AlertRefs for a list of Documents."""

    def _refs(docs: List[Document]) -> List[AlertRef]:
        return [AlertRef(guid=d.guid, sensor_type=d.sensor_type) for d in docs]

    return _refs


@pytest.fixture
def app(config: BackendConfig, mongo: MongoManager):
    """FastAPI app wired to the in-memory Mongo manager."""
    return create_app(config, mongo)


@pytest.fixture
async def async_client(app) -> AsyncIterator[httpx.AsyncClient]:
    """
    Async HTTP client bound to the FastAPI ASGI app.

    ASGITransport does not run startup/shutdown; the mongo fixture already created indexes.
    """
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

from __future__ import annotations

import pytest

from src.metaalert.services.errors import InvalidStateError, NotFoundError
from src.metaalert.services.metaalert_service import MetaAlertService
from src.metaalert.services.status import current_status
from src.metaalert.services.store import MetaAlertStore


def test_deactivate_drops_backlinks_and_keeps_members(
    service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs
):
    alerts = seed_alerts(3)
    created = service.create_meta_alert(to_refs(alerts))

    inactive = service.update_meta_alert_status(created.guid, "inactive")
    assert inactive.document["status"] == "inactive"
    assert len(inactive.document["alert"]) == 3
    assert inactive.document["sum"] == created.document["sum"]

    for i in range(3):
        assert store.get_alert(f"message_{i}", "snort").document["metaalerts"] == []


def test_reactivate_restores_backlinks(service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs):
    alerts = seed_alerts(2)
    created = service.create_meta_alert(to_refs(alerts))
    service.update_meta_alert_status(created.guid, "inactive")

    active = service.update_meta_alert_status(created.guid, "active")
    assert active.document["status"] == "active"
    for i in range(2):
        assert store.get_alert(f"message_{i}", "snort").document["metaalerts"] == [created.guid]

    stored = store.get_meta_alert(created.guid).document
    for doc in (active.document, stored):
        assert doc["alert"] == created.document["alert"]
        for field in ("count", "sum", "median", "min", "max", "threatScore"):
            assert doc[field] == created.document[field]


def test_deactivate_keeps_other_meta_alert_backlinks(
    service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs
):
    alerts = seed_alerts(2)
    first = service.create_meta_alert(to_refs(alerts))
    second = service.create_meta_alert(to_refs(alerts[:1]))

    service.update_meta_alert_status(first.guid, "inactive")
    assert store.get_alert("message_0", "snort").document["metaalerts"] == [second.guid]
    assert store.get_alert("message_1", "snort").document["metaalerts"] == []


def test_same_status_only_re_persists(service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs):
    alerts = seed_alerts(1)
    created = service.create_meta_alert(to_refs(alerts))

    again = service.update_meta_alert_status(created.guid, "active")
    assert again.document["status"] == "active"
    assert store.get_alert("message_0", "snort").document["metaalerts"] == [created.guid]


def test_status_of_missing_meta_alert(service: MetaAlertService):
    with pytest.raises(NotFoundError):
        service.update_meta_alert_status("missing", "inactive")


def test_current_status():
    assert current_status({"guid": "m"}).value == "active"
    assert current_status({"guid": "m", "status": "INACTIVE"}).value == "inactive"
    with pytest.raises(InvalidStateError):
        current_status({"guid": "m", "status": "archived"})

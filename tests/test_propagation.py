from __future__ import annotations

import threading

import pytest

from src.metaalert.schemas.metaalerts import AlertRef
from src.metaalert.services.errors import NotFoundError, UnsupportedOperationError
from src.metaalert.services.metaalert_service import MetaAlertService
from src.metaalert.services.store import Document, MetaAlertStore, backlink_refs


def _snapshot(meta: Document, guid: str):
    return next(m for m in meta.document["alert"] if m["guid"] == guid)


def test_alert_update_refreshes_active_meta_alert(
    service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs
):
    alerts = seed_alerts(2)
    created = service.create_meta_alert(to_refs(alerts))

    body = dict(alerts[0].document, threatScore=10.0, note="escalated")
    service.update(Document("message_0", "snort", body))

    meta = store.get_meta_alert(created.guid)
    snap = _snapshot(meta, "message_0")
    assert snap["threatScore"] == 10.0
    assert snap["note"] == "escalated"
    assert meta.document["sum"] == 11.0
    assert meta.document["max"] == 10.0
    assert meta.document["threatScore"] == 11.0


def test_alert_update_reaches_every_active_meta_alert(
    service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs
):
    alerts = seed_alerts(2)
    first = service.create_meta_alert(to_refs(alerts))
    second = service.create_meta_alert(to_refs(alerts[:1]))

    service.on_alert_updated(Document("message_0", "snort", dict(alerts[0].document, threatScore=5.0)))

    assert store.get_meta_alert(first.guid).document["sum"] == 6.0
    assert store.get_meta_alert(second.guid).document["sum"] == 5.0


def test_inactive_meta_alert_keeps_stale_snapshot(
    service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs
):
    alerts = seed_alerts(2)
    created = service.create_meta_alert(to_refs(alerts))
    service.update_meta_alert_status(created.guid, "inactive")

    service.update(Document("message_1", "snort", dict(alerts[1].document, threatScore=50.0)))

    meta = store.get_meta_alert(created.guid)
    assert _snapshot(meta, "message_1")["threatScore"] == 1.0
    assert meta.document["sum"] == 1.0
    assert store.get_alert("message_1", "snort").document["threatScore"] == 50.0


def test_update_keeps_stored_backlink(service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs):
    alerts = seed_alerts(1)
    created = service.create_meta_alert(to_refs(alerts))

    body = {"guid": "message_0", "sourceType": "snort", "threatScore": 3.0, "metaalerts": ["bogus"]}
    service.update(Document("message_0", "snort", body))

    assert store.get_alert("message_0", "snort").document["metaalerts"] == [created.guid]
    assert store.get_meta_alert(created.guid).document["sum"] == 3.0


def test_update_of_new_alert_is_plain_upsert(service: MetaAlertService, store: MetaAlertStore):
    service.update(Document("fresh", "bro", {"threatScore": 1.0}))
    stored = store.get_alert("fresh", "bro").document
    assert stored["guid"] == "fresh"
    assert stored["sourceType"] == "bro"


def test_meta_alert_cannot_be_updated_directly(service: MetaAlertService, seed_alerts, to_refs):
    created = service.create_meta_alert(to_refs(seed_alerts(1)))
    with pytest.raises(UnsupportedOperationError, match="Meta alerts cannot be directly updated"):
        service.update(Document(created.guid, "metaalert", dict(created.document, name="x")))


def test_patching_base_alert_propagates(service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs):
    alerts = seed_alerts(2)
    created = service.create_meta_alert(to_refs(alerts))

    service.patch("message_1", "snort", [{"op": "replace", "path": "/threatScore", "value": 9.0}])

    meta = store.get_meta_alert(created.guid)
    assert _snapshot(meta, "message_1")["threatScore"] == 9.0
    assert meta.document["sum"] == 9.0


def test_patching_missing_alert(service: MetaAlertService):
    with pytest.raises(NotFoundError):
        service.patch("missing", "snort", [{"op": "add", "path": "/x", "value": 1}])


def test_update_does_not_undo_concurrent_add(
    service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs, monkeypatch: pytest.MonkeyPatch
):
    alerts = seed_alerts(2)
    first = service.create_meta_alert(to_refs(alerts))
    second = service.create_meta_alert(to_refs(alerts[1:]))
    write = store.persist_alert_fields

    def add_then_write(document, timestamp=None):
        # Another caller adds the alert to a second meta alert right before the write lands.
        t = threading.Thread(
            target=service.add_alerts_to_meta_alert,
            args=(second.guid, [AlertRef(guid="message_0", sensor_type="snort")]),
        )
        t.start()
        t.join()
        return write(document, timestamp)

    monkeypatch.setattr(store, "persist_alert_fields", add_then_write)
    service.update(Document("message_0", "snort", dict(alerts[0].document, threatScore=4.0)))

    backlink = store.get_alert("message_0", "snort").document["metaalerts"]
    assert sorted(backlink) == sorted([first.guid, second.guid])

    meta = store.get_meta_alert(second.guid)
    assert sorted(m["guid"] for m in meta.document["alert"]) == ["message_0", "message_1"]
    assert _snapshot(meta, "message_0")["threatScore"] == 4.0
    assert meta.document["sum"] == 5.0


def test_update_unsets_dropped_fields_but_not_backlink(
    service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs
):
    alerts = seed_alerts(1)
    created = service.create_meta_alert(to_refs(alerts))

    persisted = service.update(Document("message_0", "snort", {"threatScore": 2.0}))

    stored = store.get_alert("message_0", "snort").document
    assert "ip_src_addr" not in stored
    assert stored["metaalerts"] == [created.guid]
    assert persisted.document == stored


def test_string_backlink_is_a_single_ref(service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs):
    alerts = seed_alerts(1)
    created = service.create_meta_alert(to_refs(alerts))
    store.persist_alert(dict(alerts[0].document, metaalerts=created.guid))

    service.update(Document("message_0", "snort", dict(alerts[0].document, threatScore=6.0)))

    meta = store.get_meta_alert(created.guid)
    assert _snapshot(meta, "message_0")["threatScore"] == 6.0
    assert meta.document["sum"] == 6.0


def test_string_backlink_takes_new_refs(service: MetaAlertService, store: MetaAlertStore):
    store.persist_alert({"guid": "legacy", "sourceType": "bro", "threatScore": 1.0, "metaalerts": "old-meta"})

    created = service.create_meta_alert([AlertRef(guid="legacy", sensor_type="bro")])

    assert store.get_alert("legacy", "bro").document["metaalerts"] == ["old-meta", created.guid]


def test_backlink_refs():
    assert backlink_refs(None) == []
    assert backlink_refs("meta-1") == ["meta-1"]
    assert backlink_refs(["meta-1", "meta-2"]) == ["meta-1", "meta-2"]

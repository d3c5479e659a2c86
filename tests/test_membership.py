from __future__ import annotations

from dataclasses import replace

import pytest

from src.metaalert.schemas.metaalerts import AlertRef
from src.metaalert.services.errors import InvalidArgumentError, InvalidStateError, NotFoundError
from src.metaalert.services.membership import EMPTY_META_ALERT_MESSAGE
from src.metaalert.services.metaalert_service import MetaAlertService
from src.metaalert.services.store import MetaAlertStore


def _member_guids(doc):
    return sorted(m["guid"] for m in doc.document["alert"])


def test_create_links_members_and_computes_stats(service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs):
    alerts = seed_alerts(3)
    created = service.create_meta_alert(to_refs(alerts[1:]), groups=["group_one", "group_two"])

    meta = created.document
    assert meta["status"] == "active"
    assert meta["sourceType"] == "metaalert"
    assert meta["groups"] == ["group_one", "group_two"]
    assert _member_guids(created) == ["message_1", "message_2"]
    assert meta["count"] == 2
    assert meta["sum"] == 3.0
    assert meta["threatScore"] == 3.0

    # Snapshots already carry the new backlink.
    for member in meta["alert"]:
        assert member["metaalerts"] == [created.guid]

    assert store.get_alert("message_1", "snort").document["metaalerts"] == [created.guid]
    assert "metaalerts" not in store.get_alert("message_0", "snort").document

    stored = store.get_meta_alert(created.guid)
    assert stored is not None
    assert _member_guids(stored) == ["message_1", "message_2"]


def test_create_requires_alerts(service: MetaAlertService):
    with pytest.raises(InvalidArgumentError, match="at least one alert"):
        service.create_meta_alert([])


def test_create_with_no_resolvable_alerts(service: MetaAlertService):
    with pytest.raises(InvalidArgumentError):
        service.create_meta_alert([AlertRef(guid="missing", sensor_type="snort")])


def test_create_skips_missing_refs(service: MetaAlertService, seed_alerts, to_refs):
    refs = to_refs(seed_alerts(1)) + [AlertRef(guid="missing", sensor_type="snort")]
    created = service.create_meta_alert(refs)
    assert _member_guids(created) == ["message_0"]


def test_alert_may_belong_to_several_meta_alerts(service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs):
    alerts = seed_alerts(2)
    first = service.create_meta_alert(to_refs(alerts))
    second = service.create_meta_alert(to_refs(alerts[:1]))

    backlink = store.get_alert("message_0", "snort").document["metaalerts"]
    assert sorted(backlink) == sorted([first.guid, second.guid])


def test_add_alerts_updates_members_and_stats(service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs):
    alerts = seed_alerts(4)
    created = service.create_meta_alert(to_refs(alerts[:2]))

    updated = service.add_alerts_to_meta_alert(created.guid, to_refs(alerts[2:]))
    assert _member_guids(updated) == ["message_0", "message_1", "message_2", "message_3"]
    assert updated.document["count"] == 4
    assert updated.document["sum"] == 6.0
    assert updated.document["median"] == 1.5
    assert store.get_alert("message_3", "snort").document["metaalerts"] == [created.guid]


def test_add_existing_member_is_a_no_op(service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs):
    alerts = seed_alerts(2)
    created = service.create_meta_alert(to_refs(alerts))

    updated = service.add_alerts_to_meta_alert(created.guid, to_refs(alerts[:1]))
    assert _member_guids(updated) == ["message_0", "message_1"]
    assert updated.document["count"] == 2
    assert store.get_alert("message_0", "snort").document["metaalerts"] == [created.guid]


def test_add_to_inactive_meta_alert_is_rejected(service: MetaAlertService, seed_alerts, to_refs):
    alerts = seed_alerts(2)
    created = service.create_meta_alert(to_refs(alerts[:1]))
    service.update_meta_alert_status(created.guid, "inactive")

    with pytest.raises(InvalidStateError, match="Adding alerts to an INACTIVE meta alert is not allowed"):
        service.add_alerts_to_meta_alert(created.guid, to_refs(alerts[1:]))


def test_add_to_missing_meta_alert(service: MetaAlertService, seed_alerts, to_refs):
    with pytest.raises(NotFoundError):
        service.add_alerts_to_meta_alert("nope", to_refs(seed_alerts(1)))


def test_remove_alerts_updates_members_stats_and_backlink(
    service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs
):
    alerts = seed_alerts(4)
    created = service.create_meta_alert(to_refs(alerts))

    updated = service.remove_alerts_from_meta_alert(created.guid, to_refs(alerts[:2]))
    assert _member_guids(updated) == ["message_2", "message_3"]
    assert updated.document["count"] == 2
    assert updated.document["sum"] == 5.0
    assert updated.document["min"] == 2.0
    assert store.get_alert("message_0", "snort").document["metaalerts"] == []
    assert store.get_alert("message_2", "snort").document["metaalerts"] == [created.guid]


def test_remove_ignores_non_members(service: MetaAlertService, seed_alerts, to_refs):
    alerts = seed_alerts(3)
    created = service.create_meta_alert(to_refs(alerts[:2]))

    updated = service.remove_alerts_from_meta_alert(created.guid, to_refs(alerts[2:]))
    assert _member_guids(updated) == ["message_0", "message_1"]


def test_remove_all_members_is_rejected_and_nothing_changes(
    service: MetaAlertService, store: MetaAlertStore, seed_alerts, to_refs
):
    alerts = seed_alerts(2)
    created = service.create_meta_alert(to_refs(alerts))

    with pytest.raises(InvalidStateError) as exc:
        service.remove_alerts_from_meta_alert(created.guid, to_refs(alerts))
    assert str(exc.value) == EMPTY_META_ALERT_MESSAGE

    assert _member_guids(store.get_meta_alert(created.guid)) == ["message_0", "message_1"]
    assert store.get_alert("message_0", "snort").document["metaalerts"] == [created.guid]


def test_remove_from_inactive_meta_alert_is_rejected(service: MetaAlertService, seed_alerts, to_refs):
    alerts = seed_alerts(2)
    created = service.create_meta_alert(to_refs(alerts))
    service.update_meta_alert_status(created.guid, "inactive")

    with pytest.raises(InvalidStateError, match="Removing alerts from an INACTIVE meta alert is not allowed"):
        service.remove_alerts_from_meta_alert(created.guid, to_refs(alerts[:1]))


def test_remove_field_backlink_policy(mongo, config, seed_alerts, to_refs):
    service = MetaAlertService.from_config(mongo, replace(config, empty_backlink_policy="remove_field"))
    alerts = seed_alerts(2)
    created = service.create_meta_alert(to_refs(alerts))

    service.remove_alerts_from_meta_alert(created.guid, to_refs(alerts[:1]))
    assert "metaalerts" not in service.store.get_alert("message_0", "snort").document


def test_meta_alerts_cannot_be_members(service: MetaAlertService, seed_alerts, to_refs):
    alerts = seed_alerts(2)
    first = service.create_meta_alert(to_refs(alerts[:1]))

    second = service.create_meta_alert(to_refs(alerts[1:]) + [AlertRef(guid=first.guid, sensor_type="metaalert")])
    assert _member_guids(second) == ["message_1"]


def test_create_from_two_alerts_stats(service: MetaAlertService, seed_alerts, to_refs):
    alerts = seed_alerts(2, start=1)
    stats = service.create_meta_alert(to_refs(alerts)).document
    assert (stats["count"], stats["sum"], stats["average"]) == (2, 3.0, 1.5)
    assert (stats["min"], stats["max"], stats["median"]) == (1.0, 2.0, 1.5)


def test_remove_down_to_one_member_then_last_fails(service: MetaAlertService, seed_alerts, to_refs):
    alerts = seed_alerts(3, start=1)
    created = service.create_meta_alert(to_refs(alerts))

    stats = service.remove_alerts_from_meta_alert(created.guid, to_refs(alerts[:2])).document
    assert (stats["count"], stats["sum"], stats["average"]) == (1, 3.0, 3.0)
    assert (stats["min"], stats["max"], stats["median"]) == (3.0, 3.0, 3.0)

    with pytest.raises(InvalidStateError):
        service.remove_alerts_from_meta_alert(created.guid, to_refs(alerts[2:]))

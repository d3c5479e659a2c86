"""Field names and fixed values shared by the meta alert services."""

from __future__ import annotations

from enum import Enum

GUID_FIELD = "guid"
SOURCE_TYPE_FIELD = "sourceType"

# Sensor type of meta alert documents; also the index name used in search requests.
METAALERT_TYPE = "metaalert"

# Backlink on a base alert: guids of the active meta alerts it belongs to.
METAALERT_FIELD = "metaalerts"

# Member snapshots on a meta alert.
ALERT_FIELD = "alert"

STATUS_FIELD = "status"
GROUPS_FIELD = "groups"

THREAT_FIELD_DEFAULT = "threatScore"


class MetaAlertStatus(str, Enum):
    """Status of a meta alert."""

    active = "active"
    inactive = "inactive"

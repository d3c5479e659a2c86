from __future__ import annotations

import math
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from src.metaalert.services.constants import MetaAlertStatus

SortOrder = Literal["asc", "desc"]
GroupOrderType = Literal["term", "count"]
PatchOpName = Literal["add", "remove", "replace", "move", "copy", "test"]


def _json_safe(value: Any) -> Any:
    """Render non-finite floats as strings; JSON has no literal for them."""
    if isinstance(value, float) and not math.isfinite(value):
        if math.isnan(value):
            return "NaN"
        return "Infinity" if value > 0 else "-Infinity"
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_json_safe(v) for v in value]
    return value


class AlertRef(BaseModel):
    """Reference to a single document by guid and sensor type."""

    model_config = ConfigDict(populate_by_name=True)

    guid: str = Field(..., min_length=1, description="Document guid.")
    sensor_type: str = Field(..., min_length=1, description="Sensor (source) type of the document.", alias="sensorType")
    index: Optional[str] = Field(default=None, description="Optional index hint; accepted for compatibility and ignored.")


class MetaAlertCreateRequest(BaseModel):
    """Request model for creating a meta alert."""

    alerts: List[AlertRef] = Field(..., description="Alerts to group. Must not be empty.")
    groups: List[str] = Field(default_factory=list, description="Free-form group tags recorded on the meta alert.")


class MetaAlertMembershipRequest(BaseModel):
    """Request model for adding alerts to / removing alerts from a meta alert."""

    alerts: List[AlertRef] = Field(..., description="Alerts to add or remove.")


class MetaAlertStatusRequest(BaseModel):
    """Request model for changing a meta alert's status."""

    status: MetaAlertStatus = Field(..., description="Target status (active|inactive).")


class PatchOperation(BaseModel):
    """Single RFC 6902 operation."""

    model_config = ConfigDict(populate_by_name=True)

    op: PatchOpName = Field(..., description="Operation name.")
    path: str = Field(..., description="JSON pointer to the target location.")
    value: Any = Field(default=None, description="Value for add/replace/test.")
    from_: Optional[str] = Field(default=None, description="Source pointer for move/copy.", alias="from")

    def to_json_patch(self) -> Dict[str, Any]:
        """Return the operation as a plain RFC 6902 dict."""
        out: Dict[str, Any] = {"op": self.op, "path": self.path}
        if self.op in ("add", "replace", "test"):
            out["value"] = self.value
        if self.op in ("move", "copy"):
            out["from"] = self.from_
        return out


class PatchRequest(BaseModel):
    """Request model for patching a document."""

    patch: List[PatchOperation] = Field(..., description="Operations applied in order.")
    timestamp: Optional[int] = Field(default=None, description="Optional epoch-millis timestamp recorded with the write.")


class AlertUpdateRequest(BaseModel):
    """Full replacement of a base alert through the generic update path."""

    model_config = ConfigDict(populate_by_name=True)

    guid: str = Field(..., min_length=1, description="Alert guid.")
    sensor_type: str = Field(..., min_length=1, description="Sensor type of the alert.", alias="sensorType")
    document: Dict[str, Any] = Field(..., description="New alert body.")
    timestamp: Optional[int] = Field(default=None, description="Optional epoch-millis timestamp.")


class DocumentOut(BaseModel):
    """Response model for a stored document."""

    model_config = ConfigDict(populate_by_name=True)

    guid: str = Field(..., description="Document guid.")
    sensor_type: str = Field(..., description="Sensor type.", alias="sensorType")
    document: Dict[str, Any] = Field(..., description="Document body.")
    timestamp: Optional[int] = Field(default=None, description="Epoch millis of the last write seen by this call.")

    @field_serializer("document")
    def _serialize_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        return _json_safe(document)


class FindAllRequest(BaseModel):
    """Multi-get request."""

    refs: List[AlertRef] = Field(..., description="Documents to fetch.")


class SortField(BaseModel):
    """Sort key for searches."""

    model_config = ConfigDict(populate_by_name=True)

    field: str = Field(..., description="Field to sort on.")
    sort_order: SortOrder = Field("desc", description="asc|desc", alias="sortOrder")


class SearchRequest(BaseModel):
    """Meta alert aware search request."""

    model_config = ConfigDict(populate_by_name=True)

    query: Union[str, Dict[str, Any]] = Field(
        "*:*", description="'*:*' for match-all, or a MongoDB filter document."
    )
    indices: List[str] = Field(default_factory=list, description="Sensor types and/or 'metaalert'; empty means all.")
    from_: int = Field(0, ge=0, description="Offset of the first result.", alias="from")
    size: int = Field(10, ge=0, description="Maximum number of results.")
    sort: List[SortField] = Field(
        default_factory=lambda: [SortField(field="timestamp", sort_order="desc")],
        description="Sort keys applied in order.",
    )
    fields: Optional[List[str]] = Field(default=None, description="Optional list of fields to return.")


class SearchResult(BaseModel):
    """One search hit."""

    id: str = Field(..., description="Document guid.")
    source: Dict[str, Any] = Field(..., description="Document body.")
    score: float = Field(0.0, description="Relevance score (ranking is not implemented).")
    index: str = Field(..., description="Sensor type the hit came from.")

    @field_serializer("source")
    def _serialize_source(self, source: Dict[str, Any]) -> Dict[str, Any]:
        return _json_safe(source)


class SearchResponse(BaseModel):
    """Envelope for search results."""

    total: int = Field(..., ge=0, description="Total number of matching documents.")
    results: List[SearchResult] = Field(default_factory=list, description="Requested page of results.")


class GroupOrder(BaseModel):
    """Ordering of group buckets."""

    model_config = ConfigDict(populate_by_name=True)

    group_order_type: GroupOrderType = Field("count", description="term|count", alias="groupOrderType")
    sort_order: SortOrder = Field("desc", description="asc|desc", alias="sortOrder")


class Group(BaseModel):
    """One grouping level."""

    field: str = Field(..., description="Field to group on.")
    order: GroupOrder = Field(default_factory=GroupOrder, description="Bucket ordering.")


class GroupRequest(BaseModel):
    """Group (facet) request over standalone alerts."""

    model_config = ConfigDict(populate_by_name=True)

    query: Union[str, Dict[str, Any]] = Field("*:*", description="'*:*' or a MongoDB filter document.")
    indices: List[str] = Field(default_factory=list, description="Sensor types; empty means all.")
    groups: List[Group] = Field(..., min_length=1, description="Grouping levels, outermost first.")
    score_field: Optional[str] = Field(default=None, description="Numeric field summed into each bucket's score.", alias="scoreField")


class GroupResult(BaseModel):
    """One group bucket."""

    model_config = ConfigDict(populate_by_name=True)

    key: Any = Field(..., description="Bucket value.")
    total: int = Field(..., ge=0, description="Number of documents in the bucket.")
    score: float = Field(0.0, description="Sum of the score field across the bucket.")
    grouped_by: Optional[str] = Field(default=None, description="Field of the next level, when nested.", alias="groupedBy")
    group_results: List["GroupResult"] = Field(default_factory=list, description="Nested buckets.", alias="groupResults")


GroupResult.model_rebuild()


class GroupResponse(BaseModel):
    """Envelope for group results."""

    model_config = ConfigDict(populate_by_name=True)

    grouped_by: str = Field(..., description="Field of the outermost level.", alias="groupedBy")
    group_results: List[GroupResult] = Field(default_factory=list, alias="groupResults")

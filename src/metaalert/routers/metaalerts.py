from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Path, Query, Request, status

from src.metaalert.routers.errors import ERROR_RESPONSES, to_http_exception
from src.metaalert.schemas.common import ErrorResponse
from src.metaalert.schemas.metaalerts import (
    DocumentOut,
    MetaAlertCreateRequest,
    MetaAlertMembershipRequest,
    MetaAlertStatusRequest,
    PatchRequest,
    SearchResponse,
)
from src.metaalert.services.constants import METAALERT_TYPE, MetaAlertStatus
from src.metaalert.services.errors import MetaAlertError
from src.metaalert.services.metaalert_service import MetaAlertService
from src.metaalert.services.store import Document
from src.metaalert.state import get_service

router = APIRouter(prefix="/api/metaalerts", tags=["Meta alerts"])

_WAIT_VISIBLE_DESCRIPTION = "Poll until the persisted meta alert is readable before responding."


def _out(doc: Document) -> DocumentOut:
    return DocumentOut(guid=doc.guid, sensor_type=doc.sensor_type, document=doc.document, timestamp=doc.timestamp)


def _maybe_wait(service: MetaAlertService, doc: Document, wait_visible: bool) -> Document:
    if not wait_visible:
        return doc
    seen = service.await_meta_alert(doc)
    return Document(seen.guid, seen.sensor_type, seen.document, doc.timestamp)


@router.post(
    "",
    response_model=DocumentOut,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Create meta alert",
    description="Group existing alerts into a new active meta alert. Members gain the new guid in their backlink.",
    operation_id="create_meta_alert",
)
def create_meta_alert(
    request: Request,
    payload: MetaAlertCreateRequest,
    wait_visible: bool = Query(default=False, alias="waitVisible", description=_WAIT_VISIBLE_DESCRIPTION),
) -> DocumentOut:
    """Create a meta alert."""
    service = get_service(request)
    try:
        created = service.create_meta_alert(payload.alerts, payload.groups)
        return _out(_maybe_wait(service, created, wait_visible))
    except MetaAlertError as e:
        raise to_http_exception(e)


@router.get(
    "/search/alert",
    response_model=SearchResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Meta alerts for alert",
    description="All meta alerts (any status unless filtered) that contain the alert with the given guid.",
    operation_id="get_all_meta_alerts_for_alert",
)
def get_all_meta_alerts_for_alert(
    request: Request,
    guid: str = Query(default="", description="Alert guid."),
    status_filter: Optional[MetaAlertStatus] = Query(default=None, alias="status", description="Optional status filter."),
) -> SearchResponse:
    """List meta alerts containing an alert."""
    try:
        return get_service(request).get_all_meta_alerts_for_alert(guid, status_filter)
    except MetaAlertError as e:
        raise to_http_exception(e)


@router.get(
    "/{guid}",
    response_model=DocumentOut,
    responses={404: {"model": ErrorResponse}},
    summary="Get meta alert",
    description="Fetch the latest version of a meta alert.",
    operation_id="get_meta_alert",
)
def get_meta_alert(
    request: Request,
    guid: str = Path(..., description="Meta alert guid."),
) -> DocumentOut:
    """Get a meta alert by guid."""
    doc = get_service(request).get_latest(guid, METAALERT_TYPE)
    if doc is None:
        raise HTTPException(status_code=404, detail=f"Meta alert {guid} not found")
    return _out(doc)


@router.patch(
    "/{guid}",
    response_model=DocumentOut,
    responses=ERROR_RESPONSES,
    summary="Patch meta alert",
    description=(
        "Apply RFC 6902 operations to a meta alert. Operations touching /alert or /status are rejected; "
        "use the add/remove and status endpoints instead."
    ),
    operation_id="patch_meta_alert",
)
def patch_meta_alert(
    request: Request,
    payload: PatchRequest,
    guid: str = Path(..., description="Meta alert guid."),
) -> DocumentOut:
    """Patch a meta alert."""
    ops = [op.to_json_patch() for op in payload.patch]
    try:
        return _out(get_service(request).patch(guid, METAALERT_TYPE, ops, payload.timestamp))
    except MetaAlertError as e:
        raise to_http_exception(e)


@router.post(
    "/{guid}/alerts/add",
    response_model=DocumentOut,
    responses=ERROR_RESPONSES,
    summary="Add alerts",
    description="Add alerts to an active meta alert. Existing members and unknown refs are skipped.",
    operation_id="add_alerts_to_meta_alert",
)
def add_alerts(
    request: Request,
    payload: MetaAlertMembershipRequest,
    guid: str = Path(..., description="Meta alert guid."),
    wait_visible: bool = Query(default=False, alias="waitVisible", description=_WAIT_VISIBLE_DESCRIPTION),
) -> DocumentOut:
    """Add alerts to a meta alert."""
    service = get_service(request)
    try:
        updated = service.add_alerts_to_meta_alert(guid, payload.alerts)
        return _out(_maybe_wait(service, updated, wait_visible))
    except MetaAlertError as e:
        raise to_http_exception(e)


@router.post(
    "/{guid}/alerts/remove",
    response_model=DocumentOut,
    responses=ERROR_RESPONSES,
    summary="Remove alerts",
    description="Remove alerts from an active meta alert. A removal that would leave it empty is rejected.",
    operation_id="remove_alerts_from_meta_alert",
)
def remove_alerts(
    request: Request,
    payload: MetaAlertMembershipRequest,
    guid: str = Path(..., description="Meta alert guid."),
    wait_visible: bool = Query(default=False, alias="waitVisible", description=_WAIT_VISIBLE_DESCRIPTION),
) -> DocumentOut:
    """Remove alerts from a meta alert."""
    service = get_service(request)
    try:
        updated = service.remove_alerts_from_meta_alert(guid, payload.alerts)
        return _out(_maybe_wait(service, updated, wait_visible))
    except MetaAlertError as e:
        raise to_http_exception(e)


@router.put(
    "/{guid}/status",
    response_model=DocumentOut,
    responses=ERROR_RESPONSES,
    summary="Update meta alert status",
    description="Activate or deactivate a meta alert; member backlinks follow the status.",
    operation_id="update_meta_alert_status",
)
def update_status(
    request: Request,
    payload: MetaAlertStatusRequest,
    guid: str = Path(..., description="Meta alert guid."),
    wait_visible: bool = Query(default=False, alias="waitVisible", description=_WAIT_VISIBLE_DESCRIPTION),
) -> DocumentOut:
    """Change a meta alert's status."""
    service = get_service(request)
    try:
        updated = service.update_meta_alert_status(guid, payload.status)
        return _out(_maybe_wait(service, updated, wait_visible))
    except MetaAlertError as e:
        raise to_http_exception(e)

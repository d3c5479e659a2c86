from __future__ import annotations

from fastapi import APIRouter, HTTPException, Path, Request

from src.metaalert.routers.errors import ERROR_RESPONSES, to_http_exception
from src.metaalert.schemas.common import ErrorResponse
from src.metaalert.schemas.metaalerts import AlertUpdateRequest, DocumentOut, PatchRequest
from src.metaalert.services.errors import MetaAlertError
from src.metaalert.services.store import Document
from src.metaalert.state import get_service

router = APIRouter(prefix="/api/alerts", tags=["Alerts"])


def _out(doc: Document) -> DocumentOut:
    return DocumentOut(guid=doc.guid, sensor_type=doc.sensor_type, document=doc.document, timestamp=doc.timestamp)


@router.get(
    "/{sensorType}/{guid}",
    response_model=DocumentOut,
    responses={404: {"model": ErrorResponse}},
    summary="Get document",
    description="Fetch the latest version of an alert (or, with sensor type 'metaalert', a meta alert).",
    operation_id="get_latest_document",
)
def get_latest(
    request: Request,
    sensor_type: str = Path(..., alias="sensorType", description="Sensor type of the document."),
    guid: str = Path(..., description="Document guid."),
) -> DocumentOut:
    """Get the latest document."""
    doc = get_service(request).get_latest(guid, sensor_type)
    if doc is None:
        raise HTTPException(status_code=404, detail=f"Document {guid} ({sensor_type}) not found")
    return _out(doc)


@router.put(
    "",
    response_model=DocumentOut,
    responses={**ERROR_RESPONSES, 405: {"model": ErrorResponse}},
    summary="Update alert",
    description=(
        "Replace a base alert. Active meta alerts containing it get a refreshed snapshot and recomputed "
        "stats. Meta alerts cannot be updated through this endpoint."
    ),
    operation_id="update_alert",
)
def update_alert(request: Request, payload: AlertUpdateRequest) -> DocumentOut:
    """Replace an alert and propagate the change."""
    doc = Document(payload.guid, payload.sensor_type, dict(payload.document), payload.timestamp)
    try:
        return _out(get_service(request).update(doc))
    except MetaAlertError as e:
        raise to_http_exception(e)


@router.patch(
    "/{sensorType}/{guid}",
    response_model=DocumentOut,
    responses=ERROR_RESPONSES,
    summary="Patch document",
    description="Apply RFC 6902 operations to an alert; the result goes through the update path.",
    operation_id="patch_document",
)
def patch_document(
    request: Request,
    payload: PatchRequest,
    sensor_type: str = Path(..., alias="sensorType", description="Sensor type of the document."),
    guid: str = Path(..., description="Document guid."),
) -> DocumentOut:
    """Patch an alert."""
    ops = [op.to_json_patch() for op in payload.patch]
    try:
        return _out(get_service(request).patch(guid, sensor_type, ops, payload.timestamp))
    except MetaAlertError as e:
        raise to_http_exception(e)

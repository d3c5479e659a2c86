from __future__ import annotations

from typing import List

from fastapi import APIRouter, Request

from src.metaalert.routers.errors import to_http_exception
from src.metaalert.schemas.common import ErrorResponse
from src.metaalert.schemas.metaalerts import (
    DocumentOut,
    FindAllRequest,
    GroupRequest,
    GroupResponse,
    SearchRequest,
    SearchResponse,
)
from src.metaalert.services.errors import MetaAlertError
from src.metaalert.state import get_service

router = APIRouter(prefix="/api/search", tags=["Search"])


@router.post(
    "/search",
    response_model=SearchResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Search",
    description=(
        "Search alerts and meta alerts together. Alerts inside an active meta alert are hidden in favour "
        "of the meta alert; inactive meta alerts are hidden."
    ),
    operation_id="search",
)
def search(request: Request, payload: SearchRequest) -> SearchResponse:
    """Meta alert aware search."""
    try:
        return get_service(request).search(payload)
    except MetaAlertError as e:
        raise to_http_exception(e)


@router.post(
    "/group",
    response_model=GroupResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Group",
    description="Group standalone alerts by one or more fields, with an optional summed score field.",
    operation_id="group",
)
def group(request: Request, payload: GroupRequest) -> GroupResponse:
    """Group standalone alerts."""
    try:
        return get_service(request).group(payload)
    except MetaAlertError as e:
        raise to_http_exception(e)


@router.post(
    "/findAll",
    response_model=List[DocumentOut],
    summary="Find all",
    description="Multi-get by (guid, sensorType). Missing documents are omitted from the result.",
    operation_id="find_all",
)
def find_all(request: Request, payload: FindAllRequest) -> List[DocumentOut]:
    """Fetch several documents at once."""
    docs = get_service(request).get_all_latest(payload.refs)
    return [
        DocumentOut(guid=d.guid, sensor_type=d.sensor_type, document=d.document, timestamp=d.timestamp) for d in docs
    ]

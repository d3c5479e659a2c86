from __future__ import annotations

import re
from typing import Any, Dict

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.metaalert.schemas.common import HealthResponse, utc_now
from src.metaalert.state import get_state

router = APIRouter(tags=["Health"])


def _sanitize_mongo_uri_for_response(uri: str) -> str:
    """Mask credentials in mongo URIs to avoid returning secrets to clients."""
    return re.sub(r"(mongodb(?:\+srv)?://)([^:@/]+):([^@/]+)@", r"\1\2:***@", uri)


class MongoConnectivityResponse(BaseModel):
    """Response model for backend↔Mongo connectivity diagnostics."""

    ok: bool = Field(..., description="Whether the backend can successfully ping MongoDB.")
    mongo_uri_source: str = Field(..., description="Which source provided the effective MongoDB URI.")
    mongo_uri_sanitized: str = Field(..., description="MongoDB URI with credentials masked.")
    db_name: str = Field(..., description="Database holding the alerts and metaalerts collections.")
    timestamp: str = Field(..., description="UTC timestamp when the check was performed (ISO string).")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional debug metadata.")


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Health check",
    description="Basic service liveness check used by deployment and clients.",
    operation_id="health_check",
)
def health_check() -> HealthResponse:
    """Return service liveness status."""
    return HealthResponse(status="ok", message="Healthy", timestamp=utc_now())


@router.get(
    "/api/health/mongo",
    response_model=MongoConnectivityResponse,
    summary="Mongo connectivity check",
    description="Pings the backend's configured MongoDB and reports the resolved URI (credentials masked).",
    operation_id="mongo_connectivity_check",
)
def mongo_connectivity_check(request: Request) -> MongoConnectivityResponse:
    """Connectivity check endpoint to validate backend↔Mongo."""
    state = get_state(request.app)
    ok = state.mongo.ping()
    cfg = state.config

    return MongoConnectivityResponse(
        ok=ok,
        mongo_uri_source=cfg.mongo_uri_source,
        mongo_uri_sanitized=_sanitize_mongo_uri_for_response(cfg.mongo_uri),
        db_name=cfg.db_name,
        timestamp=utc_now().isoformat(),
        meta={
            "threat_field": cfg.threat_field,
            "threat_sort": cfg.threat_sort,
            "empty_backlink_policy": cfg.empty_backlink_policy,
        },
    )

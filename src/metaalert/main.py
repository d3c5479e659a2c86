from __future__ import annotations

import logging
import os
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from src.metaalert.config import BackendConfig, load_config
from src.metaalert.db.mongo import MongoManager
from src.metaalert.routers import alerts, health, metaalerts, search
from src.metaalert.state import get_state, init_state

openapi_tags = [
    {"name": "Health", "description": "Service health and liveness."},
    {"name": "Meta alerts", "description": "Create meta alerts, manage membership and status, patch."},
    {"name": "Alerts", "description": "Base alert reads and updates; edits propagate to active meta alerts."},
    {"name": "Search", "description": "Meta alert aware search, grouping and multi-get."},
]

logger = logging.getLogger(__name__)


def _env_frontend_url() -> str | None:
    return os.getenv("FRONTEND_URL")


def _env_cors_extra_origins() -> List[str]:
    # Comma-separated list for preview deployments, etc.
    raw = os.getenv("CORS_ALLOW_ORIGINS") or ""
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    return parts


def _allowed_origins() -> List[str]:
    # Local frontend by default, plus explicit frontend URL and optional extra origins.
    origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    frontend_url = _env_frontend_url()
    if frontend_url:
        origins.append(frontend_url)
    origins.extend(_env_cors_extra_origins())

    # De-dupe while preserving order
    seen: set = set()
    return [o for o in origins if not (o in seen or seen.add(o))]


def _configure_logging(level: str) -> None:
    logging.getLogger("src.metaalert").setLevel(getattr(logging, level, logging.INFO))


# PUBLIC_INTERFACE
def create_app(config: BackendConfig, mongo: Optional[MongoManager] = None) -> FastAPI:
    """
    Build the FastAPI app.

    `mongo` may be a pre-built manager (e.g. wrapping an in-memory client); otherwise one
    is created from the config.
    """
    _configure_logging(config.log_level)

    app = FastAPI(
        title="Meta Alert Service API",
        description=(
            "Groups related security alerts into meta alerts, keeps their aggregate threat statistics and "
            "member backlinks consistent, and offers meta alert aware search. Documents are stored in MongoDB."
        ),
        version="0.1.0",
        openapi_tags=openapi_tags,
    )

    # Initialize typed app state (config + Mongo manager + service)
    init_state(app, config, mongo)

    @app.on_event("startup")
    async def _on_startup() -> None:
        """Startup hook: connect to Mongo, validate connectivity and ensure indexes."""
        state = get_state(app)

        # Connect + verify early so a misconfigured Mongo fails the boot instead of the first request.
        state.mongo.connect()
        if not state.mongo.ping():
            raise RuntimeError("Mongo connectivity check failed during startup. Verify BACKEND_MONGO_URI.")

        state.mongo.init_indexes(threat_field=state.config.threat_field)

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        """Shutdown hook: close Mongo connections."""
        get_state(app).mongo.close()

    @app.exception_handler(PyMongoError)
    async def _on_mongo_error(request: Request, exc: PyMongoError) -> JSONResponse:
        logger.exception("Storage error handling %s %s", request.method, request.url.path)
        return JSONResponse(status_code=503, content={"detail": f"Storage unavailable: {exc}"})

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(metaalerts.router)
    app.include_router(alerts.router)
    app.include_router(search.router)
    return app


app = create_app(load_config())

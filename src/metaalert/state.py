from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, Request

from src.metaalert.config import BackendConfig
from src.metaalert.db.mongo import MongoManager
from src.metaalert.services.metaalert_service import MetaAlertService


@dataclass
class AppState:
    """Typed app.state container for shared singletons."""

    config: BackendConfig
    mongo: MongoManager
    service: MetaAlertService


# PUBLIC_INTERFACE
def init_state(app: FastAPI, config: BackendConfig, mongo: Optional[MongoManager] = None) -> None:
    """Initialize app.state with config, Mongo manager and the meta alert service."""
    mongo = mongo or MongoManager(config.mongo_uri, db_name=config.db_name)
    app.state.state = AppState(config=config, mongo=mongo, service=MetaAlertService.from_config(mongo, config))


# PUBLIC_INTERFACE
def get_state(app: FastAPI) -> AppState:
    """Fetch typed AppState from a FastAPI app."""
    return app.state.state  # type: ignore[attr-defined]


# PUBLIC_INTERFACE
def get_service(request: Request) -> MetaAlertService:
    """Meta alert service bound to the app handling `request`."""
    return get_state(request.app).service

"""HTTP API: on-demand sync trigger, status and health probe."""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from adguard_sync.config import ApiConfig
from adguard_sync.sync import SyncAlreadyRunningError, Worker

logger = logging.getLogger(__name__)

APP_NAME = "adguard-sync"

_basic = HTTPBasic(auto_error=False)


def _auth_dependency(api: ApiConfig):
    def require_auth(credentials: Optional[HTTPBasicCredentials] = Depends(_basic)) -> None:
        if not api.auth_enabled:
            return
        if credentials is not None:
            user_ok = secrets.compare_digest(credentials.username.encode(), api.username.encode())
            pass_ok = secrets.compare_digest(credentials.password.encode(), api.password.encode())
            if user_ok and pass_ok:
                return
        raise HTTPException(401, "Unauthorized", headers={"WWW-Authenticate": "Basic"})

    return require_auth


def create_app(worker: Worker, api: Optional[ApiConfig] = None) -> FastAPI:
    api = api or ApiConfig()
    app = FastAPI(title=APP_NAME, docs_url=None, redoc_url=None, openapi_url=None)
    require_auth = _auth_dependency(api)

    router = APIRouter(prefix="/api/v1", dependencies=[Depends(require_auth)])

    @router.post("/sync")
    def api_sync() -> JSONResponse:
        try:
            status = worker.run_sync()
        except SyncAlreadyRunningError:
            logger.info("Rejected sync request: a sync is already running")
            return JSONResponse({"error": "sync already running"}, 409)
        return JSONResponse(status.to_dict())

    @router.get("/status")
    def api_status() -> JSONResponse:
        return JSONResponse(worker.status().to_dict())

    app.include_router(router)

    @app.api_route("/healthz", methods=["GET", "HEAD"], include_in_schema=False)
    def healthz() -> PlainTextResponse:
        if worker.healthy():
            return PlainTextResponse("ok", 200)
        return PlainTextResponse("unhealthy", 503)

    @app.get("/", dependencies=[Depends(require_auth)], include_in_schema=False)
    def root() -> PlainTextResponse:
        return PlainTextResponse(APP_NAME)

    return app

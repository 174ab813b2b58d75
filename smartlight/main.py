from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import Settings, settings
from .core.errors import SmartLightError
from .core.log import configure_logging
from .core.timeutil import now_utc, to_iso

from .api.routes import router as api_router
from .api.ws import router as ws_router
import smartlight.api.routes as routes_module
import smartlight.api.security as security_module
import smartlight.api.ws as ws_module

from .domain.interfaces import DeviceStore
from .services.fanout import NotificationFanout
from .services.queries import QueryService
from .services.reconciler import build_engine
from .storage.sqlite_repo import SQLiteRepository


logger = logging.getLogger(__name__)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(SmartLightError)
    async def _smartlight_error(request: Request, exc: SmartLightError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
            for e in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"message": "Invalid request", "errors": errors})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        message = "Route not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"message": message})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"message": "Internal server error"})


def create_app(cfg: Optional[Settings] = None, store: Optional[DeviceStore] = None) -> FastAPI:
    cfg = cfg or settings

    # --- Singletons ---
    repo = store or SQLiteRepository(cfg.sqlite_path, busy_timeout=cfg.busy_timeout())
    fanout = NotificationFanout(delivery_timeout=cfg.delivery_timeout_seconds)
    engine = build_engine(repo, fanout, cfg)
    queries = QueryService(
        repo,
        default_limit=cfg.logs_default_limit,
        max_limit=cfg.logs_max_limit,
        default_hours=cfg.history_default_hours,
        max_hours=cfg.history_max_hours,
        store_timeout=cfg.store_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(cfg.log_level, cfg.log_file)
        logger.info("Starting %s (store=%s)", cfg.app_name, cfg.sqlite_path if store is None else type(store).__name__)

        await repo.init()

        try:
            yield
        finally:
            await engine.drain()
            logger.info("Shutdown complete")

    app = FastAPI(title=cfg.app_name, lifespan=lifespan)
    app.state.engine = engine
    app.state.fanout = fanout
    app.state.queries = queries
    app.state.store = repo

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origin_list(),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    # Make the dependency functions in routes resolve to the real ones
    app.dependency_overrides[routes_module.get_engine] = lambda: engine
    app.dependency_overrides[routes_module.get_queries] = lambda: queries
    app.dependency_overrides[security_module.get_settings] = lambda: cfg
    app.dependency_overrides[ws_module.get_fanout] = lambda: fanout

    _install_error_handlers(app)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "time": to_iso(now_utc()),
            "subscriptions": await fanout.subscription_count(),
            "counters": {
                "reconciliations": engine.stats.reconciliations,
                "persistence_failures": engine.stats.persistence_failures,
                "aux_write_failures": engine.stats.aux_write_failures,
                "fanout_deliveries": fanout.stats.deliveries,
                "fanout_failures": fanout.stats.failures,
            },
        }

    app.include_router(api_router, prefix="/api")
    app.include_router(ws_router)
    return app


app = create_app()

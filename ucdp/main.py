from __future__ import annotations

import logging
import socket
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Optional

import psutil
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import Settings, load_settings
from .gateway.partners import PartnerDirectory
from .gateway.router import router as events_router
from .gateway.stream import StreamDispatcher, build_stream_producer
from .registry.errors import RegistryError
from .registry.router import audit_router, registry_router
from .registry.service import RegistryService, build_registry


logger = logging.getLogger("ucdp")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger("ucdp").setLevel(level)


# ----------------------------
# API key dependency
# ----------------------------


def make_require_api_key(api_key: Optional[str]) -> Callable[..., None]:
    def require_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
        """
        Simple header-based API key check. If UCDP_API_KEY is not set,
        this becomes a no-op (open access).
        """
        if not api_key:
            return

        if x_api_key != api_key:
            raise HTTPException(status_code=401, detail="Invalid or missing API key")

    return require_api_key


# ----------------------------
# Health
# ----------------------------

health_router = APIRouter(prefix="/health", tags=["health"])


@health_router.get("/ping")
async def ping() -> Dict[str, Any]:
    return {"status": "ok", "message": "ucdp registry is alive"}


@health_router.get("/system")
async def system_health() -> Dict[str, Any]:
    boot_time = datetime.fromtimestamp(psutil.boot_time(), tz=timezone.utc)
    now = datetime.now(timezone.utc)
    virtual_mem = psutil.virtual_memory()

    return {
        "status": "ok",
        "hostname": socket.gethostname(),
        "time_utc": now.isoformat(),
        "uptime_seconds": (now - boot_time).total_seconds(),
        "cpu_percent": psutil.cpu_percent(interval=None),
        "memory": {
            "total": virtual_mem.total,
            "available": virtual_mem.available,
            "percent": virtual_mem.percent,
        },
    }


@health_router.get("/registry")
def registry_health(request: Request) -> Dict[str, Any]:
    registry: RegistryService = request.app.state.registry
    dispatcher: StreamDispatcher = request.app.state.dispatcher
    partners: PartnerDirectory = request.app.state.partners

    out: Dict[str, Any] = {"status": "ok", "registry": registry.stats()}

    database = getattr(registry.identities, "database", None)
    if database is not None and not database.ping():
        out["status"] = "error"
        out["message"] = f"Error accessing DB at {database.db_path}"

    out["stream"] = dispatcher.stats()
    out["partners_cache"] = {"entries": len(partners), **partners.stats.to_dict()}
    return out


# ----------------------------
# App factory
# ----------------------------


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[RegistryService] = None,
    dispatcher: Optional[StreamDispatcher] = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    dispatcher = dispatcher or StreamDispatcher(build_stream_producer(settings))

    def attach_registry(app: FastAPI, service: RegistryService) -> None:
        app.state.registry = service
        app.state.partners = PartnerDirectory(service, ttl_seconds=settings.partners_cache_ttl_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Storage is opened on startup, not when the module is imported
        if getattr(app.state, "registry", None) is None:
            attach_registry(app, build_registry(settings))
        dispatcher.start()
        try:
            yield
        finally:
            dispatcher.stop()

    app = FastAPI(title="ucdp-registry", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.dispatcher = dispatcher
    if registry is not None:
        attach_registry(app, registry)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Accept", "Content-Type", "X-UCDP-CALLER", "X-API-Key"],
        max_age=3600,
    )

    @app.exception_handler(RegistryError)
    async def registry_error_handler(request: Request, exc: RegistryError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, Any]:
        return {
            "message": "ucdp registry is running",
            "version": __version__,
            "registry_connector": settings.registry_connector,
            "stream_connector": settings.stream_connector,
        }

    require_api_key = make_require_api_key(settings.api_key)

    app.include_router(health_router)
    app.include_router(registry_router)
    app.include_router(events_router)
    app.include_router(audit_router, dependencies=[Depends(require_api_key)])

    logger.info(
        "ucdp app ready (registry=%s stream=%s)", settings.registry_connector, settings.stream_connector
    )
    return app


app = create_app()

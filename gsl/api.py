from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse

from . import db
from .api_models import CommandRequest, ConfigRequest, CreateServerRequest
from .docker_ops import RuntimeClient
from .errors import (
    GslError,
    ImagePullFailed,
    RegistryCorruptOrMissing,
    RuntimeUnavailable,
    UnknownGameType,
)
from .models import LogsResponse, ServerResponse
from .orchestrator import Orchestrator
from .settings import Settings, settings as default_settings
from .templates import TemplateCatalog

logger = logging.getLogger(__name__)


def status_code_for(error: GslError) -> int:
    if isinstance(error, (RegistryCorruptOrMissing, UnknownGameType)):
        return 404
    if isinstance(error, RuntimeUnavailable):
        return 503
    if isinstance(error, ImagePullFailed):
        return 502
    return 500


def build_orchestrator(cfg: Settings = default_settings) -> Orchestrator:
    return Orchestrator(RuntimeClient(), TemplateCatalog.load(cfg.games_path), cfg)


def create_app(orchestrator: Orchestrator | None = None, cfg: Settings = default_settings) -> FastAPI:
    """HTTP command surface over one Orchestrator.

    The orchestrator is built on startup unless one is passed in (tests do).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.configure(cfg)
        db.init_db()
        instance = orchestrator or build_orchestrator(cfg)
        app.state.orchestrator = instance
        try:
            recovered = instance.recover_installs()
            if recovered:
                logger.warning("Marked interrupted installs as failed: %s", ", ".join(recovered))
        except GslError as e:
            logger.error("Install recovery skipped: %s", e)
        db.log_event("INFO", "API started")
        yield
        instance.shutdown()

    app = FastAPI(title="Game Server Lifecycle", lifespan=lifespan)

    def orch() -> Orchestrator:
        return app.state.orchestrator

    @app.exception_handler(GslError)
    async def _gsl_error(request, exc: GslError):
        return JSONResponse(
            status_code=status_code_for(exc),
            content=ServerResponse(success=False, error=str(exc)).model_dump(mode="json"),
        )

    @app.get("/servers")
    def list_servers():
        return [s.model_dump(mode="json") for s in orch().list_servers()]

    @app.post("/servers", response_model=ServerResponse)
    def create_server(req: CreateServerRequest):
        return ServerResponse(success=True, server=orch().create(req))

    @app.get("/servers/{server_id}", response_model=ServerResponse)
    def get_server(server_id: str):
        return ServerResponse(success=True, server=orch().get_server(server_id))

    @app.get("/servers/{server_id}/status")
    def get_status(server_id: str):
        return {"id": server_id, "status": orch().get_status(server_id).value}

    @app.post("/servers/{server_id}/start", response_model=ServerResponse)
    def start_server(server_id: str):
        return ServerResponse(success=True, server=orch().start(server_id))

    @app.post("/servers/{server_id}/stop", response_model=ServerResponse)
    def stop_server(server_id: str):
        return ServerResponse(success=True, server=orch().stop(server_id))

    @app.post("/servers/{server_id}/reinstall", response_model=ServerResponse)
    def reinstall_server(server_id: str):
        return ServerResponse(success=True, server=orch().reinstall(server_id))

    @app.post("/servers/{server_id}/update", response_model=ServerResponse)
    def update_server(server_id: str):
        return ServerResponse(success=True, server=orch().update_game(server_id))

    @app.post("/servers/{server_id}/install", response_model=ServerResponse)
    def install_server(server_id: str):
        return ServerResponse(success=True, server=orch().run_install(server_id))

    @app.post("/servers/{server_id}/install/cleanup", response_model=ServerResponse)
    def cleanup_install(server_id: str):
        return ServerResponse(success=True, server=orch().cleanup_install(server_id))

    @app.delete("/servers/{server_id}")
    def delete_server(server_id: str, delete_data: bool = True):
        orch().delete(server_id, delete_data=delete_data)
        return {"success": True, "id": server_id}

    @app.post("/servers/{server_id}/attach")
    def attach(server_id: str):
        return {"id": server_id, "streaming": orch().attach(server_id)}

    @app.post("/servers/{server_id}/detach")
    def detach(server_id: str):
        return {"id": server_id, "detached": orch().detach(server_id)}

    @app.get("/servers/{server_id}/logs", response_model=LogsResponse)
    def get_logs(server_id: str, lines: int = Query(500, ge=1, le=10000)):
        return LogsResponse(logs=orch().get_logs(server_id, lines))

    @app.get("/servers/{server_id}/stats")
    def get_stats(server_id: str):
        s = orch().get_stats(server_id)
        return {
            "cpu_percent": s.cpu_percent,
            "memory_usage_mb": s.memory_usage_mb,
            "memory_limit_mb": s.memory_limit_mb,
            "memory_percent": s.memory_percent,
        }

    @app.get("/servers/{server_id}/disk")
    def disk_usage(server_id: str):
        return {"id": server_id, "bytes": orch().disk_usage(server_id)}

    @app.get("/servers/{server_id}/needs-install")
    def needs_install(server_id: str):
        return {"id": server_id, "needs_install": orch().needs_install(server_id)}

    @app.post("/servers/{server_id}/command")
    def send_command(server_id: str, req: CommandRequest):
        return {"success": True, "output": orch().send_command(server_id, req.command)}

    @app.put("/servers/{server_id}/config", response_model=ServerResponse)
    def update_config(server_id: str, req: ConfigRequest):
        return ServerResponse(success=True, server=orch().update_config(server_id, req.config))

    @app.get("/games")
    def list_games():
        return [t.model_dump(mode="json", exclude={"install_script"}) for t in orch().templates.all()]

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000), server_id: str | None = None):
        return db.latest_events(limit=limit, server_id=server_id)

    return app

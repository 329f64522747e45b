from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class ServerStatus(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    INSTALLING = "installing"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Server(BaseModel):
    """Persisted state of one game-server instance."""

    id: str
    name: str
    game_type: str
    status: ServerStatus = ServerStatus.STOPPED
    container_id: str | None = None
    port: int = Field(..., ge=1, le=65535)
    memory_mb: int = Field(..., ge=0)
    data_path: str
    created_at: datetime = Field(default_factory=_utc_now)
    config: dict[str, str] = Field(default_factory=dict)
    # Older documents predate these two fields.
    installed: bool = False
    install_container_id: str | None = None


class ServerResponse(BaseModel):
    success: bool
    server: Server | None = None
    error: str | None = None


class LogsResponse(BaseModel):
    logs: list[str] = Field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class LogEvent:
    server_id: str
    line: str


@dataclass(frozen=True)
class ContainerStats:
    cpu_percent: float
    memory_usage_mb: float
    memory_limit_mb: float
    memory_percent: float

    @classmethod
    def zero(cls) -> "ContainerStats":
        return cls(cpu_percent=0.0, memory_usage_mb=0.0, memory_limit_mb=0.0, memory_percent=0.0)

from __future__ import annotations

from pydantic import BaseModel, Field


class CreateServerRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Display label for the server")
    game_type: str = Field(..., min_length=1, description="Key into the game template catalog")
    port: int | None = Field(None, ge=1, le=65535, description="Host/container port; defaults to the template's first port")
    memory_mb: int | None = Field(None, ge=128, description="Hard memory limit; defaults to the template's recommended RAM")
    config: dict[str, str] | None = Field(None, description="Overrides for template variables")


class CommandRequest(BaseModel):
    command: str = Field(..., min_length=1)


class ConfigRequest(BaseModel):
    config: dict[str, str]

"""Game template seam.

Templates are owned by an external catalog; this module only models the
fields the orchestrator consumes and loads them from a JSON list.
"""
from __future__ import annotations

import json
import os
from enum import Enum

from pydantic import BaseModel, Field


class PortProtocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"
    BOTH = "both"

    def runtime_protocols(self) -> list[str]:
        if self is PortProtocol.BOTH:
            return ["tcp", "udp"]
        return [self.value]


class PortSpec(BaseModel):
    container_port: int = Field(..., ge=1, le=65535)
    protocol: PortProtocol = PortProtocol.BOTH
    description: str | None = None


class TemplateVariable(BaseModel):
    env: str
    default: str = ""
    # "ram" / "port" map the variable to the server's resource parameters.
    system_mapping: str | None = None


class GameTemplate(BaseModel):
    game_type: str
    name: str = ""
    docker_image: str
    startup: str = ""
    stop_command: str = ""
    variables: list[TemplateVariable] = Field(default_factory=list)
    ports: list[PortSpec] = Field(default_factory=list)
    volume_path: str = "/data"
    recommended_ram_mb: int = 2048
    install_script: str | None = None
    install_image: str | None = None

    @property
    def has_install_script(self) -> bool:
        return bool(self.install_script)

    @property
    def install_target_image(self) -> str:
        return self.install_image or self.docker_image


class TemplateCatalog:
    def __init__(self, templates: list[GameTemplate] | None = None):
        self._templates: dict[str, GameTemplate] = {}
        for t in templates or []:
            self._templates[t.game_type] = t

    @classmethod
    def load(cls, path: str) -> "TemplateCatalog":
        """Read a JSON list of templates. A missing file yields an empty catalog."""
        if not os.path.exists(path):
            return cls()
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        return cls([GameTemplate.model_validate(item) for item in raw])

    def get(self, game_type: str) -> GameTemplate | None:
        return self._templates.get(game_type)

    def all(self) -> list[GameTemplate]:
        return sorted(self._templates.values(), key=lambda t: t.name or t.game_type)


def _format_ram(ram_mb: int, default_format: str) -> str:
    # Keep the unit style of the template default: "2G" -> "4G", "1024M" -> "4096M".
    if default_format[-1:] in {"G", "g"}:
        return f"{ram_mb // 1024}G"
    if default_format[-1:] in {"M", "m"}:
        return f"{ram_mb}M"
    return str(ram_mb)


def build_env_vars(template: GameTemplate, ram_mb: int, port: int, overrides: dict[str, str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for var in template.variables:
        if var.system_mapping == "ram":
            env[var.env] = _format_ram(ram_mb, var.default)
        elif var.system_mapping == "port":
            env[var.env] = str(port)
        else:
            env[var.env] = overrides.get(var.env, var.default)
    return env


def resolve_startup(startup: str, env: dict[str, str]) -> str | None:
    """Substitute ``{{VAR}}`` placeholders; an empty startup means the image default."""
    if not startup:
        return None
    for key, value in env.items():
        startup = startup.replace("{{" + key + "}}", value)
    return startup

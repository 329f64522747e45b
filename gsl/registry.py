from __future__ import annotations

import json
import os
import re

from pydantic import ValidationError

from .errors import RegistryCorruptOrMissing
from .models import Server
from .settings import Settings, settings as default_settings

SERVER_ID_RE = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")


def validate_server_id(server_id: str) -> None:
    # Ids become file names; keep them free of path separators.
    if not SERVER_ID_RE.match(server_id or ""):
        raise RegistryCorruptOrMissing(f"Invalid server id: {server_id!r}")


class Registry:
    """One JSON document per server under ``config_dir``.

    Nothing is cached: every call reads or writes the file, so the documents
    stay authoritative across process restarts.
    """

    def __init__(self, cfg: Settings = default_settings):
        self.config_dir = cfg.config_dir

    def path_for(self, server_id: str) -> str:
        validate_server_id(server_id)
        return os.path.join(self.config_dir, f"{server_id}.json")

    def exists(self, server_id: str) -> bool:
        return os.path.exists(self.path_for(server_id))

    def save(self, server: Server) -> None:
        os.makedirs(self.config_dir, exist_ok=True)
        path = self.path_for(server.id)
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(server.model_dump_json(indent=2))
        os.replace(tmp, path)

    def load(self, server_id: str) -> Server:
        path = self.path_for(server_id)
        try:
            with open(path, encoding="utf-8") as f:
                content = f.read()
        except FileNotFoundError as e:
            raise RegistryCorruptOrMissing(f"Server '{server_id}' not found") from e
        except OSError as e:
            raise RegistryCorruptOrMissing(f"Cannot read server '{server_id}': {e}") from e
        return self._parse(server_id, content)

    @staticmethod
    def _parse(server_id: str, content: str) -> Server:
        try:
            return Server.model_validate_json(content)
        except (ValidationError, json.JSONDecodeError) as e:
            raise RegistryCorruptOrMissing(f"Server '{server_id}' document is corrupt: {e}") from e

    def delete(self, server_id: str) -> bool:
        try:
            os.remove(self.path_for(server_id))
            return True
        except FileNotFoundError:
            return False

    def list_all(self) -> list[Server]:
        """Every stored server, newest first."""
        if not os.path.isdir(self.config_dir):
            return []
        servers: list[Server] = []
        for name in os.listdir(self.config_dir):
            if not name.endswith(".json"):
                continue
            servers.append(self.load(name[: -len(".json")]))
        servers.sort(key=lambda s: s.created_at, reverse=True)
        return servers

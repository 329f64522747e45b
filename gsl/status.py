from __future__ import annotations

from typing import TYPE_CHECKING

from .models import Server, ServerStatus

if TYPE_CHECKING:
    from .docker_ops import RuntimeClient


_STATE_MAP: dict[str, ServerStatus] = {
    "running": ServerStatus.RUNNING,
    "created": ServerStatus.STOPPED,
    "restarting": ServerStatus.STARTING,
    "paused": ServerStatus.STOPPED,
    "removing": ServerStatus.STOPPING,
    "exited": ServerStatus.STOPPED,
    "dead": ServerStatus.ERROR,
}


def reconcile(runtime_state: str | None) -> ServerStatus:
    """Map a runtime container state ("running", "exited", ...) to a ServerStatus."""
    if not runtime_state:
        return ServerStatus.STOPPED
    return _STATE_MAP.get(runtime_state.lower(), ServerStatus.STOPPED)


def effective_status(server: Server, runtime: "RuntimeClient") -> ServerStatus:
    """Status to report for a server.

    An install in progress may not have a main container yet, so a persisted
    INSTALLING is returned as-is without asking the runtime.
    """
    if server.status == ServerStatus.INSTALLING:
        return ServerStatus.INSTALLING
    if not server.container_id:
        return ServerStatus.STOPPED
    return runtime.container_status(server.container_id)

from __future__ import annotations


class GslError(Exception):
    """Base class for every failure a lifecycle command can surface."""


class RuntimeUnavailable(GslError):
    """The local container daemon cannot be reached."""


class ImagePullFailed(GslError):
    pass


class ContainerOperationFailed(GslError):
    """create/start/stop/remove failed; the server may need a retry or manual cleanup."""


class AttachFailed(ContainerOperationFailed):
    pass


class InstallScriptFailed(GslError):
    def __init__(self, exit_code: int):
        super().__init__(f"Install script failed with exit code: {exit_code}")
        self.exit_code = exit_code


class RegistryCorruptOrMissing(GslError):
    pass


class UnknownGameType(GslError):
    def __init__(self, game_type: str):
        super().__init__(f"Game type '{game_type}' not found")
        self.game_type = game_type

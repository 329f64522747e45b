from __future__ import annotations

import logging
import os
import secrets
import shutil
import time
from typing import Callable

from . import db
from .api_models import CreateServerRequest
from .docker_ops import RuntimeClient
from .errors import (
    AttachFailed,
    ContainerOperationFailed,
    GslError,
    InstallScriptFailed,
    UnknownGameType,
)
from .installer import ContainerCreated, InstallFinished, OutputLine, run_script
from .links import AuthLinkScanner, LinkHandler, open_in_browser
from .models import ContainerStats, LogEvent, Server, ServerStatus
from .registry import Registry
from .runtime import LogBus
from .settings import Settings, settings as default_settings
from .status import effective_status
from .streams import LogStreamManager
from .templates import GameTemplate, TemplateCatalog, build_env_vars, resolve_startup

logger = logging.getLogger(__name__)

DEFAULT_PORT = 25565
MSG_PREFIX = "[gsl]"
SIGINT_STOP_COMMAND = "^C"


class Orchestrator:
    """Lifecycle commands for game servers.

    Every command re-reads the server document from the registry, talks to
    the runtime, and writes the document back. Log streaming runs in the
    background through the LogStreamManager.
    """

    def __init__(
        self,
        runtime: RuntimeClient,
        templates: TemplateCatalog,
        cfg: Settings = default_settings,
        registry: Registry | None = None,
        bus: LogBus | None = None,
        streams: LogStreamManager | None = None,
        link_handler: LinkHandler | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runtime = runtime
        self.templates = templates
        self.cfg = cfg
        self.registry = registry or Registry(cfg)
        self.bus = bus or LogBus()
        self.streams = streams or LogStreamManager(runtime, self.bus, cfg)
        if link_handler is None and cfg.open_auth_links:
            link_handler = open_in_browser
        self.link_handler = link_handler
        self._sleep = sleep

    # -- helpers --------------------------------------------------------

    def _template(self, game_type: str) -> GameTemplate:
        template = self.templates.get(game_type)
        if template is None:
            raise UnknownGameType(game_type)
        return template

    def _say(self, server_id: str, message: str) -> None:
        self.bus.publish(LogEvent(server_id=server_id, line=f"{MSG_PREFIX} {message}"))

    def _journal(self, level: str, message: str, server: Server | None = None) -> None:
        db.log_event(level, message, server_id=server.id if server else None, game_type=server.game_type if server else None)

    def _stop_container_quietly(self, server: Server) -> None:
        if not server.container_id:
            return
        try:
            self.runtime.stop(server.container_id, timeout=self.cfg.stop_timeout_s)
        except GslError as e:
            self._journal("WARN", f"Stopping container failed: {e}", server)

    def subscribe(self):
        return self.bus.subscribe()

    def unsubscribe(self, q) -> None:
        self.bus.unsubscribe(q)

    # -- commands -------------------------------------------------------

    def create(self, request: CreateServerRequest) -> Server:
        template = self._template(request.game_type)
        server_id = secrets.token_hex(4)

        if request.port:
            port = request.port
        elif template.ports:
            port = template.ports[0].container_port
        else:
            port = DEFAULT_PORT
        memory_mb = request.memory_mb or template.recommended_ram_mb

        data_path = os.path.join(self.cfg.servers_dir, request.game_type, server_id)
        os.makedirs(data_path, exist_ok=True)

        user_config = dict(request.config or {})
        env = build_env_vars(template, memory_mb, port, user_config)

        container_id = self.runtime.create_container(
            name=server_id,
            image=template.docker_image,
            port=port,
            data_path=data_path,
            env=env,
            extra_ports=template.ports[1:],
            volume_path=template.volume_path,
            memory_mb=memory_mb,
            startup_command=resolve_startup(template.startup, env),
        )

        server = Server(
            id=server_id,
            name=request.name,
            game_type=request.game_type,
            status=ServerStatus.STOPPED,
            container_id=container_id,
            port=port,
            memory_mb=memory_mb,
            data_path=data_path,
            config=user_config,
        )
        self.registry.save(server)
        self._journal("INFO", f"Created server '{server.name}' on port {port} ({memory_mb} MB)", server)
        return server

    def start(self, server_id: str) -> Server:
        server = self.registry.load(server_id)

        if not server.installed:
            template = self._template(server.game_type)
            if template.has_install_script:
                logger.info("Server %s needs installation, running install script first", server_id)
                server = self.run_install(server_id)
            else:
                server.installed = True
                self.registry.save(server)

        if not server.container_id:
            raise ContainerOperationFailed("No container ID")
        container_id = server.container_id

        self.runtime.start(container_id)
        self._sleep(self.cfg.settle_delay_s)
        status = self.runtime.container_status(container_id)

        if status in (ServerStatus.STOPPED, ServerStatus.ERROR):
            self._journal("ERROR", f"Container failed to start (status {status.value})", server)
            raise ContainerOperationFailed("Container failed to start")

        server.status = status
        self.registry.save(server)
        self.streams.start(server_id, container_id)
        self._journal("INFO", "Server started", server)
        return server

    def stop(self, server_id: str) -> Server:
        self.streams.stop(server_id)
        server = self.registry.load(server_id)
        if not server.container_id:
            return server
        container_id = server.container_id

        template = self.templates.get(server.game_type)
        if template is not None and template.stop_command and self.runtime.is_running(container_id):
            self._send_stop_command(server, container_id, template.stop_command)
            self._sleep(self.cfg.graceful_stop_wait_s)

        self.runtime.stop(container_id, timeout=self.cfg.stop_timeout_s)
        server.status = ServerStatus.STOPPED
        self.registry.save(server)
        self._journal("INFO", "Server stopped", server)
        return server

    def _send_stop_command(self, server: Server, container_id: str, stop_command: str) -> None:
        logger.info("Sending stop command to %s: %s", server.id, stop_command)
        try:
            if stop_command == SIGINT_STOP_COMMAND:
                self.runtime.kill(container_id, signal="SIGINT")
            else:
                self.runtime.send_stdin(container_id, stop_command)
        except GslError as e:
            self._journal("WARN", f"Graceful stop command failed: {e}", server)

    def delete(self, server_id: str, delete_data: bool = True) -> None:
        self.streams.stop(server_id)
        server = self.registry.load(server_id)

        if server.container_id:
            self._stop_container_quietly(server)
            try:
                self.runtime.remove(server.container_id)
            except GslError as e:
                self._journal("WARN", f"Removing container failed: {e}", server)

        if server.install_container_id:
            try:
                self.runtime.remove(server.install_container_id)
            except GslError as e:
                self._journal("WARN", f"Removing install container failed: {e}", server)

        self.registry.delete(server_id)

        if delete_data and os.path.exists(server.data_path):
            try:
                shutil.rmtree(server.data_path)
            except OSError as e:
                self._journal("WARN", f"Removing data directory failed: {e}", server)
        self._journal("INFO", f"Deleted server '{server.name}'", server)

    def reinstall(self, server_id: str) -> Server:
        """Wipe the data directory and run the install again."""
        self.streams.stop(server_id)
        server = self.registry.load(server_id)
        self._stop_container_quietly(server)

        if os.path.isdir(server.data_path):
            self._say(server_id, "Deleting server data...")
            clear_directory(server.data_path)

        server.installed = False
        server.status = ServerStatus.STOPPED
        self.registry.save(server)
        self._say(server_id, "Server data cleared. Starting reinstallation...")
        return self.run_install(server_id)

    def update_game(self, server_id: str) -> Server:
        """Rerun the install script over the existing data."""
        self.streams.stop(server_id)
        server = self.registry.load(server_id)
        self._stop_container_quietly(server)
        self._say(server_id, "Starting update (running install script)...")
        return self.run_install(server_id)

    def run_install(self, server_id: str) -> Server:
        server = self.registry.load(server_id)
        template = self._template(server.game_type)

        if not template.has_install_script:
            logger.info("No install script for game type %s", server.game_type)
            server.installed = True
            self.registry.save(server)
            return server

        self._discard_install_container(server)

        server.status = ServerStatus.INSTALLING
        self.registry.save(server)
        self._say(server_id, "Starting installation...")
        self._journal("INFO", "Installation started", server)

        scanner = AuthLinkScanner(self.link_handler)
        exit_code = -1
        install_container_id: str | None = None
        try:
            for event in run_script(
                self.runtime,
                template.install_target_image,
                server.data_path,
                template.volume_path,
                template.install_script or "",
                poll_interval_s=self.cfg.install_poll_s,
            ):
                if isinstance(event, ContainerCreated):
                    install_container_id = event.container_id
                    self._remember_install_container(server_id, event.container_id)
                elif isinstance(event, OutputLine):
                    logger.info("[Install %s] %s", server_id, event.line)
                    scanner.scan(event.line)
                    self.bus.emit(server_id, event.line)
                elif isinstance(event, InstallFinished):
                    exit_code = event.exit_code
                    install_container_id = event.container_id
        except GslError as e:
            failed = self.registry.load(server_id)
            failed.status = ServerStatus.ERROR
            self.registry.save(failed)
            self._say(server_id, f"Installation failed: {e}")
            self._journal("ERROR", f"Installation aborted: {e}", failed)
            raise

        server = self.registry.load(server_id)
        if exit_code == 0:
            if install_container_id:
                try:
                    self.runtime.remove(install_container_id)
                except GslError as e:
                    self._journal("WARN", f"Removing install container failed: {e}", server)
            server.installed = True
            server.status = ServerStatus.STOPPED
            server.install_container_id = None
            self.registry.save(server)
            self._say(server_id, "Installation completed successfully!")
            self._journal("INFO", "Installation completed", server)
            return server

        # The install container is kept so its logs can be read; see cleanup_install().
        server.status = ServerStatus.ERROR
        server.installed = False
        server.install_container_id = install_container_id
        self.registry.save(server)
        self._say(server_id, f"Installation failed with exit code: {exit_code}")
        self._journal("ERROR", f"Installation failed with exit code {exit_code}", server)
        raise InstallScriptFailed(exit_code)

    def _remember_install_container(self, server_id: str, container_id: str) -> None:
        server = self.registry.load(server_id)
        server.install_container_id = container_id
        self.registry.save(server)
        logger.info("Saved install container id %s for %s", container_id, server_id)

    def _discard_install_container(self, server: Server) -> None:
        if not server.install_container_id:
            return
        try:
            self.runtime.remove(server.install_container_id)
        except GslError as e:
            self._journal("WARN", f"Removing previous install container failed: {e}", server)
        server.install_container_id = None
        self.registry.save(server)

    def cleanup_install(self, server_id: str) -> Server:
        server = self.registry.load(server_id)
        self._discard_install_container(server)
        return server

    def recover_installs(self) -> list[str]:
        """Mark installs interrupted by a restart of this process as failed."""
        recovered: list[str] = []
        for server in self.registry.list_all():
            if server.status != ServerStatus.INSTALLING:
                continue
            if server.install_container_id and self.runtime.is_running(server.install_container_id):
                continue
            server.status = ServerStatus.ERROR
            self.registry.save(server)
            self._journal("WARN", "Install interrupted; marked as error", server)
            recovered.append(server.id)
        return recovered

    # -- queries --------------------------------------------------------

    def get_server(self, server_id: str) -> Server:
        return self.registry.load(server_id)

    def get_status(self, server_id: str) -> ServerStatus:
        return effective_status(self.registry.load(server_id), self.runtime)

    def list_servers(self) -> list[Server]:
        servers = self.registry.list_all()
        for server in servers:
            try:
                server.status = effective_status(server, self.runtime)
            except GslError as e:
                logger.warning("Status check for %s failed: %s", server.id, e)
                server.status = ServerStatus.ERROR
        return servers

    def get_logs(self, server_id: str, lines: int = 500) -> list[str]:
        server = self.registry.load(server_id)
        wants_install_logs = server.status == ServerStatus.INSTALLING or (
            server.status == ServerStatus.ERROR and server.install_container_id
        )
        if wants_install_logs:
            if server.install_container_id:
                return self.runtime.get_logs(server.install_container_id, lines)
            return [f"{MSG_PREFIX} Installation in progress..."]

        if not server.container_id:
            return []
        return self.runtime.get_logs(server.container_id, lines)

    def get_stats(self, server_id: str) -> ContainerStats:
        server = self.registry.load(server_id)
        if not server.container_id:
            return ContainerStats.zero()
        return self.runtime.stats(server.container_id)

    def disk_usage(self, server_id: str) -> int:
        server = self.registry.load(server_id)
        return directory_size(server.data_path)

    def needs_install(self, server_id: str) -> bool:
        server = self.registry.load(server_id)
        if server.installed:
            return False
        template = self.templates.get(server.game_type)
        return bool(template and template.has_install_script)

    # -- console / streaming -------------------------------------------

    def send_command(self, server_id: str, command: str) -> str:
        server = self.registry.load(server_id)
        if not server.container_id:
            raise ContainerOperationFailed("No container ID")
        try:
            self.runtime.send_stdin(server.container_id, command)
            return "Command sent"
        except AttachFailed as e:
            logger.warning("stdin attach failed for %s, using console helper: %s", server_id, e)
        return self.runtime.exec_capture(server.container_id, [self.cfg.console_helper, command])

    def attach(self, server_id: str) -> bool:
        """Start following logs if the server is running. Returns whether a stream started."""
        server = self.registry.load(server_id)
        # Install output is published by run_install itself.
        if server.status == ServerStatus.INSTALLING or not server.container_id:
            return False
        if effective_status(server, self.runtime) != ServerStatus.RUNNING:
            return False
        self.streams.start(server_id, server.container_id)
        return True

    def detach(self, server_id: str) -> bool:
        return self.streams.stop(server_id)

    def update_config(self, server_id: str, config: dict[str, str]) -> Server:
        server = self.registry.load(server_id)
        server.config = dict(config)
        self.registry.save(server)
        return server

    def shutdown(self) -> None:
        self.streams.stop_all()


def clear_directory(path: str) -> None:
    """Delete every entry under ``path`` but keep ``path`` itself."""
    for name in os.listdir(path):
        entry = os.path.join(path, name)
        if os.path.isdir(entry) and not os.path.islink(entry):
            shutil.rmtree(entry)
        else:
            os.remove(entry)


def directory_size(path: str) -> int:
    if not os.path.exists(path):
        return 0
    if os.path.isfile(path):
        return os.path.getsize(path)
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.path.getsize(os.path.join(root, name))
            except OSError:
                continue
    return total

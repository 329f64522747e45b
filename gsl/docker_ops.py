from __future__ import annotations

import codecs
import logging
import os
import secrets
import uuid
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Sequence

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from .errors import AttachFailed, ContainerOperationFailed, ImagePullFailed, RuntimeUnavailable
from .models import ContainerStats, ServerStatus
from .status import reconcile
from .templates import PortSpec

logger = logging.getLogger(__name__)

CONTAINER_PREFIX = "gsl"
MACHINE_ID_FILE = ".machine-id"
DEFAULT_VOLUME_PATH = "/data"


@contextmanager
def _runtime_errors(action: str) -> Iterator[None]:
    """Translate docker SDK failures into the orchestrator's error kinds.

    NotFound is re-raised untouched; callers decide whether a missing
    container is a no-op or a failure.
    """
    try:
        yield
    except NotFound:
        raise
    except requests.exceptions.ConnectionError as e:
        raise RuntimeUnavailable(f"Docker is not reachable ({action}): {e}") from e
    except APIError as e:
        raise ContainerOperationFailed(f"{action} failed: {e.explanation or e}") from e
    except DockerException as e:
        raise RuntimeUnavailable(f"Docker is not available ({action}): {e}") from e


def _host_path(path: str) -> str:
    # Docker Desktop on Windows expects forward slashes in bind sources.
    return os.path.abspath(path).replace("\\", "/")


def port_bindings(port: int, extra_ports: Sequence[PortSpec] = ()) -> dict[str, tuple[str, int]]:
    """Publish the main port on TCP and UDP, extra ports on their own protocol(s)."""
    bindings: dict[str, tuple[str, int]] = {
        f"{port}/tcp": ("0.0.0.0", port),
        f"{port}/udp": ("0.0.0.0", port),
    }
    for extra in extra_ports:
        for proto in extra.protocol.runtime_protocols():
            bindings[f"{extra.container_port}/{proto}"] = ("0.0.0.0", extra.container_port)
    return bindings


def iter_lines(chunks: Iterable[bytes | str]) -> Iterator[str]:
    """Split a stream of raw log chunks into non-empty lines.

    Chunks are not line aligned; a trailing partial line is held back until
    the next chunk or the end of the stream.
    """
    # tty containers stream one byte per chunk; multi-byte characters span chunks.
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""
    for chunk in chunks:
        text = decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        pending += text
        *complete, pending = _split_lines(pending)
        for line in complete:
            if line.strip():
                yield line
    pending += decoder.decode(b"", final=True)
    for line in _split_lines(pending, final=True):
        if line.strip():
            yield line


def _split_lines(text: str, final: bool = False) -> list[str]:
    # Mid-stream, a trailing "\r" may be the first half of "\r\n"; keep it pending.
    held = ""
    if not final and text.endswith("\r"):
        text, held = text[:-1], "\r"
    parts = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    parts[-1] += held
    return parts


def compute_stats(raw: dict[str, Any]) -> ContainerStats:
    """CPU and memory usage from one docker stats sample (with its pre-sample)."""
    cpu_stats = raw.get("cpu_stats") or {}
    precpu_stats = raw.get("precpu_stats") or {}
    cpu_delta = float((cpu_stats.get("cpu_usage") or {}).get("total_usage", 0)) - float(
        (precpu_stats.get("cpu_usage") or {}).get("total_usage", 0)
    )
    system_delta = float(cpu_stats.get("system_cpu_usage") or 0) - float(precpu_stats.get("system_cpu_usage") or 0)
    online_cpus = cpu_stats.get("online_cpus") or 1

    cpu_percent = 0.0
    if system_delta > 0 and cpu_delta > 0:
        cpu_percent = (cpu_delta / system_delta) * online_cpus * 100.0

    mem = raw.get("memory_stats") or {}
    usage_mb = float(mem.get("usage") or 0) / (1024 * 1024)
    limit_mb = float(mem.get("limit") or 0) / (1024 * 1024)
    mem_percent = (usage_mb / limit_mb) * 100.0 if limit_mb > 0 else 0.0

    return ContainerStats(
        cpu_percent=round(cpu_percent, 2),
        memory_usage_mb=round(usage_mb, 2),
        memory_limit_mb=round(limit_mb, 2),
        memory_percent=round(mem_percent, 2),
    )


class RuntimeClient:
    """Thin, stateless wrapper over the local Docker daemon."""

    def __init__(self, client: docker.DockerClient | None = None):
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise RuntimeUnavailable(
                    "Docker is not available. Start Docker Desktop / docker daemon and try again."
                ) from e
        return self._client

    def ping(self) -> None:
        with _runtime_errors("ping"):
            self.client.ping()

    def _get(self, container_id: str):
        with _runtime_errors(f"inspect {container_id}"):
            return self.client.containers.get(container_id)

    # -- images ---------------------------------------------------------

    def ensure_image(self, image: str) -> None:
        with _runtime_errors(f"inspect image {image}"):
            try:
                self.client.images.get(image)
                return
            except ImageNotFound:
                pass

        logger.info("Pulling image %s", image)
        try:
            self.client.images.pull(image)
        except (DockerException, requests.exceptions.RequestException) as e:
            logger.error("Failed to pull image %s: %s", image, e)
            raise ImagePullFailed(f"Failed to pull image {image}: {e}") from e
        logger.info("Pulled image %s", image)

    # -- containers -----------------------------------------------------

    @staticmethod
    def ensure_machine_id(data_path: str) -> str:
        """Create the per-server machine-id file once; later calls keep it."""
        path = os.path.join(data_path, MACHINE_ID_FILE)
        if not os.path.exists(path):
            os.makedirs(data_path, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(uuid.uuid4().hex + "\n")
            logger.info("Created machine-id file %s", path)
        return path

    def _binds(self, data_path: str, volume_path: str) -> list[str]:
        self.ensure_machine_id(data_path)
        host = _host_path(data_path)
        return [
            f"{host}:{volume_path}",
            f"{host}/{MACHINE_ID_FILE}:/etc/machine-id:ro",
        ]

    def create_container(
        self,
        name: str,
        image: str,
        port: int,
        data_path: str,
        env: dict[str, str] | None = None,
        extra_ports: Sequence[PortSpec] = (),
        volume_path: str | None = None,
        memory_mb: int | None = None,
        startup_command: str | None = None,
    ) -> str:
        """Create (not start) the main server container and return its id."""
        self.ensure_image(image)
        volume = volume_path or DEFAULT_VOLUME_PATH

        kwargs: dict[str, Any] = {
            "name": f"{CONTAINER_PREFIX}-{name}",
            "environment": env or {},
            "ports": port_bindings(port, extra_ports),
            "volumes": self._binds(data_path, volume),
            "labels": {"gsl.server": name, "gsl.role": "main"},
            # Restarts happen only through explicit commands.
            "restart_policy": {"Name": "no"},
            "tty": True,
            "stdin_open": True,
        }
        if memory_mb:
            limit = int(memory_mb) * 1024 * 1024
            kwargs["mem_limit"] = limit
            kwargs["memswap_limit"] = limit
        if startup_command:
            kwargs["command"] = ["/bin/bash", "-c", f"cd {volume} && exec {startup_command}"]

        with _runtime_errors(f"create container for {name}"):
            try:
                container = self.client.containers.create(image, **kwargs)
            except NotFound as e:
                raise ContainerOperationFailed(f"create container for {name} failed: {e}") from e
        logger.info("Created container %s (%s)", kwargs["name"], container.id)
        return container.id

    def create_install_container(self, image: str, data_path: str, volume_path: str, command: str) -> str:
        self.ensure_image(image)
        name = f"{CONTAINER_PREFIX}-install-{secrets.token_hex(4)}"
        with _runtime_errors(f"create install container {name}"):
            try:
                container = self.client.containers.create(
                    image,
                    command=["/bin/sh", "-c", command],
                    name=name,
                    volumes=self._binds(data_path, volume_path),
                    working_dir=volume_path,
                    labels={"gsl.role": "install"},
                    tty=False,
                )
            except NotFound as e:
                raise ContainerOperationFailed(f"create install container failed: {e}") from e
        logger.info("Created install container %s (%s)", name, container.id)
        return container.id

    def start(self, container_id: str) -> None:
        try:
            container = self._get(container_id)
            with _runtime_errors(f"start {container_id}"):
                container.start()
        except NotFound as e:
            raise ContainerOperationFailed(f"Container {container_id} not found") from e

    def stop(self, container_id: str, timeout: int = 30) -> None:
        try:
            container = self._get(container_id)
            with _runtime_errors(f"stop {container_id}"):
                container.stop(timeout=timeout)
        except NotFound:
            logger.info("Container %s already gone, nothing to stop", container_id)

    def kill(self, container_id: str, signal: str = "SIGKILL") -> None:
        try:
            container = self._get(container_id)
            with _runtime_errors(f"kill {container_id}"):
                container.kill(signal=signal)
        except NotFound:
            pass

    def remove(self, container_id: str, force: bool = True) -> None:
        try:
            container = self._get(container_id)
            with _runtime_errors(f"remove {container_id}"):
                container.remove(force=force, v=False)
        except NotFound:
            logger.info("Container %s already removed", container_id)

    # -- inspection -----------------------------------------------------

    def inspect_state(self, container_id: str) -> dict[str, Any] | None:
        """Raw ``State`` block of the container, or None if it does not exist."""
        try:
            container = self._get(container_id)
        except NotFound:
            return None
        return (container.attrs or {}).get("State") or {}

    def container_status(self, container_id: str) -> ServerStatus:
        state = self.inspect_state(container_id)
        if state is None:
            return ServerStatus.STOPPED
        return reconcile(state.get("Status"))

    def is_running(self, container_id: str) -> bool:
        state = self.inspect_state(container_id)
        return bool(state and state.get("Running"))

    def exit_code(self, container_id: str) -> int:
        state = self.inspect_state(container_id)
        if not state or state.get("ExitCode") is None:
            return -1
        return int(state["ExitCode"])

    # -- logs / console -------------------------------------------------

    def stream_logs(self, container_id: str, follow: bool = True, tail: int | str = "all"):
        """Closable iterator of raw stdout/stderr chunks."""
        try:
            container = self._get(container_id)
        except NotFound as e:
            raise ContainerOperationFailed(f"Container {container_id} not found") from e
        with _runtime_errors(f"logs {container_id}"):
            return container.logs(stdout=True, stderr=True, stream=True, follow=follow, tail=tail)

    def get_logs(self, container_id: str, lines: int = 500) -> list[str]:
        try:
            container = self._get(container_id)
        except NotFound:
            return []
        with _runtime_errors(f"logs {container_id}"):
            raw = container.logs(stdout=True, stderr=True, tail=lines)
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
        return [line for line in text.splitlines() if line.strip()]

    def send_stdin(self, container_id: str, text: str) -> None:
        try:
            container = self._get(container_id)
            sock = container.attach_socket(params={"stdin": 1, "stdout": 0, "stderr": 0, "stream": 1})
        except (DockerException, requests.exceptions.RequestException, RuntimeUnavailable, ContainerOperationFailed) as e:
            raise AttachFailed(f"Failed to attach to {container_id}: {e}") from e

        raw = getattr(sock, "_sock", sock)
        try:
            raw.sendall((text + "\n").encode("utf-8"))
        except OSError as e:
            raise AttachFailed(f"Failed to write to stdin of {container_id}: {e}") from e
        finally:
            sock.close()
        logger.info("Sent %r to stdin of %s", text, container_id)

    def exec_capture(self, container_id: str, command: Sequence[str]) -> str:
        try:
            container = self._get(container_id)
        except NotFound as e:
            raise ContainerOperationFailed(f"Container {container_id} not found") from e
        with _runtime_errors(f"exec in {container_id}"):
            result = container.exec_run(list(command), stdout=True, stderr=True)
        output = result.output or b""
        return output.decode("utf-8", errors="replace") if isinstance(output, bytes) else str(output)

    def stats(self, container_id: str) -> ContainerStats:
        """Resource snapshot; zero-filled whenever the runtime cannot provide one."""
        try:
            container = self._get(container_id)
            with _runtime_errors(f"stats {container_id}"):
                raw = container.stats(stream=False)
        except (NotFound, RuntimeUnavailable, ContainerOperationFailed) as e:
            logger.warning("Could not get stats for container %s: %s", container_id, e)
            return ContainerStats.zero()
        return compute_stats(raw or {})

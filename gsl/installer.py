"""Install runner: executes a provisioning script in a disposable container.

The runner is a generator of events so callers decide what to do with the
container id (persist it) and each output line (publish, scan for links):

    for event in run_script(runtime, image, data_path, "/data", script):
        ...

The install container is left in place when the script ends so its logs
stay readable; removing it is the caller's job.
"""
from __future__ import annotations

import base64
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Iterator, Union

from .docker_ops import RuntimeClient, iter_lines
from .errors import GslError

logger = logging.getLogger(__name__)

_EOF = object()


@dataclass(frozen=True)
class ContainerCreated:
    container_id: str


@dataclass(frozen=True)
class OutputLine:
    line: str


@dataclass(frozen=True)
class InstallFinished:
    exit_code: int
    container_id: str


InstallEvent = Union[ContainerCreated, OutputLine, InstallFinished]


def build_install_command(script: str) -> str:
    """Shell command that decodes the script to a file and execs it.

    The script travels base64 encoded so no shell quoting applies to it.
    """
    encoded = base64.b64encode(script.encode("utf-8")).decode("ascii")
    return (
        f"echo '{encoded}' | base64 -d > /tmp/install.sh"
        " && chmod +x /tmp/install.sh && exec /tmp/install.sh"
    )


def _pump(stream, out: "queue.Queue[object]") -> None:
    try:
        for line in iter_lines(stream):
            out.put(line)
    except Exception as e:
        logger.warning("Install log stream error: %s", e)
    finally:
        out.put(_EOF)


def run_script(
    runtime: RuntimeClient,
    image: str,
    data_path: str,
    volume_path: str,
    script: str,
    poll_interval_s: float = 1.0,
) -> Iterator[InstallEvent]:
    """Run ``script`` in a one-off container bound to the server's data volume.

    Yields ContainerCreated before the container is started, one OutputLine
    per non-empty output line, and InstallFinished last.
    """
    container_id = runtime.create_install_container(image, data_path, volume_path, build_install_command(script))
    yield ContainerCreated(container_id)

    runtime.start(container_id)
    logger.info("Started install container %s", container_id)

    stream = runtime.stream_logs(container_id, follow=True)
    lines: "queue.Queue[object]" = queue.Queue()
    reader = threading.Thread(target=_pump, args=(stream, lines), daemon=True)
    reader.start()

    try:
        while True:
            try:
                item = lines.get(timeout=max(0.05, poll_interval_s))
            except queue.Empty:
                # The log stream can stall without closing; check liveness directly.
                try:
                    running = runtime.is_running(container_id)
                except GslError:
                    running = False
                if not running:
                    logger.info("Install container %s stopped", container_id)
                    yield from _drain(lines)
                    break
                continue
            if item is _EOF:
                logger.info("Install log stream ended")
                break
            yield OutputLine(str(item))
    finally:
        close = getattr(stream, "close", None)
        if close is not None:
            close()

    try:
        exit_code = runtime.exit_code(container_id)
    except GslError as e:
        logger.error("Failed to inspect install container for exit code: %s", e)
        exit_code = -1
    logger.info("Install container finished with exit code %s", exit_code)
    yield InstallFinished(exit_code, container_id)


def _drain(lines: "queue.Queue[object]") -> Iterator[OutputLine]:
    while True:
        try:
            item = lines.get_nowait()
        except queue.Empty:
            return
        if item is _EOF:
            return
        yield OutputLine(str(item))

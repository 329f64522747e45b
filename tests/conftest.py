import os as _os
import sys

import pytest

# Ensure project root is importable (so `import main` / `import gsl` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fakes import FakeDockerClient  # noqa: E402

from gsl import db  # noqa: E402
from gsl.docker_ops import RuntimeClient  # noqa: E402
from gsl.orchestrator import Orchestrator  # noqa: E402
from gsl.settings import Settings  # noqa: E402
from gsl.templates import GameTemplate, PortProtocol, PortSpec, TemplateCatalog, TemplateVariable  # noqa: E402


@pytest.fixture
def cfg(tmp_path):
    return Settings(
        home=str(tmp_path / "home"),
        settle_delay_s=0.0,
        graceful_stop_wait_s=0.0,
        log_max_reconnects=3,
        log_reconnect_delay_s=0.01,
        connect_retry_s=0.01,
        stream_supersede_wait_s=0.5,
        install_poll_s=0.05,
        open_auth_links=False,
    )


@pytest.fixture(autouse=True)
def journal(cfg):
    """Isolated sqlite journal per test."""
    db.configure(cfg)
    db.init_db()


@pytest.fixture
def fake_docker():
    return FakeDockerClient()


@pytest.fixture
def runtime(fake_docker):
    return RuntimeClient(fake_docker)


@pytest.fixture
def catalog():
    return TemplateCatalog(
        [
            GameTemplate(
                game_type="minecraft",
                name="Minecraft Java",
                docker_image="itzg/minecraft-server:latest",
                stop_command="stop",
                variables=[
                    TemplateVariable(env="EULA", default="FALSE"),
                    TemplateVariable(env="MEMORY", default="2G", system_mapping="ram"),
                    TemplateVariable(env="SERVER_PORT", default="25565", system_mapping="port"),
                ],
                ports=[
                    PortSpec(container_port=25565),
                    PortSpec(container_port=25575, protocol=PortProtocol.TCP, description="RCON"),
                ],
                recommended_ram_mb=4096,
            ),
            GameTemplate(
                game_type="hytale",
                name="Hytale",
                docker_image="eclipse-temurin:21-jre",
                startup="java -Xmx{{MEMORY}} -jar HytaleServer.jar",
                stop_command="^C",
                variables=[TemplateVariable(env="MEMORY", default="4096M", system_mapping="ram")],
                ports=[PortSpec(container_port=5520, protocol=PortProtocol.UDP)],
                install_script="#!/bin/sh\necho downloading\n",
                install_image="alpine:3.20",
            ),
            GameTemplate(game_type="bare", docker_image="busybox:latest"),
        ]
    )


@pytest.fixture
def opened_links():
    return []


@pytest.fixture
def orch(runtime, catalog, cfg, opened_links):
    o = Orchestrator(runtime, catalog, cfg, link_handler=opened_links.append, sleep=lambda s: None)
    yield o
    o.shutdown()

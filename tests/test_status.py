import pytest

from gsl.models import Server, ServerStatus
from gsl.status import effective_status, reconcile


@pytest.mark.parametrize(
    "state,expected",
    [
        ("running", ServerStatus.RUNNING),
        ("created", ServerStatus.STOPPED),
        ("paused", ServerStatus.STOPPED),
        ("exited", ServerStatus.STOPPED),
        ("restarting", ServerStatus.STARTING),
        ("removing", ServerStatus.STOPPING),
        ("dead", ServerStatus.ERROR),
        ("Running", ServerStatus.RUNNING),
        ("something-new", ServerStatus.STOPPED),
        (None, ServerStatus.STOPPED),
        ("", ServerStatus.STOPPED),
    ],
)
def test_reconcile_mapping(state, expected):
    assert reconcile(state) == expected


class _ExplodingRuntime:
    def container_status(self, container_id):
        raise AssertionError("runtime must not be consulted")


def _server(**kw):
    base = dict(id="abcd1234", name="s", game_type="minecraft", port=25565, memory_mb=1024, data_path="/tmp/x")
    base.update(kw)
    return Server(**base)


def test_installing_is_returned_without_runtime_call():
    server = _server(status=ServerStatus.INSTALLING, container_id="deadbeef")
    assert effective_status(server, _ExplodingRuntime()) == ServerStatus.INSTALLING


def test_no_container_means_stopped():
    assert effective_status(_server(status=ServerStatus.RUNNING), _ExplodingRuntime()) == ServerStatus.STOPPED


def test_missing_container_reports_stopped(runtime):
    server = _server(status=ServerStatus.RUNNING, container_id="gone")
    assert effective_status(server, runtime) == ServerStatus.STOPPED

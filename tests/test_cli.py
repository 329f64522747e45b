import json

from gsl import cli


class _Resp:
    def __init__(self, body, ok=True):
        self._body = body
        self.ok = ok

    def json(self):
        return self._body


def test_create_posts_payload(monkeypatch, capsys):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json))
        return _Resp({"success": True, "server": {"id": "a1b2c3d4"}})

    monkeypatch.setattr(cli.requests, "post", fake_post)

    rc = cli.main(["--api", "http://gsl:9000/", "create", "--name", "Survival", "--game", "minecraft", "--set", "EULA=TRUE"])

    assert rc == 0
    url, payload = calls[0]
    assert url == "http://gsl:9000/servers"
    assert payload["config"] == {"EULA": "TRUE"}
    assert payload["port"] is None
    assert json.loads(capsys.readouterr().out)["server"]["id"] == "a1b2c3d4"


def test_failed_command_exit_code(monkeypatch):
    monkeypatch.setattr(cli.requests, "post", lambda url, timeout=None: _Resp({"success": False}, ok=False))
    assert cli.main(["start", "deadbeef"]) == 1


def test_logs_prints_lines(monkeypatch, capsys):
    monkeypatch.setattr(cli.requests, "get", lambda url, params=None, timeout=None: _Resp({"logs": ["a", "b"]}))
    assert cli.main(["logs", "a1b2c3d4", "--lines", "2"]) == 0
    assert capsys.readouterr().out == "a\nb\n"

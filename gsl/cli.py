from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _parse_config(pairs: list[str]) -> dict[str, str]:
    config: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise SystemExit(f"--set expects KEY=VALUE, got {pair!r}")
        config[key] = value
    return config


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Game Server Lifecycle CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("servers", help="List servers")

    s_ev = sub.add_parser("events", help="Show journal events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--server")

    s_create = sub.add_parser("create", help="Create a server")
    s_create.add_argument("--name", required=True)
    s_create.add_argument("--game", required=True, help="Game type from the template catalog")
    s_create.add_argument("--port", type=int)
    s_create.add_argument("--memory-mb", type=int)
    s_create.add_argument("--set", action="append", default=[], metavar="KEY=VALUE", help="Template variable override")

    for name, help_text in (
        ("start", "Start a server (installs first if needed)"),
        ("stop", "Stop a server"),
        ("reinstall", "Wipe data and reinstall"),
        ("update", "Rerun the install script over existing data"),
        ("status", "Show live status"),
    ):
        sub.add_parser(name, help=help_text).add_argument("id")

    s_del = sub.add_parser("delete", help="Delete a server")
    s_del.add_argument("id")
    s_del.add_argument("--keep-data", action="store_true")

    s_logs = sub.add_parser("logs", help="Show recent log lines")
    s_logs.add_argument("id")
    s_logs.add_argument("--lines", type=int, default=100)

    s_send = sub.add_parser("send", help="Send a console command")
    s_send.add_argument("id")
    s_send.add_argument("command")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "servers":
        _print(requests.get(f"{base}/servers", timeout=10).json())
        return 0

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.server:
            params["server_id"] = args.server
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    if args.cmd == "create":
        payload = {
            "name": args.name,
            "game_type": args.game,
            "port": args.port,
            "memory_mb": args.memory_mb,
            "config": _parse_config(args.set),
        }
        # Image pulls can take a while.
        r = requests.post(f"{base}/servers", json=payload, timeout=600)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd in {"start", "stop", "reinstall", "update"}:
        # Installs run inside the request; no client-side timeout.
        r = requests.post(f"{base}/servers/{args.id}/{args.cmd}", timeout=None)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "status":
        r = requests.get(f"{base}/servers/{args.id}/status", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "delete":
        r = requests.delete(
            f"{base}/servers/{args.id}",
            params={"delete_data": "false" if args.keep_data else "true"},
            timeout=120,
        )
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "logs":
        r = requests.get(f"{base}/servers/{args.id}/logs", params={"lines": args.lines}, timeout=30)
        body = r.json()
        if not r.ok:
            _print(body)
            return 1
        for line in body.get("logs", []):
            print(line)
        return 0

    if args.cmd == "send":
        r = requests.post(f"{base}/servers/{args.id}/command", json={"command": args.command}, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, Optional, Sequence

from apk_splicer.agent.client import AgentClient, AgentClientError
from apk_splicer.agent.injection import ShellInputBackend
from apk_splicer.agent.server import serve
from apk_splicer.cli.common import add_common_args, configure_logging, make_bridge, resolve_settings
from apk_splicer.config import ConfigError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run or talk to the guest gesture agent.")
    add_common_args(parser)
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    serve_p = sub.add_parser("serve", help="Run the agent in the foreground.")
    serve_p.add_argument(
        "--via_adb",
        action="store_true",
        help="Inject through 'adb shell input' instead of a local 'input' binary.",
    )

    send_p = sub.add_parser("send", help="Send one command to a running agent.")
    send_sub = send_p.add_subparsers(dest="kind", required=True)
    send_sub.add_parser("ping")
    send_sub.add_parser("status")
    tap = send_sub.add_parser("tap")
    tap.add_argument("x", type=int)
    tap.add_argument("y", type=int)
    tap.add_argument("--duration", type=int, default=None)
    swipe = send_sub.add_parser("swipe")
    for name in ("start_x", "start_y", "end_x", "end_y"):
        swipe.add_argument(name, type=int)
    swipe.add_argument("--duration", type=int, default=None)
    raw = send_sub.add_parser("raw", help="Send a raw JSON line.")
    raw.add_argument("line")
    return parser


def _send(client: AgentClient, args: argparse.Namespace) -> Dict[str, Any]:
    if args.kind == "ping":
        return client.ping()
    if args.kind == "status":
        return client.status()
    if args.kind == "tap":
        return client.tap(args.x, args.y, args.duration)
    if args.kind == "swipe":
        return client.swipe(args.start_x, args.start_y, args.end_x, args.end_y, args.duration)
    return client.send_raw(args.line)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = resolve_settings(args, agent_host=args.host, agent_port=args.port)
    except (ConfigError, FileNotFoundError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2
    configure_logging(settings.log_level)

    if args.cmd == "serve":
        backend = ShellInputBackend.over_bridge(make_bridge(settings)) if args.via_adb else None
        try:
            serve(settings.agent_host, settings.agent_port, backend=backend)
        except OSError as e:
            address = f"{settings.agent_host}:{settings.agent_port}"
            print(f"[ERROR] cannot listen on {address}: {e}", file=sys.stderr)
            return 1
        return 0

    host = args.host or "127.0.0.1"
    try:
        with AgentClient(host, settings.agent_port) as client:
            reply = _send(client, args)
    except AgentClientError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    print(json.dumps(reply, indent=2, ensure_ascii=False))
    return 0 if reply.get("type") != "error" else 1


if __name__ == "__main__":
    raise SystemExit(main())

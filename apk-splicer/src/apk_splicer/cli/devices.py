from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Callable, Optional, Sequence

from apk_splicer.bridge.adb import DeviceBridge
from apk_splicer.cli.common import add_common_args, configure_logging, make_bridge, resolve_settings
from apk_splicer.config import ConfigError
from apk_splicer.errors import Outcome


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and manage the Android guest via adb.")
    add_common_args(parser)
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("list", help="List attached devices and their state.")

    pkgs = sub.add_parser("packages", help="List installed packages.")
    pkgs.add_argument("--all", action="store_true", help="Include system packages.")

    info = sub.add_parser("info", help="Show version and location of a package.")
    info.add_argument("package_id")

    uninstall = sub.add_parser("uninstall", help="Uninstall a package.")
    uninstall.add_argument("package_id")
    uninstall.add_argument("--keep_data", action="store_true")

    clear = sub.add_parser("clear", help="Clear a package's data.")
    clear.add_argument("package_id")

    logcat = sub.add_parser("logcat", help="Dump recent log lines.")
    logcat.add_argument("--lines", type=int, default=100)
    logcat.add_argument("--filter", dest="filter_spec", type=str, default=None)

    wait = sub.add_parser("wait", help="Wait until the guest has finished booting.")
    wait.add_argument("--timeout", type=float, default=None)
    return parser


def _report(outcome: Outcome[Any], render: Callable[[Any], None]) -> int:
    if not outcome.ok():
        print(f"[ERROR] {outcome.error.describe()}", file=sys.stderr)  # type: ignore[union-attr]
        return 1
    render(outcome.value)
    return 0


def run(args: argparse.Namespace, bridge: DeviceBridge, boot_timeout_s: float) -> int:
    as_json = bool(args.json)

    if args.cmd == "list":

        def render_devices(devices: Any) -> None:
            if as_json:
                rows = [{"identifier": d.identifier, "status": d.status.value} for d in devices]
                print(json.dumps(rows, indent=2))
                return
            if not devices:
                print("(no devices attached)")
            for d in devices:
                print(f"{d.identifier}\t{d.status.value}")

        return _report(bridge.list_devices(), render_devices)

    if args.cmd == "packages":

        def render_packages(packages: Any) -> None:
            if as_json:
                rows = [
                    {"package_id": p.package_id, "is_system_app": p.is_system_app}
                    for p in packages
                ]
                print(json.dumps(rows, indent=2))
                return
            for p in packages:
                print(p.package_id + ("  (system)" if p.is_system_app else ""))

        return _report(bridge.list_packages(include_system=args.all), render_packages)

    if args.cmd == "info":

        def render_info(info: Any) -> None:
            row = {
                "package_id": info.package_id,
                "version_name": info.version_name,
                "version_code": info.version_code,
                "install_location": info.install_location,
                "is_system_app": info.is_system_app,
            }
            if as_json:
                print(json.dumps(row, indent=2))
                return
            for k, v in row.items():
                print(f"{k}: {v}")

        return _report(bridge.package_info(args.package_id), render_info)

    if args.cmd == "uninstall":
        return _report(
            bridge.uninstall(args.package_id, keep_data=args.keep_data),
            lambda _: print(f"[OK] uninstalled {args.package_id}"),
        )

    if args.cmd == "clear":
        return _report(
            bridge.clear_data(args.package_id),
            lambda _: print(f"[OK] cleared data of {args.package_id}"),
        )

    if args.cmd == "logcat":
        return _report(
            bridge.logcat(lines=args.lines, filter_spec=args.filter_spec),
            lambda text: sys.stdout.write(text),
        )

    if args.cmd == "wait":
        timeout = args.timeout if args.timeout is not None else boot_timeout_s
        return _report(
            bridge.ensure_ready(timeout), lambda ident: print(f"[OK] {ident} is ready")
        )

    raise ValueError(f"unknown command: {args.cmd}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = resolve_settings(args)
    except (ConfigError, FileNotFoundError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2
    configure_logging(settings.log_level)
    return run(args, make_bridge(settings), settings.boot_timeout_s)


if __name__ == "__main__":
    raise SystemExit(main())

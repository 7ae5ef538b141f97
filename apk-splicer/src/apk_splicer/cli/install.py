from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

from apk_splicer.bridge.adb import (
    CONSERVATIVE_INSTALL_OPTIONS,
    DEFAULT_GUEST_PORT,
    DEFAULT_INSTALL_OPTIONS,
)
from apk_splicer.cli.common import (
    add_common_args,
    configure_logging,
    make_bridge,
    resolve_settings,
    split_host_port,
)
from apk_splicer.config import ConfigError
from apk_splicer.errors import ApkSplicerError
from apk_splicer.jobs.guest import AttachedGuest
from apk_splicer.jobs.job import JobSnapshot
from apk_splicer.jobs.orchestrator import Orchestrator
from apk_splicer.package.badging import BadgingReader
from apk_splicer.package.parser import PackageParser
from apk_splicer.profiles.profile import DEFAULT_PROFILE, ProfileError, get_profile

_INSTALL_OPTIONS = {
    "default": DEFAULT_INSTALL_OPTIONS,
    "conservative": CONSERVATIVE_INSTALL_OPTIONS,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Install an .apk or .xapk onto an Android guest.")
    parser.add_argument("archive", type=Path)
    parser.add_argument("--profile", type=str, default=DEFAULT_PROFILE)
    parser.add_argument("--profiles", type=Path, default=None, help="Extra profiles YAML file.")
    parser.add_argument(
        "--connect",
        type=str,
        default=None,
        help="adb-over-TCP guest address (HOST[:PORT]) to connect before installing.",
    )
    parser.add_argument("--boot_timeout", type=float, default=None)
    parser.add_argument(
        "--install_options", choices=sorted(_INSTALL_OPTIONS), default="default"
    )
    parser.add_argument("--json", action="store_true", help="Print the final job state as JSON.")
    add_common_args(parser)
    return parser


def _print_transition(snapshot: JobSnapshot) -> None:
    print(f"[{snapshot.phase.value}] {snapshot.progress * 100:5.1f}%", flush=True)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        overrides: dict[str, object] = {"boot_timeout_s": args.boot_timeout}
        if args.connect:
            host, port = split_host_port(args.connect, DEFAULT_GUEST_PORT)
            overrides.update(guest_host=host, guest_port=port)
        if args.profiles is not None:
            overrides["profiles_path"] = str(args.profiles)
        settings = resolve_settings(args, **overrides)
        configure_logging(settings.log_level)
        profile = get_profile(
            args.profile,
            extra_path=Path(settings.profiles_path) if settings.profiles_path else None,
        )
    except (ConfigError, ProfileError, ValueError, FileNotFoundError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2

    bridge = make_bridge(settings)
    parser = PackageParser(
        badging=BadgingReader(aapt_path=settings.aapt_path),
        scratch_root=Path(settings.scratch_root) if settings.scratch_root else None,
    )
    guest = AttachedGuest(bridge, host=settings.guest_host, port=settings.guest_port)

    with Orchestrator(
        bridge,
        parser=parser,
        guest=guest,
        max_workers=1,
        boot_timeout_s=settings.boot_timeout_s,
        install_options=_INSTALL_OPTIONS[args.install_options],
        listener=None if args.json else _print_transition,
    ) as orchestrator:
        try:
            handle = orchestrator.start(args.archive, profile)
        except FileNotFoundError:
            print(f"[ERROR] no such file: {args.archive}", file=sys.stderr)
            return 2
        except ApkSplicerError as e:
            print(f"[ERROR] {e.describe()}", file=sys.stderr)
            return 2

        try:
            snapshot = orchestrator.wait(handle)
        except KeyboardInterrupt:
            orchestrator.cancel(handle)
            snapshot = orchestrator.wait(handle)

    if args.json:
        print(json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False))
    elif snapshot.succeeded and snapshot.result is not None:
        app = snapshot.result
        print(f"[OK] installed {app.package_id} ({app.display_name} {app.version})")
    elif snapshot.error is not None:
        print(f"[ERROR] {snapshot.error.describe()}", file=sys.stderr)

    return 0 if snapshot.succeeded else 1


if __name__ == "__main__":
    raise SystemExit(main())

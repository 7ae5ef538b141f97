"""Shared CLI plumbing: settings resolution, logging and bridge construction."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Tuple

from apk_splicer.bridge.adb import DeviceBridge
from apk_splicer.config import Settings, load_settings

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, default=None, help="YAML settings file.")
    parser.add_argument("--adb_path", type=str, default=None)
    parser.add_argument("--serial", type=str, default=None, help="Target device serial.")
    parser.add_argument("--log_level", type=str, default=None)


def resolve_settings(args: argparse.Namespace, **overrides: object) -> Settings:
    settings = load_settings(config_path=args.config)
    return settings.with_overrides(
        adb_path=args.adb_path,
        serial=args.serial,
        log_level=args.log_level,
        **overrides,
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def make_bridge(settings: Settings) -> DeviceBridge:
    return DeviceBridge(
        adb_path=settings.adb_path,
        serial=settings.serial,
        timeout_s=settings.command_timeout_s,
        poll_interval_s=settings.poll_interval_s,
    )


def split_host_port(raw: str, default_port: int) -> Tuple[str, int]:
    value = raw.strip()
    if not value:
        raise ValueError("empty address")
    host: Optional[str]
    if ":" in value:
        host, port_str = value.rsplit(":", 1)
        try:
            port = int(port_str)
        except ValueError:
            raise ValueError(f"invalid port in {raw!r}") from None
    else:
        host, port = value, int(default_port)
    if not host:
        raise ValueError(f"missing host in {raw!r}")
    if port <= 0 or port > 65535:
        raise ValueError(f"port out of range in {raw!r}")
    return host, port

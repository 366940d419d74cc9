"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import logging as py_logging
import sys
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TextIO

from .config import AppConfig, load_config
from .errors import ExitCode, TermHubError, user_facing_error
from .host import TerminalHost
from .logging import configure_logging, default_log_path
from .server import parse_listen_address, serve_stdio, serve_tcp

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def _listen_type(value: str) -> tuple[str, int]:
    try:
        return parse_listen_address(value)
    except TermHubError as exc:
        raise argparse.ArgumentTypeError(exc.hint or str(exc)) from exc


def _grace_type(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("--grace-seconds must be a number") from exc
    if seconds < 0:
        raise argparse.ArgumentTypeError("--grace-seconds cannot be negative")
    return seconds


def _buffer_type(value: str) -> int:
    try:
        size = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("--buffer-bytes must be an integer") from exc
    if size < 1024:
        raise argparse.ArgumentTypeError("--buffer-bytes must be at least 1024")
    return size


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="termhub")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--listen", type=_listen_type, default=None, help="Serve over TCP at HOST:PORT")
    parser.add_argument("--grace-seconds", type=_grace_type, default=None)
    parser.add_argument("--buffer-bytes", type=_buffer_type, default=None)
    parser.add_argument("--list-profiles", action="store_true")
    parser.add_argument("--list-themes", action="store_true")
    parser.add_argument("--log-level", type=_log_level_type, default="INFO")
    parser.add_argument("--log-file", type=Path, default=None)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def resolve_config(namespace: argparse.Namespace) -> AppConfig:
    config = load_config(namespace.config)
    if namespace.grace_seconds is not None:
        config.reconnect_grace_seconds = namespace.grace_seconds
    if namespace.buffer_bytes is not None:
        config.output_buffer_bytes = namespace.buffer_bytes
    return config


def print_catalog(host: TerminalHost, namespace: argparse.Namespace, out: TextIO) -> None:
    if namespace.list_profiles:
        for profile in host.catalog.list_profiles():
            command = " ".join([profile.command, *profile.args]).strip() or "<platform shell>"
            print(f"{profile.name}\t{command}", file=out)
    if namespace.list_themes:
        for theme in host.catalog.list_themes():
            print(f"{theme.name}\t{theme.background}/{theme.foreground}", file=out)
        for custom in host.catalog.list_custom_themes():
            print(f"{custom.id}\t{custom.name}", file=out)


def run_server(host: TerminalHost, namespace: argparse.Namespace) -> int:
    if namespace.listen is not None:
        return serve_tcp(host, namespace.listen)
    return serve_stdio(host)


def main(
    argv: Sequence[str] | None = None,
    *,
    host_factory: Callable[[AppConfig], TerminalHost] | None = None,
    out: TextIO | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level, log_file=log_path)

    try:
        config = resolve_config(namespace)
        host = (host_factory or TerminalHost.build)(config)
        if namespace.list_profiles or namespace.list_themes:
            print_catalog(host, namespace, out or sys.stdout)
            return int(ExitCode.SUCCESS)
        logger.debug("Starting terminal host backend=%s", config.backend)
        return run_server(host, namespace)
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
        return int(ExitCode.SUCCESS)
    except TermHubError as exc:
        logger.error(
            "Handled TermHubError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        try:
            hint = f"Inspect logs: {log_path}"
            print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        except Exception:
            pass
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)

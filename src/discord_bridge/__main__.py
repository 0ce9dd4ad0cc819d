"""Bridge entrypoint. Generates the registration file or loads config and starts the service."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from collections.abc import Sequence
from typing import Any, NoReturn

from loguru import logger

from discord_bridge import __version__
from discord_bridge.config import Config, load_and_validate
from discord_bridge.context import ServiceContext
from discord_bridge.core.constants import DEFAULT_CONFIG_PATH, DEFAULT_REGISTRATION_PATH
from discord_bridge.core.errors import BridgeError, ConfigError, RegistrationError
from discord_bridge.logmux import to_loguru_level
from discord_bridge.orchestrator import ServiceOrchestrator
from discord_bridge.registration import generate_registration, load_registration

_VALID_LEVELS = ("TRACE", "DEBUG", "INFO", "WARNING", "ERROR")


class _ArgumentParser(argparse.ArgumentParser):
    """Prints the usage block and exits 0 on malformed arguments, like --help."""

    def error(self, message: str) -> NoReturn:
        self.print_help(sys.stderr)
        self.exit(0, f"\n{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="discord-bridge",
        description="Matrix Discord Bridge: the Matrix application service for Discord",
    )
    parser.add_argument(
        "--config",
        "-c",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--url",
        "-u",
        help="URL the homeserver reaches the bridge at (required with --generate-registration)",
    )
    parser.add_argument("--port", "-p", type=int, help="Listen port; overrides bridge.port")
    parser.add_argument(
        "--file",
        "-f",
        default=DEFAULT_REGISTRATION_PATH,
        help=f"Registration file path (default: {DEFAULT_REGISTRATION_PATH})",
    )
    parser.add_argument(
        "--generate-registration",
        "-r",
        action="store_true",
        help="Write a new registration file and exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _safe_message_filter(record: Any) -> bool:
    """Escape braces/angles in log messages to prevent format/tag errors."""
    if isinstance(record.get("message"), str):
        msg = record["message"]
        msg = msg.replace("{", "{{").replace("}", "}}").replace("<", "\\<")
        record["message"] = msg
    return True


def resolve_level(logging_config: dict[str, Any] | None = None) -> str:
    """LOG_LEVEL wins when valid; otherwise logging.console from config; INFO by default."""
    env_level = (os.environ.get("LOG_LEVEL") or "").upper()
    if env_level in _VALID_LEVELS:
        return env_level
    console = (logging_config or {}).get("console")
    if console:
        level = to_loguru_level(str(console))
        if level in _VALID_LEVELS:
            return level
    return "INFO"


def setup_logging(logging_config: dict[str, Any] | None = None) -> str:
    """Configure loguru: a stderr sink plus any file sinks from logging.files. Returns the level."""
    level = resolve_level(logging_config)
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=("<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | {message}"),
        filter=_safe_message_filter,
    )
    for entry in (logging_config or {}).get("files") or []:
        if not isinstance(entry, dict) or not entry.get("file"):
            continue
        logger.add(
            entry["file"],
            level=to_loguru_level(str(entry.get("level", "info"))),
            rotation=entry.get("rotation", "1 day"),
            retention=entry.get("maxFiles", "14 days"),
            filter=_safe_message_filter,
        )
    return level


def _run_generate(args: argparse.Namespace) -> None:
    try:
        generate_registration(args.url, args.file)
    except RegistrationError as exc:
        logger.error("{}", exc)
        sys.exit(1)


def _load(args: argparse.Namespace) -> tuple[Config, int]:
    try:
        return load_and_validate(args.config, cli_port=args.port)
    except FileNotFoundError:
        logger.error("Config file not found: {}", args.config)
        sys.exit(1)
    except ConfigError as exc:
        logger.error("Invalid config {}: {}", args.config, exc)
        sys.exit(1)


def _event_loop_runner() -> Any:
    """uvloop.run when available for better I/O throughput, else asyncio.run."""
    try:
        import uvloop
    except ImportError:
        return asyncio.run
    return uvloop.run


def main(argv: Sequence[str] | None = None) -> None:
    """Main entrypoint."""
    args = build_parser().parse_args(argv)
    setup_logging()

    if args.generate_registration:
        _run_generate(args)
        return

    config, port = _load(args)
    level = setup_logging(config.logging)
    logger.info("Config loaded from {}", args.config)

    try:
        registration = load_registration(args.file)
    except ConfigError as exc:
        logger.error("{}", exc)
        sys.exit(1)

    context = ServiceContext()
    context.log_multiplexer.install(level="DEBUG" if level == "TRACE" else level)
    try:
        orchestrator = ServiceOrchestrator(config, registration, port, context=context)
    except ConfigError as exc:
        logger.error("Invalid config {}: {}", args.config, exc)
        sys.exit(1)

    try:
        _event_loop_runner()(orchestrator.run())
    except BridgeError as exc:
        logger.error("Bridge failed to start: {}", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception as exc:
        logger.opt(exception=exc).error("A fatal error occurred during startup: {}", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()

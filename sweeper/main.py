"""
stale-sweeper — entry point for the stale file cleanup service.

Loads the YAML configuration, wires logging, and either runs the sweeper
in the foreground (the mode the service manager launches) or forwards a
control verb to the host service manager.

Usage:
    # Run in the foreground with config.yaml from the working directory
    # (the console script looks next to itself instead)
    python -m sweeper.main

    # Same, with an explicit config file
    python -m sweeper.main run /etc/stale-sweeper/config.yaml

    # Register / control the OS service
    python -m sweeper.main install /etc/stale-sweeper/config.yaml
    python -m sweeper.main start
    python -m sweeper.main status
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from loguru import logger

from sweeper.config import (
    ConfigError,
    LoggingConfig,
    ServiceConfig,
    SweeperConfig,
    executable_dir,
    load_config,
    resolve_config_path,
)
from sweeper.service.lifecycle import SweeperService
from sweeper.service.systemd import CONTROL_VERBS, ServiceControlError, SystemdServiceManager

__version__ = "0.1.0"


async def _run_service(config: SweeperConfig) -> None:
    """Run the sweeper until SIGINT/SIGTERM."""
    service = SweeperService(config)

    # ── Signal handlers for graceful shutdown ──────────────────────────
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.stop)
        except NotImplementedError:
            # Windows does not support add_signal_handler for SIGTERM;
            # SIGINT is handled via KeyboardInterrupt fallback below.
            pass

    try:
        await service.run()
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Sweeper: interrupted")
        service.stop()
    finally:
        logger.info("Sweeper: service state is {}", service.state.value)


def setup_logging(logging_config: LoggingConfig, base_dir: Path | None = None) -> None:
    """Configure loguru logging from config.

    The stderr sink is installed first, so it stays in place when the log
    file cannot be opened.

    Raises:
        OSError: The log directory could not be created.
    """
    logger.remove()  # Remove default handler
    logger.add(
        sys.stderr,
        level=logging_config.level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level:8}</level> | {message}",
    )

    log_file = Path(logging_config.file)
    if not log_file.is_absolute():
        log_file = (base_dir if base_dir is not None else executable_dir()) / log_file
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger.add(
        str(log_file),
        level=logging_config.level,
        rotation=logging_config.rotation,
        retention=logging_config.retention,
        compression=logging_config.compression,
        encoding="utf-8",
        enqueue=True,
    )


def _log_config_summary(config: SweeperConfig) -> None:
    logger.info("Config: time={}", config.time)
    logger.info("Config: days={}", config.days)
    logger.info("Config: directories={}", config.directories)


def _control(verb: str, config_path: Path) -> int:
    """Forward a control verb to the host service manager."""
    service_config = ServiceConfig()
    try:
        service_config = load_config(config_path).service
    except ConfigError as e:
        if verb == "install":
            logger.critical("Refusing to install with an unusable config: {}", e)
            return 1
        logger.warning("Using default service settings ({})", e)

    manager = SystemdServiceManager(service_config)
    try:
        manager.control(verb, config_path)
    except ServiceControlError as e:
        logger.critical("Failed to {} service: {}", verb, e)
        return 1
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stale-sweeper",
        description="Periodically delete stale files from configured directories",
    )
    parser.add_argument(
        "action",
        nargs="?",
        default="run",
        choices=("run", *CONTROL_VERBS),
        help="run in the foreground (default) or control the OS service",
    )
    parser.add_argument(
        "config",
        nargs="?",
        default=None,
        help="Path to config YAML (default: config.yaml next to the program)",
    )
    return parser


def main(argv: List[str] | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = _build_parser().parse_args(argv)

    # Load environment variables (SWEEPER_CONFIG may live in .env)
    load_dotenv()

    try:
        setup_logging(LoggingConfig())
    except OSError as e:
        logger.warning("Logging to stderr only, cannot open default log file: {}", e)
    logger.info("stale-sweeper v{} starting", __version__)
    logger.info("Args: {}", sys.argv if argv is None else argv)

    config_path = resolve_config_path(args.config)

    if args.action != "run":
        return _control(args.action, config_path)

    logger.info("Loading config from {}", config_path)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        logger.critical("Failed to load config: {}", e)
        return 1

    try:
        setup_logging(config.logging)
    except OSError as e:
        logger.critical("Failed to open log file {}: {}", config.logging.file, e)
        return 1
    _log_config_summary(config)

    status = SystemdServiceManager(config.service).status()
    logger.info("Service {} is {}", config.service.name, status.value)

    try:
        asyncio.run(_run_service(config))
    except ValueError as e:
        # Invalid cron expression surfaced by the scheduler at startup
        logger.critical("Failed to start service: {}", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

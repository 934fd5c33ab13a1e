"""ccbot: main application entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from dotenv import load_dotenv
from rich.logging import RichHandler

from ccbot.engine.access import AccessControl
from ccbot.engine.config import BotConfig
from ccbot.engine.errors import ConfigError
from ccbot.engine.execution_queue import ExecutionQueue
from ccbot.engine.orchestrator import RequestOrchestrator
from ccbot.engine.projects import ProjectScanner
from ccbot.engine.runner import ClaudeCliRunner
from ccbot.engine.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

_LEVEL_ALIASES = {"TRACE": "DEBUG", "WARN": "WARNING", "FATAL": "CRITICAL"}


def resolve_log_level(name: str) -> int:
    name = name.upper()
    name = _LEVEL_ALIASES.get(name, name)
    return getattr(logging, name, logging.INFO)


def configure_logging(
    level: str = "INFO",
    log_file: str | None = None,
    rich_console: bool | None = None,
) -> None:
    """Install console (and optionally rotating file) handlers on the root logger.

    The console uses rich's handler on a TTY and a plain formatter
    otherwise, so piped/production output stays one line per record.
    """
    root = logging.getLogger()
    root.setLevel(resolve_log_level(level))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )

    if rich_console is None:
        rich_console = sys.stderr.isatty()
    if rich_console:
        console: logging.Handler = RichHandler(
            rich_tracebacks=True, show_path=False, log_time_format="[%X]"
        )
    else:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # discord.py is chatty at DEBUG
    logging.getLogger("discord").setLevel(
        max(resolve_log_level(level), logging.INFO)
    )


async def session_cleanup_loop(
    sessions: SessionRegistry,
    max_age_seconds: float,
    interval_seconds: float,
) -> None:
    """Sweep idle sessions every *interval_seconds* until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = sessions.cleanup(max_age_seconds)
        except Exception:
            logger.exception("Session cleanup failed")
            continue
        logger.debug(
            "Session sweep removed %d, %d remaining", removed, len(sessions)
        )


def build_orchestrator(config: BotConfig) -> tuple[RequestOrchestrator, ExecutionQueue, SessionRegistry]:
    runner = ClaudeCliRunner.from_config(config)
    if not runner.is_available():
        logger.warning(
            "'%s' was not found on PATH; requests will fail until it is installed",
            runner.command,
        )
    queue = ExecutionQueue.from_config(runner, config)
    sessions = SessionRegistry()
    orchestrator = RequestOrchestrator(
        queue=queue,
        sessions=sessions,
        projects=ProjectScanner.from_config(config),
        access=AccessControl(config.allowed_user_ids),
    )
    return orchestrator, queue, sessions


async def run_bot(config: BotConfig) -> None:
    from ccbot.adapters.discord_gateway import DiscordGateway

    orchestrator, queue, sessions = build_orchestrator(config)
    gateway = DiscordGateway(config.discord_token, orchestrator)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass  # Windows

    cleanup_task = asyncio.create_task(
        session_cleanup_loop(
            sessions,
            config.session_max_age_seconds,
            config.cleanup_interval_seconds,
        )
    )
    gateway_task = asyncio.create_task(gateway.start())
    stop_task = asyncio.create_task(stop.wait())

    logger.info("Starting ccbot (projects=%s)", config.projects_base_dir)
    try:
        await asyncio.wait(
            {gateway_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if stop.is_set():
            logger.info("Received shutdown signal, shutting down gracefully...")
    finally:
        cleanup_task.cancel()
        stop_task.cancel()
        await queue.close()
        await gateway.close()
        if gateway_task.done():
            # Surface login/connection failures
            gateway_task.result()
        else:
            gateway_task.cancel()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="ccbot",
        description="Discord bot that runs Claude Code CLI requests one at a time",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (env vars fill any gaps)",
    )
    parser.add_argument(
        "--log-level", metavar="LEVEL",
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ...)",
    )
    parser.add_argument(
        "--log-file", metavar="PATH",
        help="Also write logs to a rotating file",
    )
    parser.add_argument(
        "--env-file", metavar="PATH", default=".env",
        help="dotenv file to load before reading env vars (default: .env)",
    )
    args = parser.parse_args(argv)

    # Real environment variables win over the dotenv file
    load_dotenv(args.env_file, override=False)

    try:
        if args.config:
            from ccbot.engine.yaml_config import load_yaml_config

            config = load_yaml_config(args.config)
        else:
            config = BotConfig.from_env()
        if args.log_level:
            config.log_level = args.log_level.upper()
        if args.log_file:
            config.log_file = args.log_file
        config.validate()
    except (ConfigError, FileNotFoundError) as exc:
        print(f"ccbot: {exc}", file=sys.stderr)
        sys.exit(2)

    configure_logging(config.log_level, config.log_file)

    try:
        asyncio.run(run_bot(config))
    except Exception:
        logger.critical("Bot stopped with an unrecoverable error", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

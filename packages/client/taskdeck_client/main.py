"""
Listener entry point.

Loads configuration, configures logging, and runs the notification listener
until it stops or a shutdown signal arrives.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

import structlog

from taskdeck_shared.schemas.realtime import NotificationMessage, TaskChangedMessage

from .config import ListenerConfig, load_config
from .health import HealthServer
from .listener import NotificationListener
from .machine import ConnectionState
from .metrics import MetricsCollector


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog with the specified level and format."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
    )


async def _print_notification(frame: NotificationMessage) -> None:
    log = structlog.get_logger()
    n = frame.notification
    log.info("listener.notification", type=n.type.value, title=n.title, message=n.message)


async def _print_task_change(frame: TaskChangedMessage) -> None:
    log = structlog.get_logger()
    log.info("listener.task_changed", action=frame.action, task_id=str(frame.task_id))


async def run_listener(config: ListenerConfig) -> ConnectionState:
    """Run until the listener stops on its own or SIGINT/SIGTERM arrives."""
    metrics = MetricsCollector()
    listener = NotificationListener(config, metrics=metrics)
    listener.on_notification(_print_notification)
    listener.on_task_changed(_print_task_change)

    health: HealthServer | None = None
    if config.metrics.enabled:
        health = HealthServer(
            listener.machine,
            host=config.metrics.host,
            port=config.metrics.port,
            metrics=metrics,
        )
        await health.start()

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    listen_task = await listener.start()
    waiter = asyncio.create_task(shutdown.wait())
    try:
        await asyncio.wait({listen_task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        await listener.stop()
        if health:
            await health.stop()
    return listener.state


def run() -> None:
    """CLI entry point for the listener."""
    parser = argparse.ArgumentParser(description="Taskdeck real-time notification listener")
    parser.add_argument(
        "-c", "--config",
        default="taskdeck-listen.yaml",
        help="Path to configuration file (default: taskdeck-listen.yaml)",
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.format)
    log = structlog.get_logger()
    log.info("listener.config_loaded", config_path=args.config, server=config.server.url)

    state = asyncio.run(run_listener(config))
    if state is ConnectionState.FAILED:
        sys.exit(2)


if __name__ == "__main__":
    run()

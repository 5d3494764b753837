"""
Portal server - Main entry point.

Starts the portal service against the configured object store and keeps
it running until SIGTERM/SIGINT. Request handling is provided by the
HTTP layer that embeds PortalService; running this module on its own is
useful for warming the app config and for smoke-testing storage access.

Usage:
    python -m cms.portal_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The object store is connected before anything reads from it
    - Shutdown waits for background bundle regeneration

How to change safely:
    - Keep setup_logging() the only place handlers are installed
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .config import ServerConfig
from .service import PortalService

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


async def run(service: PortalService, shutdown: asyncio.Event) -> None:
    """Start the service and hold it until shutdown is requested."""
    service.config.log_config()
    try:
        await service.start()
        await shutdown.wait()
    except Exception as e:
        logger.error(f"Portal service failed: {e}", exc_info=True)
        raise
    finally:
        await service.stop()


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    service = PortalService(config)
    shutdown = asyncio.Event()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        shutdown.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(run(service, shutdown))
    except KeyboardInterrupt:
        pass
    finally:
        loop.close()


if __name__ == "__main__":
    main()

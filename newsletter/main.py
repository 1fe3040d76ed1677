"""
Process entry point.

Installs structured logging, resolves configuration, binds the listener,
opens the database pool and serves until signalled. Configuration and
bind failures are fatal.
"""

import asyncio
import logging
import sys

from newsletter.config import ConfigError, get_configuration
from newsletter.database.postgres import create_pool, wait_for_database
from newsletter.startup import BindError, bind_listener, run
from newsletter.telemetry import get_subscriber, init_subscriber

SERVICE_NAME = "newsletter"
DEFAULT_LOG_FILTER = "info"

logger = logging.getLogger(__name__)


async def serve() -> None:
    """Start the service and run it to completion."""
    logger.info("Starting up …")
    configuration = get_configuration()

    listener = bind_listener(configuration.server)
    pool = create_pool(configuration.database)
    await wait_for_database(pool)

    application = run(listener, pool)
    await application.serve()


def main() -> None:
    init_subscriber(get_subscriber(SERVICE_NAME, DEFAULT_LOG_FILTER, sys.stdout))

    try:
        asyncio.run(serve())
    except (ConfigError, BindError) as exc:
        logger.critical("Fatal startup error: %s", exc, exc_info=exc)
        sys.exit(1)


if __name__ == "__main__":
    main()

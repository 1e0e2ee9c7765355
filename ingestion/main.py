"""Entry point for an ingestion context.
Boots the context, joins the broadcast channel and keeps the dataset fresh
until SIGINT or SIGTERM.
"""

import asyncio
import signal
import sys

from common.logging_config import setup_logging
from ingestion.config import IngestionSettings
from ingestion.context import build_context

logger = setup_logging('ingestion')

LIBRARY_LOGGERS = ('store', 'peersync', 'common')


async def serve(settings: IngestionSettings) -> None:
    """
    Run one context until it is asked to stop.

    Args:
        settings: Context settings
    """
    context = build_context(settings)
    stop_event = asyncio.Event()

    if sys.platform != 'win32':
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

    logger.info(
        f"Starting context {settings.context_id} [source={settings.source_url}, "
        f"backend={settings.storage_backend}, interval={settings.check_interval}s]"
    )

    try:
        await context.start()
        await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        await context.stop()
        logger.info(f"Context {settings.context_id} stopped")


def main() -> None:
    """Bootstrap an ingestion context from the environment."""
    settings = IngestionSettings.from_env()
    for name in LIBRARY_LOGGERS:
        setup_logging(name, context_id=settings.context_id)

    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.error(f"Context error: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    main()

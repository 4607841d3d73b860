"""Application entry point."""

from __future__ import annotations

import asyncio
import signal
from contextlib import suppress

from config import load_config
from core.app_initializer import ApplicationInitializer
from core.logger import get_logger, setup_logger


async def main() -> None:
    """Main application entry point."""
    config = load_config()
    setup_logger(
        level="DEBUG" if config.debug else config.log_level,
        log_file=config.log_file,
        colored=True,
    )

    app = ApplicationInitializer(config)
    await app.initialize()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows)
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, app.shutdown)

    await app.run()


def run() -> None:
    """Console script entry point."""
    logger = get_logger("eventease")
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
    except Exception as e:
        logger.error(f"Application failed: {e}", exc_info=True)


if __name__ == "__main__":
    run()

"""CMC Discord: main entry point."""

import asyncio
import logging
import os
from typing import Optional

from .adapter import DiscordInterface
from .config import AdapterSettings, load_settings
from .core.bus import open_stdio_bus

_log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("cmc_discord")


def setup_logging(settings: AdapterSettings, debug: bool = False):
    """Log to stderr (stdout carries the bus) and optionally to a file."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(os.path.expanduser(settings.log_file), encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=_log_format,
        handlers=handlers,
    )
    # discord.py is chatty at INFO
    logging.getLogger("discord").setLevel(logging.WARNING)
    if debug:
        logger.setLevel(logging.DEBUG)


async def run(settings: Optional[AdapterSettings] = None):
    """Serve the core over stdio until it closes the stream."""
    settings = settings or load_settings()
    bus = await open_stdio_bus()
    interface = DiscordInterface(bus, settings)

    try:
        await interface.start()
        logger.info("Discord interface running.")
        await bus.serve()
    except Exception as e:
        logger.critical(f"Fatal error: {type(e).__name__}: {e}", exc_info=True)
    finally:
        await interface.stop()
        logger.info("Discord interface stopped.")


def main(debug: bool = False):
    """Entry point."""
    settings = load_settings()
    setup_logging(settings, debug=debug)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()

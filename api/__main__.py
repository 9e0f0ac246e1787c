"""Command line interface for running the API server."""
import asyncio
import logging

import uvicorn

from config import load_config, SettingsError
from . import create_app

logger = logging.getLogger(__name__)

def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the process."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

async def main():
    """Load settings, then serve the API until a shutdown signal arrives.

    uvicorn handles SIGINT/SIGTERM itself: it stops accepting connections,
    lets in-flight requests finish and then runs the lifespan shutdown, which
    closes the database pool.
    """
    settings = load_config()
    configure_logging(settings['log_level'])

    config = uvicorn.Config(
        create_app(settings),
        host=settings['host'],
        port=settings['port'],
        log_level=settings['log_level'].lower()
    )
    server = uvicorn.Server(config)

    logger.info(f"Starting voucher API on {settings['host']}:{settings['port']}")
    await server.serve()
    logger.info("Cleanup complete.")

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except SettingsError as e:
        configure_logging()
        logger.error(str(e))
        raise SystemExit(1)
    except KeyboardInterrupt:
        pass

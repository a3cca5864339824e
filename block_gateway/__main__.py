import sys

import uvicorn
from loguru import logger

from block_gateway.config import settings
from block_gateway.errors import ConfigurationError
from block_gateway.utils.logger import configure_logging
from block_gateway.web.application import get_app


def main() -> None:
    """
    Main entry point for the service.

    Configures logging, checks the settings the gateway cannot run without
    and serves the application with uvicorn until interrupted.

    Returns:
        None
    """
    configure_logging(settings)
    try:
        settings.validate_startup()
    except ConfigurationError as exc:
        logger.error(f"Invalid configuration: {exc.message}")
        sys.exit(1)

    logger.info(f"Starting {settings.app_name} on {settings.host}:{settings.port}")
    uvicorn.run(
        get_app(),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

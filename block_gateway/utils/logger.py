import sys
from pathlib import Path

from loguru import logger

from block_gateway.config import Settings


def configure_logging(settings: Settings) -> None:
    """
    Configure loguru sinks for the service.

    Logs always go to stderr. When a log directory is configured, a combined
    log and an error-only log are written there as well, rotated at 10 MB and
    keeping the five most recent files.

    Args:
        settings (Settings): Service settings providing the level and directory.
    """
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())

    if not settings.log_dir:
        return

    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "combined.log",
        level=settings.log_level.upper(),
        rotation="10 MB",
        retention=5,
        serialize=True,
    )
    logger.add(
        log_dir / "error.log",
        level="ERROR",
        rotation="10 MB",
        retention=5,
        serialize=True,
    )

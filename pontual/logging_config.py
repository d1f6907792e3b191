import sys

from loguru import logger

from .config import Settings


def setup_logging(settings: Settings) -> None:
    """Route loguru to stderr at the configured level, tagging records with the app name and version."""
    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": settings.logging_level.upper(),
                "format": settings.logging_format,
                "colorize": False,
                "backtrace": True,
                "diagnose": False,
                "catch": True,
            }
        ],
        extra={"app": settings.app_name, "version": settings.app_version},
    )
    logger.debug("Logging configured", level=settings.logging_level)

# core/logging_config.py
import sys
from loguru import logger

from settings import settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {message} | {extra}"

_configured = False


def setup_logging(file_output: bool = True) -> None:
    """Send logs to stdout and, unless disabled, to a rotating file."""
    global _configured
    if _configured:
        return

    logger.remove()
    if file_output:
        logger.add(
            settings.LOG_FILE_PATH,
            rotation="500 MB",
            format=LOG_FORMAT,
            level=settings.LOG_LEVEL
        )
    logger.add(
        sys.stdout,
        format=LOG_FORMAT,
        level=settings.LOG_LEVEL
    )
    _configured = True

"""
Logging configuration

Console output always; daily rotating files unless LOG_TO_FILE is off.
"""
import os
import sys

from loguru import logger

from metrics_dashboard.config import get_settings

settings = get_settings()

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logger():
    """Replace loguru's default handler with the dashboard's sinks"""
    logger.remove()

    logger.add(sys.stdout, colorize=True, format=CONSOLE_FORMAT, level=settings.log_level)

    if not settings.log_to_file:
        return logger

    # Store writes run in worker threads; enqueue keeps file sinks ordered
    logger.add(
        os.path.join(settings.log_dir, "metrics_dashboard_{time:YYYY-MM-DD}.log"),
        rotation="00:00",
        retention="30 days",
        compression="zip",
        level="INFO",
        enqueue=True,
    )
    logger.add(
        os.path.join(settings.log_dir, "errors_{time:YYYY-MM-DD}.log"),
        rotation="00:00",
        retention="90 days",
        level="ERROR",
        enqueue=True,
    )

    return logger


log = setup_logger()

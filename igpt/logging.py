"""
Logging configuration for the iGPT client.

The client logs through loguru. Transport libraries (httpx, httpcore) log
through the standard library; setup_logging() forwards those records too.
"""

import logging
import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

TRANSPORT_LOGGERS = ("httpx", "httpcore")


class InterceptHandler(logging.Handler):
    """Forward standard library records to loguru, keeping level and call site."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", sink=sys.stderr, intercept=TRANSPORT_LOGGERS):
    """
    Replace loguru's handlers with one sink and route transport logs into it.

    Args:
        level: Minimum level for the sink.
        sink: Anything loguru accepts as a sink (stream, path, callable).
        intercept: Standard library logger names to forward.
    """
    logger.remove()
    logger.add(sink, format=LOG_FORMAT, level=level, colorize=sink is sys.stderr)

    handler = InterceptHandler()
    for name in intercept:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [handler]
        std_logger.propagate = False

    logger.info("Logging initialized with Loguru.")

"""
Logging setup shared by the API server, the ingestion job and the client.
"""

import logging

from config import getSettings

LOGGER_NAME = "medireport"


def setupLogger() -> logging.Logger:
    """Configure and return the application logger."""
    settings = getSettings()
    logger = logging.getLogger(LOGGER_NAME)
    logger.propagate = False

    if logger.hasHandlers():
        logger.handlers.clear()

    logger.setLevel(getattr(logging, settings.logLevel, logging.INFO))

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(settings.logFormat, "%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)

    return logger


def getLogger(component: str) -> logging.Logger:
    """Child logger, e.g. getLogger("chat") -> "medireport.chat"."""
    return logging.getLogger(f"{LOGGER_NAME}.{component}")


logger = setupLogger()

import logging

from app.core.config import settings

LOGGER_NAME = "app"

# Log format with ISO-like timestamp including milliseconds
LOG_FORMAT = "%(asctime)s.%(msecs)03d - %(name)s - %(funcName)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def setup_logging(level: str | None = None) -> logging.Logger:
    """Configure the application logger once; later calls only adjust the level."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel((level or settings.LOG_LEVEL).upper())

    if not any(getattr(h, "_ledger_handler", False) for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        console_handler._ledger_handler = True
        logger.addHandler(console_handler)

    # Avoid duplicate logs through the root logger
    logger.propagate = False
    return logger

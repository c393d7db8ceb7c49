import logging
import sys

from defectvision.config import settings


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the package logger once and return it."""
    logger = logging.getLogger("defectvision")
    logger.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level.upper())
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    # Repeated imports must not stack handlers
    if not logger.handlers:
        logger.addHandler(handler)

    return logger


logger = setup_logging(settings.log_level)

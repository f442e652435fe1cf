import logging
import sys

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

# Single logger for the whole bridge
logger = logging.getLogger("mongo_bridge")


def setup_logging(level="INFO"):
    """Attach a stdout handler once; later calls only change the level."""
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger


__all__ = ["logger", "setup_logging"]

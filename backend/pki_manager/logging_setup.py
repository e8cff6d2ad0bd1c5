import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "info") -> logging.Logger:
    """Attach a single stream handler to the package logger."""
    logger = logging.getLogger("pki_manager")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not any(getattr(h, "_pki_manager", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._pki_manager = True
        logger.addHandler(handler)

    logger.propagate = False
    return logger

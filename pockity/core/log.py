"""Logging setup for the pockity package."""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stream handler to the ``pockity`` logger."""
    root = logging.getLogger("pockity")
    root.setLevel(level.upper())
    if not any(getattr(h, "_pockity", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._pockity = True
        root.addHandler(handler)
    return root

"""
Logging setup for the blunote service.

All modules log through named children of the `blunote` logger.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    Attach a single stream handler to the `blunote` logger.

    Calling this more than once (e.g. one app per test) does not stack
    handlers.
    """
    root = logging.getLogger("blunote")
    root.setLevel(level.upper())

    if not any(getattr(h, "_blunote", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._blunote = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    return root

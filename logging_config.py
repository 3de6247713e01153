"""
Logging setup for the certificate server.

Call ``setup_logging`` once from the application factory; every other module
just does ``logger = logging.getLogger(__name__)``.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Libraries that are chatty at INFO.
_QUIET_LOGGERS = ("sqlalchemy.engine", "pypdf", "multipart")


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(numeric_level)

    # Re-running the factory (tests, reloads) must not stack handlers.
    if not any(getattr(h, "_certificate_server", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._certificate_server = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

"""Line-oriented process logging for the sweeper."""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_HANDLER_NAME = "royalty_sweeper"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger. Safe to call twice."""
    root = logging.getLogger()
    root.setLevel(level.upper())

    for handler in root.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

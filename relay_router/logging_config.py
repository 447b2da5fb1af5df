# Library modules only create loggers; the CLI installs the handler here.

import logging
import os
import sys

LOG_LEVEL_ENV = "RELAY_ROUTER_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def resolve_level(verbose: bool = False) -> int:
    if verbose:
        return logging.DEBUG
    name = os.environ.get(LOG_LEVEL_ENV, "WARNING").upper()
    level = logging.getLevelName(name)
    # getLevelName returns a "Level X" string for unknown names
    return level if isinstance(level, int) else logging.WARNING


def configure_logging(verbose: bool = False) -> None:
    """Send ``relay_router`` log records to stderr at the resolved level."""
    logger = logging.getLogger("relay_router")
    logger.setLevel(resolve_level(verbose))

    for handler in list(logger.handlers):
        if getattr(handler, "_relay_router", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._relay_router = True
    logger.addHandler(handler)
    logger.propagate = False

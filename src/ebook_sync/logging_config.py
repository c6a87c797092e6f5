"""Send ebook-sync logs to stderr."""

import sys

from loguru import logger

_FORMAT = "{level.icon} {message}"
_VERBOSE_FORMAT = "{time:HH:mm:ss.SSS} {level.icon} {name}:{function} {message}"


def configure_logging(*, verbose: bool = False) -> None:
    """Replace loguru's default sink: INFO and up normally, DEBUG with timestamps when verbose."""
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG", format=_VERBOSE_FORMAT)
    else:
        logger.add(sys.stderr, level="INFO", format=_FORMAT)

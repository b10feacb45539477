import logging
import sys
from typing import Optional, TextIO, Union

LOG_FORMAT = "%(asctime)s [%(levelname)-5.5s] [%(name)s] %(message)s"


def setup_logging(
    level: Union[int, str] = logging.INFO,
    stream: Optional[TextIO] = None,
    logger_name: str = "odesim",
) -> logging.Logger:
    """Send odesim diagnostics (warnings, solver progress) to a stream.

    Replaces any handlers previously installed on the ``odesim`` logger.
    The results table is not affected; it is written by ResultsLogger.
    """
    log = logging.getLogger(logger_name)
    for handler in log.handlers[:]:
        log.removeHandler(handler)
        handler.close()

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    log.setLevel(level)
    log.addHandler(handler)
    log.debug("Logging configured.")
    return log

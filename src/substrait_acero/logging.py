"""Logging for substrait-acero.

Modules log through ``logging.getLogger(__name__)``. Plan lowering, anchor
assignment and deferred function resolution are logged at DEBUG; skipped enum
arguments at WARNING.
"""

import logging
import sys
from typing import Optional, TextIO

LIBRARY_LOGGER_NAME = __name__.split(".")[0]

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())


def configure_logging(
    log_level: int = logging.INFO,
    log_stream: Optional[TextIO] = None,
) -> None:
    """Send the library's log records to a stream at ``log_level``.

    Repeated calls replace the handler installed by the previous call, so the
    library logger never holds more than one stream handler. Applications that
    manage logging themselves do not need to call this.
    """
    library_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    for handler in list(library_logger.handlers):
        if getattr(handler, "_substrait_acero", False):
            library_logger.removeHandler(handler)

    handler = logging.StreamHandler(log_stream or sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    handler._substrait_acero = True
    library_logger.addHandler(handler)
    library_logger.setLevel(log_level)

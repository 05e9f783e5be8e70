"""
The basic logging module.
"""
import sys
import logging
import threading

import structlog

# Job threads log concurrently, keep lines from interleaving.
__print_lock__ = threading.Lock()


class MatrixLogger:
    """
    Prints every rendered log line to stderr, one whole line at a time.
    """

    def __init__(self, file=None):
        self.file = file

    def msg(self, message: str) -> None:
        with __print_lock__:
            print(message, file=self.file or sys.stderr, flush=True)

    log = debug = info = warn = warning = msg
    fatal = failure = err = error = critical = exception = msg


class MatrixLoggerFactory:
    def __call__(self, *args) -> MatrixLogger:
        return MatrixLogger()


structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=False),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.NOTSET),
    context_class=dict,
    logger_factory=MatrixLoggerFactory(),
    cache_logger_on_first_use=False,
)
logger = structlog.get_logger()

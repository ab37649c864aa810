import logging
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'

# Libraries that log every request or retry at INFO
NOISY_LOGGERS = ("urllib3", "backoff", "pyrate_limiter")


def setup_logging(level=logging.INFO):
    """
    Sets up centralized logging configuration for the application.

    Configures the root logger with a StreamHandler that outputs to stderr.
    Calling it more than once only updates the level.

    Args:
        level: The minimum logging level to capture (e.g., logging.INFO, logging.DEBUG).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Prevent adding duplicate handlers if setup_logging is called multiple times
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    root_logger.debug("Centralized logging configured.")

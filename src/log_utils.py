"""
Logging utilities for the ESXi security protocol reconfiguration tool.
"""

import logging
import sys

# Third-party loggers that are chatty at INFO (paramiko logs every channel open).
NOISY_LOGGERS = ("paramiko", "urllib3")


def setup_logging(
    verbose: bool = False, log_file: str = "tls-reconfig.log"
) -> logging.Logger:
    """
    Send log records to stdout and to `log_file`.

    Library loggers in NOISY_LOGGERS are held at WARNING unless verbose.

    Args:
        verbose: Enable verbose (DEBUG) logging
        log_file: Path to log file

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file),
        ],
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

    return logging.getLogger(__name__)

"""
Logging setup for the storefront entry points.

Library modules only create loggers via ``logging.getLogger(__name__)``;
handlers and levels are configured here, once, by the CLI.
"""

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(threadName)s] - %(name)s - %(message)s"


def setup_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """
    Configure the root logger.

    Args:
        verbose: Log at DEBUG instead of WARNING.
        log_file: Also write the log to this file.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    # uvicorn's access log is noisy at DEBUG
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

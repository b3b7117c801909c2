"""
The common module is our ugly grab bag of common toys: the version, the error base classes, and the
logging setup shared by every entrypoint.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import TypeVar

import appdirs

with (Path(__file__).parent / ".version").open("r") as fp:
    VERSION = fp.read().strip()

T = TypeVar("T")

# Stands in for any missing title, album, or artist.
UNKNOWN = "@UNKNOWN@"


class LorchestreError(Exception):
    pass


class LorchestreExpectedError(LorchestreError):
    """These errors are printed without traceback."""

    pass


def uniq(xs: list[T]) -> list[T]:
    rv: list[T] = []
    seen: set[T] = set()
    for x in xs:
        if x not in seen:
            rv.append(x)
            seen.add(x)
    return rv


__logging_initialized: set[str | None] = set()


def initialize_logging(logger_name: str | None = None) -> None:
    if logger_name in __logging_initialized:
        return
    __logging_initialized.add(logger_name)

    logger = logging.getLogger(logger_name)

    # appdirs by default has Unix log to $XDG_CACHE_HOME, but the cache directory gets wiped by
    # `cache clear`, so write logs to $XDG_STATE_HOME instead.
    log_home = Path(appdirs.user_state_dir("lorchestre"))
    if appdirs.system == "darwin":
        log_home = Path(appdirs.user_log_dir("lorchestre"))

    # Useful for debugging problems with the server threads, since pytest doesn't capture that
    # debug logging output.
    log_despite_testing = os.environ.get("LOG_TEST", False)

    # Add a logging handler for stdout unless we are testing. Pytest captures logging output on its
    # own, so by default, we do not attach our own.
    if "pytest" not in sys.modules or log_despite_testing:  # pragma: no cover
        log_home.mkdir(parents=True, exist_ok=True)
        log_file = log_home / "lorchestre.log"

        simple_formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        verbose_formatter = logging.Formatter(
            "[ts=%(asctime)s.%(msecs)03d] [pid=%(process)d] [src=%(name)s:%(lineno)s] %(levelname)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(simple_formatter if not log_despite_testing else verbose_formatter)
        logger.addHandler(stream_handler)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=20 * 1024 * 1024,
            backupCount=10,
        )
        file_handler.setFormatter(verbose_formatter)
        logger.addHandler(file_handler)

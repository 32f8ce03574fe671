"""
Helpers for setting up logging in applications using this library.

The library itself only ever logs through module-level loggers under the ``creatartis.base`` namespace and never
configures any handlers. Notable records:

- ``creatartis.base.future``: ERROR for futures that were rejected and then garbage-collected without anyone ever
  looking at the failure; DEBUG for every settlement
- ``creatartis.base.parallel.bridge``: WARNING for worker crashes and for stray completion messages; ERROR for
  malformed ones
"""

import logging
import sys

import colorama

from typing import Optional, Dict
from termcolor import colored


LIBRARY_LOGGER_NAME = 'creatartis.base'


def init_console_friendly_logging(level: int = logging.INFO, colors: Optional[bool] = None):
    """
    Initializes logging appropriate for running a program in the console. Specifically:

    - A timestamp is attached to each message
    - The level is attached to each message as a string (INFO, ERROR etc), highlighted in color where supported

    Args:
        level: The minimum level of the messages to show
        colors: Whether to use colors. If None, colors are used only if stderr is a terminal.
    """
    if colors is None:
        colors = sys.stderr.isatty()

    if colors:
        colorama.just_fix_windows_console()

    handler = logging.StreamHandler()
    handler.setFormatter(ConsoleFriendlyFormatter(colors=colors))

    logging.root.addHandler(handler)
    logging.root.setLevel(level)


def set_library_log_level(level: int):
    """
    Adjusts the verbosity of this library alone, e.g. to see future settlements at DEBUG level without enabling DEBUG
    for the whole application.
    """
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(level)


class ConsoleFriendlyFormatter(logging.Formatter):
    _colors: bool

    def __init__(self, colors: bool = False):
        super().__init__(
            style='{',
            fmt='[{asctime}] {levelname}: {message}',
            datefmt='%Y-%m-%d %H:%M:%S'  # We omit the milliseconds by default
        )

        self._colors = colors

    def formatMessage(self, record: logging.LogRecord) -> str:
        if not self._colors:
            return super().formatMessage(record)

        color = _LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().formatMessage(record)

        original_levelname = record.levelname
        record.levelname = colored(original_levelname, color, attrs=['bold'])
        try:
            return super().formatMessage(record)
        finally:
            record.levelname = original_levelname


_LEVEL_COLORS: Dict[int, str] = {
    logging.CRITICAL: 'red',
    logging.ERROR: 'red',
    logging.WARNING: 'yellow',
    logging.DEBUG: 'cyan',
}

# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: console logging for the agent. everything under the "vigilguard" logger goes through one
stream handler with a colorama-backed formatter, so refusals and failures stand out while the
agent runs in a terminal. falls back to plain text when colorama cannot initialize.
"""

from __future__ import annotations

import logging
import re

ROOT_LOGGER = "vigilguard"


# custom formatter to colorize levels, refusals and failures
class ColoredLevelFormatter(logging.Formatter):
    """colors the level name, 'Refused:' in yellow and 'Failed:' in red"""

    LEVEL_COLORS = {
        "DEBUG": "\x1b[2m",  # dim
        "INFO": "\x1b[36m",  # cyan
        "WARNING": "\x1b[33m",  # yellow
        "ERROR": "\x1b[31m",  # red
        "CRITICAL": "\x1b[1m\x1b[31m",  # bold red
    }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # try to import colorama for Windows ANSI support
        try:
            from colorama import just_fix_windows_console

            just_fix_windows_console()
            self.use_color = True
        except Exception:
            self.use_color = False

    def format(self, record):
        msg = super().format(record)
        if not self.use_color:
            return msg

        reset = "\x1b[0m"
        color = self.LEVEL_COLORS.get(record.levelname, "")
        msg = msg.replace(record.levelname, f"{color}{record.levelname}{reset}", 1)
        msg = re.sub(r"(Refused:)", "\x1b[33m" + r"\1" + reset, msg)
        msg = re.sub(r"(Failed:)", "\x1b[31m" + r"\1" + reset, msg)
        msg = re.sub(r"(VigilGuard)", "\x1b[35m" + r"\1" + reset, msg)
        return msg


def setup_logging(level: str | int = "INFO") -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level if isinstance(level, int) else level.upper())
    # replace our handler instead of stacking a new one on every call
    for h in list(logger.handlers):
        if getattr(h, "_vigilguard", False):
            logger.removeHandler(h)

    handler = logging.StreamHandler()
    handler._vigilguard = True  # type: ignore[attr-defined]
    handler.setFormatter(
        ColoredLevelFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%H:%M:%S")
    )
    logger.addHandler(handler)
    logger.propagate = False  # prevent duplicate messages

    # silence waitress web server log messages so the console stays clean
    logging.getLogger("waitress").setLevel(logging.CRITICAL)
    logging.getLogger("waitress.queue").setLevel(logging.CRITICAL)
    return logger

'''
Console logger used across krysolve. Solvers print their iteration tables and
final status line through it, preconditioners report their set-up.

@note Colored output is switched off by setting PYLOGCOLORS to '0' (or when stdout is not a tty).

-------------------------------------------------------
file        :   krysolve/common/flog.py
author      :   Maksymilian Kliczkowski
date        :   2025-05-01
description :   Console logging with verbosity control and iteration tables.
-------------------------------------------------------
'''

__all__         = [
    "Logger",
    "Colors",
    "get_global_logger"
]

import os
import sys
import logging
import threading
from typing import Optional, Sequence

# solver runs should not be drowned by the JIT backends
logging.getLogger("jax").setLevel(logging.WARNING)
logging.getLogger("numba").setLevel(logging.WARNING)

######################################################
#! COLORS
######################################################

class Colors:
    """
    ANSI escape codes, `Colors('red')('text')` wraps the text and resets the color.
    """

    black   = "\033[30m"
    red     = "\033[31m"
    green   = "\033[32m"
    yellow  = "\033[33m"
    blue    = "\033[34m"
    white   = "\033[0m"

    def __init__(self, color : str):
        self.color = color

    def __str__(self) -> str:
        return getattr(Colors, self.color) if self.color in _COLOR_NAMES else Colors.white

    def __repr__(self) -> str:
        return f"Colors({self.color!r})"

    def __call__(self, text: str) -> str:
        return f"{self}{text}{Colors.white}"

_COLOR_NAMES = ("black", "red", "green", "yellow", "blue", "white")

######################################################
#! LOGGER
######################################################

ENV_LOGGER_COLORS   = 'PYLOGCOLORS'

class Logger:
    """
    Thin wrapper over a `logging` logger writing to stdout. Every message may
    carry an indentation level and a color, and each method takes a `verbose`
    switch so callers can silence it without branching.
    """

    LEVELS = {
        logging.DEBUG   : 'debug',
        logging.INFO    : 'info',
        logging.WARNING : 'warning',
        logging.ERROR   : 'error'
    }

    LEVELS_R = {v: k for k, v in LEVELS.items()}

    def __init__(self,
                name            : str   = "krysolve",
                lvl             : int   = logging.INFO,
                use_ts_in_cmd   : bool  = False):
        """
        Args:
            name (str):
                Name of the underlying `logging` logger.
            lvl (int | str):
                Threshold, a `logging` constant or its lowercase name.
            use_ts_in_cmd (bool):
                Prefix console lines with a timestamp.
        """
        self.lvl                = Logger.LEVELS_R.get(lvl, logging.INFO) if isinstance(lvl, str) else lvl
        self.use_console_ts     = use_ts_in_cmd
        self.has_colors         = sys.stdout.isatty() and os.environ.get(ENV_LOGGER_COLORS, '1') != '0'

        self.logger             = logging.getLogger(name or __name__)
        self.logger.setLevel(self.lvl)
        self.logger.propagate   = False

        fmt                     = '%(asctime)s [%(levelname)s] %(message)s' if use_ts_in_cmd else '[%(levelname)s] %(message)s'

        # a re-created Logger replaces the handler instead of doubling the output
        for h in list(self.logger.handlers):
            self.logger.removeHandler(h)
            h.close()
        handler                 = logging.StreamHandler(sys.stdout)
        handler.setLevel(self.lvl)
        handler.setFormatter(logging.Formatter(fmt, datefmt="%d_%m_%Y_%H-%M_%S"))
        self.logger.addHandler(handler)

    # --------------------------------------------------------------

    @staticmethod
    def colorize(txt: str, color: Optional[str]) -> str:
        ''' Wrap the text in the escape codes of `color`, white leaves it as is. '''
        if not color or color.lower() == 'white':
            return str(txt)
        return Colors(color.lower())(txt)

    @staticmethod
    def indent(msg: str, lvl: int = 0) -> str:
        ''' Tab indentation followed by an arrow for nested messages. '''
        if lvl <= 0:
            return str(msg)
        return '\t' * lvl + '->' + str(msg)

    # --------------------------------------------------------------

    def _emit(self, level: int, msg: str, lvl: int, verbose: bool, color: Optional[str]):
        if not verbose:
            return
        if color is not None and self.has_colors:
            msg = self.colorize(msg, color)
        self.logger.log(level, Logger.indent(msg, lvl))

    def say(self, *args, end=True, log=logging.INFO, lvl=0, verbose=True, color=None):
        """
        Log several messages at once, joined by newlines (or spaces with `end=False`).
        `log` is a `logging` level or its name.
        """
        if isinstance(log, str):
            log = Logger.LEVELS_R.get(log.lower(), logging.DEBUG)
        if log < self.lvl:
            return
        sep = '\n' if end else ' '
        self._emit(log, sep.join(str(a) for a in args), lvl, verbose, color)

    def info(self, msg: str, lvl=0, verbose=True, color=None):
        self._emit(logging.INFO, msg, lvl, verbose, color)

    def debug(self, msg: str, lvl=0, verbose=True, color=None):
        self._emit(logging.DEBUG, msg, lvl, verbose, color)

    def warning(self, msg: str, lvl=0, verbose=True, color='yellow'):
        self._emit(logging.WARNING, msg, lvl, verbose, color)

    def error(self, msg: str, lvl=0, verbose=True, color='red'):
        self._emit(logging.ERROR, msg, lvl, verbose, color)

    # --------------------------------------------------------------

    def title(self, tail: str, desired_size: int = 50, fill: str = '=', lvl=0, verbose=True, color=None):
        """
        Log `tail` centered in a banner of `fill` characters, `desired_size` wide.
        Text too long for the banner is logged as a plain line.
        """
        if not verbose:
            return
        if len(tail) + 2 + lvl * 6 > desired_size:
            self.info(tail, lvl, verbose)
            return
        side    = (desired_size - len(tail)) // (2 * len(fill))
        banner  = f"{fill * side}{tail}{fill * side}"
        banner  = banner.ljust(desired_size - 1, fill[0])
        self.info(banner[:desired_size], lvl, verbose, color)

    # --------------------------------------------------------------

    @staticmethod
    def table_row(values: Sequence, widths: Sequence[int], fmts: Optional[Sequence[str]] = None) -> str:
        """
        Format one row of a fixed-width table (e.g. a solver iteration log).

        Args:
            values (Sequence):
                Cell values; strings are written as they are.
            widths (Sequence[int]):
                Column widths, right aligned.
            fmts (Sequence[str], optional):
                Format spec per column for non-string values (default '.2e' for floats, 'd' for ints).
        """
        cells = []
        for i, (v, w) in enumerate(zip(values, widths)):
            if isinstance(v, str):
                cells.append(f"{v:>{w}}")
                continue
            spec = fmts[i] if fmts is not None else ('d' if isinstance(v, int) else '.2e')
            cells.append(f"{v:>{w}{spec}}")
        return "  ".join(cells)

######################################################
#! PROCESS-WIDE INSTANCE
######################################################

_G_LOGGER     = None
_G_LOGGER_PID = None
_G_LOCK       = threading.Lock()

def get_global_logger(**kwargs) -> Logger:
    """
    The Logger of this process. It is created on first use (keyword arguments
    go to the constructor then) and again after a fork, so a child never
    writes through the parent's handler.

    Example
    -------
        >>> log = get_global_logger()
        >>> log.info("ready")
    """
    global  _G_LOGGER, _G_LOGGER_PID
    pid     = os.getpid()

    if _G_LOGGER is not None and _G_LOGGER_PID == pid:
        return _G_LOGGER

    with _G_LOCK:
        if _G_LOGGER is None or _G_LOGGER_PID != pid:
            _G_LOGGER       = Logger(
                name            = kwargs.get("name",            "krysolve"),
                lvl             = kwargs.get("lvl",             logging.INFO),
                use_ts_in_cmd   = kwargs.get("use_ts_in_cmd",   True),
            )
            _G_LOGGER_PID   = pid
        return _G_LOGGER

#! EOF

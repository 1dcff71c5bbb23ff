"""
Common utilities shared by the krysolve modules.

**Logging and Monitoring:**
- Console logger with verbosity control (`Logger`)
- Process-wide logger access (`get_global_logger`)

Example:
    >>> from krysolve.common import get_global_logger
    >>> log = get_global_logger()
    >>> log.info("ready")
"""

from .flog import Logger, Colors, get_global_logger

__all__ = ["Logger", "Colors", "get_global_logger"]

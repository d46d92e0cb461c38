"""Scoped and level-filtered logging.

All messages go through a single process-wide sink: the ``torch_estimator`` logger of the standard
:mod:`logging` module with one handler (stdout by default, or a log file). Each message is tagged with
a scope and formatted as::

    LEVEL--[scope] message

Handlers of :mod:`logging` serialize each record under their lock, so a line is never interleaved with
another one even with concurrent writers.

The estimator never logs by itself. Diagnostics (singular matrices, dropped observations, ...) are
emitted by the code driving it, see :mod:`torch_estimator.tracking`.

Example:
```python
    from torch_estimator import errlog

    errlog.set_logging_level(errlog.Magnitude.INFO)
    logger = errlog.get_logger("my_tracker.step")
    logger.info("Predicting to %f", t)
    logger.severe("Filter diverged")  # SEVERE--[my_tracker.step] Filter diverged
```
"""

from __future__ import annotations

import enum
import logging
import os
import sys
import threading
from typing import Optional, Union

LOGGER_NAME = "torch_estimator"


class Magnitude(enum.IntEnum):
    """Magnitude of a message, ordered from the least to the most important.

    Values match the standard :mod:`logging` levels.
    """

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    SEVERE = logging.ERROR
    FATAL = logging.CRITICAL


class _ScopeFormatter(logging.Formatter):
    """Format records as ``LEVEL--[scope] message``."""

    def __init__(self) -> None:
        super().__init__("%(magnitude)s--[%(scope)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        try:
            record.magnitude = Magnitude(record.levelno).name
        except ValueError:
            record.magnitude = ""
        if not hasattr(record, "scope"):
            record.scope = record.name
        return super().format(record)


class ScopedLogger(logging.LoggerAdapter):
    """Logger tagging every message with a scope.

    On top of the usual ``debug``, ``info`` and ``warning`` methods, it provides ``severe`` and ``fatal``.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def severe(self, msg, *args, **kwargs) -> None:
        """Log a message with the SEVERE magnitude."""
        self.log(Magnitude.SEVERE, msg, *args, **kwargs)

    def fatal(self, msg, *args, **kwargs) -> None:
        """Log a message with the FATAL magnitude."""
        self.log(Magnitude.FATAL, msg, *args, **kwargs)


_logger = logging.getLogger(LOGGER_NAME)
_logger.propagate = False
_lock = threading.Lock()


def scope_name(scope: str) -> str:
    """Extract a short scope from a qualified function signature.

    Arguments and return type are dropped: ``"void so::Foo::bar(int)"`` becomes ``"so::Foo::bar"``.
    Plain names (``"module.function"``) are kept as is.

    Args:
        scope (str): Scope, or qualified function signature.

    Returns:
        str: The short scope
    """
    args_start = scope.rfind("(")
    if args_start >= 0:
        scope = scope[:args_start]
    return scope[scope.rfind(" ") + 1 :]


def get_logger(scope: str) -> ScopedLogger:
    """Return a logger tagging its messages with ``scope``.

    Args:
        scope (str): Scope of the messages (see :func:`scope_name`).

    Returns:
        ScopedLogger: Logger writing to the process-wide sink
    """
    return ScopedLogger(_logger, {"scope": scope_name(scope)})


def log(scope: str, magnitude: Magnitude, message: str, file: Union[str, os.PathLike, None] = None) -> None:
    """Log a single message.

    Args:
        scope (str): Scope of the message.
        magnitude (Magnitude): Magnitude of the message. Dropped if below the logging level.
        message (str): The message.
        file (str | os.PathLike | None): If given, the message is appended to this file
            instead of the main sink.
    """
    if file is None:
        get_logger(scope).log(magnitude, message)
        return

    if not _logger.isEnabledFor(magnitude):
        return

    record = _logger.makeRecord(
        _logger.name, magnitude, "(unknown file)", 0, message, (), None, extra={"scope": scope_name(scope)}
    )
    handler = logging.FileHandler(file, mode="a")
    handler.setFormatter(_ScopeFormatter())
    with _lock:
        try:
            handler.handle(record)
        finally:
            handler.close()


def set_logging_level(magnitude: Magnitude) -> None:
    """Drop messages below ``magnitude``.

    Args:
        magnitude (Magnitude): Minimum magnitude of logged messages. The default is DEBUG.
    """
    _logger.setLevel(magnitude)


def get_logging_level() -> Magnitude:
    """Return the current logging level."""
    return Magnitude(_logger.level)


def set_log_file(filename: Union[str, os.PathLike]) -> None:
    """Redirect the main sink to a file. Messages are appended.

    Args:
        filename (str | os.PathLike): Path of the log file.
    """
    _install(logging.FileHandler(filename, mode="a"))


def reset(stream: Optional[object] = None) -> None:
    """Redirect the main sink to a stream (stdout by default).

    Args:
        stream (TextIO | None): Stream to write to. Default: ``sys.stdout``
    """
    _install(logging.StreamHandler(sys.stdout if stream is None else stream))


def _install(handler: logging.Handler) -> None:
    handler.setFormatter(_ScopeFormatter())
    with _lock:
        for old_handler in list(_logger.handlers):
            _logger.removeHandler(old_handler)
            old_handler.close()
        _logger.addHandler(handler)


set_logging_level(Magnitude.DEBUG)
reset()

"""
Logging configuration — set up once by the CLI entrypoint.

Every module logs through ``logger = logging.getLogger(__name__)`` and
inherits this configuration.

Console level precedence:
    --debug / --verbose / --quiet  >  ENVORCH_LOG_LEVEL  >  WARNING

A log file is written when ENVORCH_LOG_FILE is set, at
ENVORCH_LOG_FILE_LEVEL (default: the console level). Secret values
(the ENVORCH_TOKEN credential) are masked in every record.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterable, Mapping

_FMT_MINIMAL = "%(message)s"
_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_SHORT = "%H:%M:%S"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

_MASK = "****"
_SECRET_VARS = ("ENVORCH_TOKEN",)


class SecretMaskFilter(logging.Filter):
    """Replace known secret values in the rendered message."""

    def __init__(self, secrets: Iterable[str]):
        super().__init__()
        self._secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        masked = message
        for secret in self._secrets:
            masked = masked.replace(secret, _MASK)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def resolve_level(
    verbose: bool = False,
    quiet: bool = False,
    debug: bool = False,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Console level name from CLI flags, falling back to ENVORCH_LOG_LEVEL."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    environ = os.environ if environ is None else environ
    return environ.get("ENVORCH_LOG_LEVEL", "WARNING").upper()


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> None:
    """Configure the root logger for the process.

    ``log_file`` and ``log_file_level`` default to ENVORCH_LOG_FILE and
    ENVORCH_LOG_FILE_LEVEL.
    """
    environ = os.environ if environ is None else environ
    log_file = log_file or environ.get("ENVORCH_LOG_FILE") or None
    log_file_level = log_file_level or environ.get("ENVORCH_LOG_FILE_LEVEL") or None

    console_level = _parse_level(level)
    if console_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_SHORT
    elif console_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_SHORT
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    mask = SecretMaskFilter(environ.get(name, "") for name in _SECRET_VARS)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    console.addFilter(mask)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.addHandler(console)
    effective = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        effective = min(effective, file_level)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_DEBUG, datefmt=_DATEFMT_FILE))
        fh.addFilter(mask)
        root.addHandler(fh)

    root.setLevel(effective)
    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value (unknown names mean WARNING)."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric

"""Loguru setup for yfkit: a stdout sink plus a bridge into stdlib ``logging``.

Every record carries ``request_id``, ``environment`` and ``client_version`` in
``extra`` so callers that only listen on stdlib logging still see them.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Optional, Union

from loguru import logger

from yfkit import __version__

_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | "
    "req={extra[request_id]} | env={extra[environment]} | "
    "ver={extra[client_version]} | {name}:{function} | {message}"
)

_SINK_OPTIONS: Dict[str, Any] = {"enqueue": False, "backtrace": False, "diagnose": False}

_fields: Dict[str, ContextVar[str]] = {
    "request_id": ContextVar("yf_log_request_id", default="-"),
    "environment": ContextVar("yf_log_environment", default="local"),
    "client_version": ContextVar("yf_log_client_version", default=__version__),
}


def _patch_record(record: Dict[str, Any]) -> None:
    for key, var in _fields.items():
        record["extra"].setdefault(key, var.get())


def _to_stdlib(message) -> None:
    record = message.record
    exc = record["exception"]
    std = logging.LogRecord(
        name=record["name"] or "yfkit",
        level=record["level"].no,
        pathname=record["file"].path,
        lineno=record["line"],
        msg=record["message"],
        args=(),
        exc_info=(exc.type, exc.value, exc.traceback) if exc else None,
        func=record["function"],
    )
    std.__dict__.update(record["extra"])
    logging.getLogger(std.name).handle(std)


def setup_logging(*, force: bool = False, level: Optional[str] = None) -> None:
    """Install the yfkit sinks once; ``force`` replaces an earlier setup."""
    if getattr(setup_logging, "_configured", False) and not force:
        return

    log_level = (level or os.getenv("YF_LOG_LEVEL") or os.getenv("LOG_LEVEL") or "INFO").upper()
    environment = os.getenv("YF_ENV") or os.getenv("ENV") or "local"
    _fields["environment"].set(environment)

    logger.remove()
    logger.configure(
        extra={"request_id": "-", "environment": environment, "client_version": __version__},
        patcher=_patch_record,
    )
    logger.add(sys.stdout, level=log_level, format=_LOG_FORMAT, **_SINK_OPTIONS)
    logger.add(_to_stdlib, level=log_level, **_SINK_OPTIONS)

    logging.getLogger().setLevel(getattr(logging, log_level, logging.INFO))
    setup_logging._configured = True  # type: ignore[attr-defined]


def setup_test_logging(
    level: Optional[str] = None, *, log_file: Optional[Union[str, os.PathLike]] = None
) -> None:
    """Force-configure logging for pytest, optionally mirroring records to ``log_file``."""
    effective = (level or os.getenv("PYTEST_LOGLEVEL") or "INFO").upper()
    setup_logging(force=True, level=effective)
    if log_file is not None:
        target = Path(log_file)
        target.parent.mkdir(parents=True, exist_ok=True)
        logger.add(str(target), level=effective, format=_LOG_FORMAT, **_SINK_OPTIONS)


@contextmanager
def logging_context(**values: str):
    """Scope structured fields such as ``request_id`` to the enclosed block."""
    tokens = [
        (_fields[key], _fields[key].set(value or "-"))
        for key, value in values.items()
        if key in _fields
    ]
    try:
        with logger.contextualize(**values):
            yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


__all__ = ["logging_context", "setup_logging", "setup_test_logging"]

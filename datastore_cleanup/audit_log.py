"""Append-only audit log for cleanup runs.

Each entry is a single line ``[YYYY-MM-DD HH:MM:SS] <message>`` in local
time. The file is the authoritative record of a run, so every write failure
surfaces as :class:`LoggingError` instead of being swallowed.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import IO, Callable

from .errors import LoggingError


LOGGER = logging.getLogger("datastore_cleanup")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVEL_PREFIXES = {
    "INFO": "",
    "WARNING": "WARNING: ",
    "ERROR": "ERROR: ",
}


def format_entry(message: str, *, timestamp: datetime, level: str = "INFO") -> str:
    prefix = _LEVEL_PREFIXES.get(level.upper(), f"{level.upper()}: ")
    # Keep one entry per line so the file stays splittable on newlines.
    text = " ".join(str(message).splitlines())
    return f"[{timestamp.strftime(TIMESTAMP_FORMAT)}] {prefix}{text}"


class AuditLog:
    def __init__(self, path: str | os.PathLike, *, now: Callable[[], datetime] = datetime.now):
        self._path = Path(path)
        self._now = now
        self._handle: IO[str] | None = None

    def open(self) -> None:
        if self._handle is not None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = self._path.open("a", encoding="utf-8")
        except OSError as exc:
            raise LoggingError(f"Cannot open audit log {self._path}: {exc}") from exc

    def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except OSError as exc:
            raise LoggingError(f"Cannot close audit log {self._path}: {exc}") from exc

    def append(self, message: str, *, level: str = "INFO") -> None:
        self.open()
        handle = self._handle
        line = format_entry(message, timestamp=self._now(), level=level)
        try:
            handle.write(line + "\n")
            handle.flush()
        except (OSError, ValueError) as exc:
            raise LoggingError(f"Cannot write audit log {self._path}: {exc}") from exc
        LOGGER.log(getattr(logging, level.upper(), logging.INFO), "[CLEANUP]: %s", message)

    def __enter__(self) -> "AuditLog":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

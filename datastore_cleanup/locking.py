from __future__ import annotations

import hashlib
import os
import tempfile
from pathlib import Path
from typing import IO

from .errors import RunLockedError

if os.name == "nt":
    import msvcrt
else:
    import fcntl


def lock_path_for(*, datastore_path: Path, service_name: str, lock_dir: Path | None = None) -> Path:
    """Lock file location shared by every run targeting the same datastore and service."""
    key = f"{os.path.normcase(os.path.abspath(str(datastore_path)))}|{service_name.lower()}"
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]
    directory = Path(lock_dir) if lock_dir is not None else Path(tempfile.gettempdir())
    return directory / f"datastore-cleanup-{digest}.lock"


class RunLock:
    """Advisory, non-blocking exclusive lock held for the duration of a run.

    The lock is tied to the open file handle, so the OS drops it when the
    process exits, including when it is killed mid-run.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._handle: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self._handle is not None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self._path, "a+", encoding="utf-8")
        try:
            if os.name == "nt":
                handle.seek(0)
                msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
            else:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            handle.close()
            raise RunLockedError(str(self._path))

        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        self._handle = handle

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            if os.name == "nt":
                handle.seek(0)
                msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
            else:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

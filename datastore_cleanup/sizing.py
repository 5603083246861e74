from __future__ import annotations

import os
import stat

from .errors import PathNotFound
from .utils import Deadline


KB = 1024
MB = KB * 1024
GB = MB * 1024


def is_link(entry: os.DirEntry) -> bool:
    """True for symlinks and Windows reparse points (junctions included)."""
    if entry.is_symlink():
        return True
    if os.name != "nt":
        return False
    attributes = getattr(entry.stat(follow_symlinks=False), "st_file_attributes", 0)
    return bool(attributes & stat.FILE_ATTRIBUTE_REPARSE_POINT)


def directory_size_bytes(path: str | os.PathLike, *, deadline: Deadline | None = None) -> int:
    root = os.fspath(path)
    if not os.path.isdir(root):
        raise PathNotFound(root)

    deadline = deadline or Deadline(None)
    total = 0
    pending = [root]
    while pending:
        current = pending.pop()
        deadline.check(f"Measuring {root}")
        try:
            with os.scandir(current) as entries:
                for entry in entries:
                    if is_link(entry):
                        continue
                    if entry.is_dir(follow_symlinks=False):
                        pending.append(entry.path)
                    elif entry.is_file(follow_symlinks=False):
                        try:
                            total += int(entry.stat(follow_symlinks=False).st_size)
                        except FileNotFoundError:
                            continue
        except FileNotFoundError:
            # Removed while scanning; the root itself was validated above.
            if current == root:
                raise PathNotFound(root)
    return total


def format_size(num_bytes: int) -> str:
    size = int(num_bytes)
    if size < 0:
        raise ValueError("num_bytes must be >= 0")
    if size >= GB:
        return f"{size // GB} GB"
    if size >= MB:
        return f"{size // MB} MB"
    return f"{size // KB} KB"

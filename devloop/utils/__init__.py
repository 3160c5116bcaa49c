"""Utility modules for devloop."""

from devloop.utils.fs import (
    FileSystemError,
    ensure_dir,
    file_exists,
    list_dirs,
    list_markdown,
    read_file,
    safe_write,
)

__all__ = [
    "FileSystemError",
    "ensure_dir",
    "file_exists",
    "list_dirs",
    "list_markdown",
    "read_file",
    "safe_write",
]

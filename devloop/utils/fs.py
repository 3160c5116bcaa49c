"""
File system utilities for devloop.

This module provides the file operations the record stores rely on:
- Atomic writes (write to a sibling temp file, then os.replace)
- Directory creation
- Text reading with encoding handling
- Sorted directory listings
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


class FileSystemError(Exception):
    """Raised when a file system operation fails."""
    pass


def ensure_dir(path: str | Path) -> Path:
    """
    Create a directory if it does not exist (like mkdir -p).

    Raises:
        FileSystemError: If directory creation fails.
    """
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
        return path
    except OSError as e:
        raise FileSystemError(f"Failed to create directory {path}: {e}")


def safe_write(path: str | Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write content to a file atomically.

    The content is written to a temporary file in the same directory and
    swapped in with os.replace, so readers observe either the old file or
    the new one, never a partial write.

    Args:
        path: Path to the file to write.
        content: Content to write to the file.
        encoding: Character encoding to use. Defaults to utf-8.

    Raises:
        FileSystemError: If write operation fails.
    """
    path = Path(path)
    ensure_dir(path.parent)

    try:
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding=encoding) as f:
                f.write(content)
            os.replace(temp_path, path)
        except BaseException:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
    except OSError as e:
        raise FileSystemError(f"Failed to write file {path}: {e}")


def file_exists(path: str | Path) -> bool:
    """Check that path exists and is a regular file."""
    return Path(path).is_file()


def read_file(path: str | Path, encoding: str = "utf-8") -> str:
    """
    Read a file's contents with encoding handling.

    Raises:
        FileSystemError: If file is missing or cannot be decoded.
    """
    path = Path(path)

    if not path.is_file():
        raise FileSystemError(f"File not found: {path}")

    try:
        return path.read_text(encoding=encoding)
    except UnicodeDecodeError as e:
        raise FileSystemError(f"Failed to decode file {path} with encoding {encoding}: {e}")
    except OSError as e:
        raise FileSystemError(f"Failed to read file {path}: {e}")


def list_dirs(directory: str | Path) -> list[Path]:
    """
    List immediate subdirectories, sorted alphabetically.

    A missing directory yields an empty list.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.is_dir() and not p.name.startswith("."))


def list_markdown(directory: str | Path) -> list[Path]:
    """List ``*.md`` files in a directory, sorted alphabetically."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.glob("*.md") if p.is_file())

"""
Filesystem capability set shared by every storage backend.

A protocol engine only ever talks to a FileSystem and to the File handles it returns, so
an SFTP-backed tree, a local directory or any other backend can be swapped in without the
engine knowing which one it holds.

Functions report failures by raising OSError subclasses (FileNotFoundError,
PermissionError, ...). Backends that wrap a remote server pass the server's errors
through unchanged.
"""

import os
from datetime import datetime
from typing import Any, List, Optional, Union

Timestamp = Union[datetime, float, int]


class File:
    """
    Handle returned by FileSystem.create(), open() and open_file().

    Regular files support the byte-level calls. Directory handles only support listing,
    stat() and the no-op calls and raise UnsupportedOperation for everything else.
    """

    def name(self) -> str:
        raise NotImplementedError()

    def stat(self) -> Any:
        raise NotImplementedError()

    def close(self) -> None:
        raise NotImplementedError()

    def sync(self) -> None:
        raise NotImplementedError()

    def read(self, size: int = -1) -> bytes:
        raise NotImplementedError()

    def read_at(self, size: int, offset: int) -> bytes:
        raise NotImplementedError()

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        raise NotImplementedError()

    def write(self, data: bytes) -> int:
        raise NotImplementedError()

    def write_at(self, data: bytes, offset: int) -> int:
        raise NotImplementedError()

    def write_string(self, text: str) -> int:
        raise NotImplementedError()

    def truncate(self, size: int) -> None:
        raise NotImplementedError()

    def readdir(self, count: int = 0) -> List[Any]:
        """
        Return up to count entries of the directory, continuing where the previous call
        stopped. A count <= 0 returns everything that is left. Once the listing is
        exhausted, an empty list is returned.
        """
        raise NotImplementedError()

    def readdirnames(self, count: int = 0) -> List[str]:
        return [entry_name(entry) for entry in self.readdir(count)]

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class FileSystem:
    """Base class for a filesystem backend. Paths are "/"-separated."""

    def name(self) -> str:
        raise NotImplementedError()

    def create(self, name: str) -> File:
        """Create or truncate a file and open it for reading and writing."""
        raise NotImplementedError()

    def open(self, name: str) -> File:
        """Open a file or directory for reading."""
        raise NotImplementedError()

    def open_file(self, name: str, flags: int, mode: int) -> File:
        """Open with os.O_* flags; mode applies to newly created files."""
        raise NotImplementedError()

    def mkdir(self, name: str, mode: int) -> None:
        raise NotImplementedError()

    def mkdir_all(self, path: str, mode: int) -> None:
        """Create a directory and every missing parent. An existing directory is fine."""
        raise NotImplementedError()

    def remove(self, name: str) -> None:
        """Remove a file or an empty directory."""
        raise NotImplementedError()

    def remove_all(self, path: str) -> None:
        """Remove a path and everything below it. A missing path is not an error."""
        raise NotImplementedError()

    def rename(self, old: str, new: str) -> None:
        raise NotImplementedError()

    def stat(self, name: str) -> Any:
        raise NotImplementedError()

    def chmod(self, name: str, mode: int) -> None:
        raise NotImplementedError()

    def chown(self, name: str, uid: int, gid: int) -> None:
        raise NotImplementedError()

    def chtimes(self, name: str, atime: Timestamp, mtime: Timestamp) -> None:
        raise NotImplementedError()

    def close(self) -> None:
        """Release whatever the backend holds. Backends without resources do nothing."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class DirectoryCursor:
    """Lazily fetched directory listing with a read position."""

    def __init__(self, fetch):
        self._fetch = fetch
        self.entries: Optional[List[Any]] = None
        self.position = 0

    def next(self, count: int) -> List[Any]:
        if self.entries is None:
            self.entries = list(self._fetch())
            self.position = 0

        if count <= 0:
            result = self.entries[self.position:]
            self.position = len(self.entries)
            return result

        end = min(self.position + count, len(self.entries))
        result = self.entries[self.position:end]
        self.position = end
        return result


def entry_name(entry: Any) -> str:
    # paramiko's SFTPAttributes call it filename, os.DirEntry calls it name
    name = getattr(entry, "filename", None)
    if name is None:
        name = getattr(entry, "name", "")
    return name


def to_epoch(value: Timestamp) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)

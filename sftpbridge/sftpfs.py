import os
import stat
import errno
import threading
from typing import List, Optional, Tuple

import paramiko
from paramiko.sftp import (
    CMD_HANDLE, CMD_OPEN, SFTP_FLAG_APPEND, SFTP_FLAG_CREATE, SFTP_FLAG_EXCL,
    SFTP_FLAG_READ, SFTP_FLAG_TRUNC, SFTP_FLAG_WRITE,
)

from sftpbridge.fs import DirectoryCursor, File, FileSystem, Timestamp, to_epoch


def open_flags(flags: int) -> Tuple[int, str]:
    """
    Map os.O_* flags onto SFTP open pflags, plus the mode string for the local SFTPFile
    buffer (which never reaches the server).
    """
    access = flags & (os.O_RDONLY | os.O_WRONLY | os.O_RDWR)
    if access == os.O_RDWR:
        pflags, mode = SFTP_FLAG_READ | SFTP_FLAG_WRITE, "r+"
    elif access == os.O_WRONLY:
        pflags, mode = SFTP_FLAG_WRITE, "w"
    else:
        pflags, mode = SFTP_FLAG_READ, "r"

    if flags & os.O_APPEND:
        pflags |= SFTP_FLAG_APPEND
        if access != os.O_RDONLY:
            mode = "a+" if access == os.O_RDWR else "a"
    if flags & os.O_CREAT:
        pflags |= SFTP_FLAG_CREATE
    if flags & os.O_TRUNC:
        pflags |= SFTP_FLAG_TRUNC
    if flags & os.O_EXCL:
        pflags |= SFTP_FLAG_EXCL
    return pflags, mode + "b"


class SftpFile(File):
    def __init__(self, client: paramiko.SFTPClient, path: str, handle: paramiko.SFTPFile, lock: threading.RLock):
        self._client = client
        self._path = path
        self._handle = handle
        self._lock = lock
        self._cursor = DirectoryCursor(self._listdir)

    def _listdir(self) -> List[paramiko.SFTPAttributes]:
        with self._lock:
            return self._client.listdir_attr(self._path)

    def name(self) -> str:
        return self._path

    def stat(self) -> paramiko.SFTPAttributes:
        with self._lock:
            return self._handle.stat()

    def close(self) -> None:
        with self._lock:
            self._handle.close()

    def sync(self) -> None:
        with self._lock:
            self._handle.flush()

    def read(self, size: int = -1) -> bytes:
        with self._lock:
            if size is None or size < 0:
                return self._handle.read()
            return self._handle.read(size)

    def read_at(self, size: int, offset: int) -> bytes:
        with self._lock:
            position = self._handle.tell()
            try:
                self._handle.seek(offset)
                return self._handle.read(size)
            finally:
                self._handle.seek(position)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        with self._lock:
            self._handle.seek(offset, whence)
            return self._handle.tell()

    def write(self, data: bytes) -> int:
        with self._lock:
            self._handle.write(data)
        return len(data)

    def write_at(self, data: bytes, offset: int) -> int:
        with self._lock:
            position = self._handle.tell()
            try:
                self._handle.seek(offset)
                self._handle.write(data)
            finally:
                self._handle.seek(position)
        return len(data)

    def write_string(self, text: str) -> int:
        return self.write(text.encode("utf-8"))

    def truncate(self, size: int) -> None:
        with self._lock:
            self._handle.truncate(size)

    def readdir(self, count: int = 0) -> List[paramiko.SFTPAttributes]:
        return self._cursor.next(count)


class SftpFs(FileSystem):
    """
    Filesystem primitives over a paramiko SFTP client.

    paramiko's SFTPClient is not safe for concurrent requests from several threads, so
    every request, including reads and writes through the returned files, goes through
    one lock per session.
    """

    def __init__(self, client: paramiko.SFTPClient, lock: Optional[threading.RLock] = None):
        self.client = client
        self.lock = lock if lock is not None else threading.RLock()

    def name(self) -> str:
        return "sftpfs"

    def _open(self, name: str, mode: str) -> SftpFile:
        with self.lock:
            handle = self.client.open(name, mode)
        return SftpFile(self.client, name, handle, self.lock)

    def create(self, name: str) -> SftpFile:
        return self._open(name, "w+b")

    def open(self, name: str) -> SftpFile:
        return self._open(name, "rb")

    def open_file(self, name: str, flags: int, mode: int) -> SftpFile:
        # SFTPClient.open() always adds CREATE to "w"/"a" and READ to "r+", so the
        # OPEN request is built from the flags directly.
        pflags, local_mode = open_flags(flags)
        attrs = paramiko.SFTPAttributes()
        if flags & os.O_CREAT:
            # applied by the server to a newly created file only
            attrs.st_mode = mode & 0o7777
        with self.lock:
            t, msg = self.client._request(CMD_OPEN, self.client._adjust_cwd(name), pflags, attrs)
            if t != CMD_HANDLE:
                raise paramiko.SFTPError("Expected handle")
            handle = paramiko.SFTPFile(self.client, msg.get_binary(), local_mode)
        return SftpFile(self.client, name, handle, self.lock)

    def mkdir(self, name: str, mode: int) -> None:
        with self.lock:
            self.client.mkdir(name, mode)

    def mkdir_all(self, path: str, mode: int) -> None:
        with self.lock:
            try:
                attrs = self.client.stat(path)
            except FileNotFoundError:
                attrs = None
            if attrs is not None:
                if stat.S_ISDIR(attrs.st_mode or 0):
                    return
                raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), path)

            parent = path.rstrip("/").rpartition("/")[0]
            if parent:
                self.mkdir_all(parent, mode)

            try:
                self.client.mkdir(path, mode)
            except IOError:
                # Lost a race with another client, or the server reports EEXIST oddly
                try:
                    attrs = self.client.lstat(path)
                except IOError:
                    attrs = None
                if attrs is None or not stat.S_ISDIR(attrs.st_mode or 0):
                    raise

    def remove(self, name: str) -> None:
        with self.lock:
            try:
                self.client.remove(name)
                return
            except FileNotFoundError:
                raise
            except IOError as exc:
                remove_error = exc

            # Servers disagree on the status code for removing a directory as a file
            try:
                self.client.rmdir(name)
            except IOError:
                raise remove_error

    def remove_all(self, path: str) -> None:
        with self.lock:
            try:
                attrs = self.client.lstat(path)
            except FileNotFoundError:
                return

            if not stat.S_ISDIR(attrs.st_mode or 0):
                self.client.remove(path)
                return

            for entry in self.client.listdir_attr(path):
                if entry.filename in (".", ".."):
                    continue
                self.remove_all(path.rstrip("/") + "/" + entry.filename)
            self.client.rmdir(path)

    def rename(self, old: str, new: str) -> None:
        with self.lock:
            self.client.rename(old, new)

    def stat(self, name: str) -> paramiko.SFTPAttributes:
        with self.lock:
            return self.client.stat(name)

    def chmod(self, name: str, mode: int) -> None:
        with self.lock:
            self.client.chmod(name, mode)

    def chown(self, name: str, uid: int, gid: int) -> None:
        with self.lock:
            self.client.chown(name, uid, gid)

    def chtimes(self, name: str, atime: Timestamp, mtime: Timestamp) -> None:
        with self.lock:
            self.client.utime(name, (to_epoch(atime), to_epoch(mtime)))

    def close(self) -> None:
        with self.lock:
            self.client.close()

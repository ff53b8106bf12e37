import os
from contextlib import nullcontext
from typing import List, Optional

import paramiko

from sftpbridge.errors import UnsupportedOperation
from sftpbridge.fs import DirectoryCursor, File, FileSystem, Timestamp
from sftpbridge.utils import log_error


def translate_path(root: str, name: str) -> str:
    """
    Convert a client path ("/" rooted) into a path on the SFTP server.

    When the root is "/" itself, paths stay relative to the session's starting directory
    ("." and "./name"), which chrooted servers accept.
    """
    if name in ("/", ""):
        return "." if root == "/" else root

    relative = name[1:] if name.startswith("/") else name
    if root == "/":
        return "./" + relative
    return root + "/" + relative


class SftpDirFile(File):
    """
    Listing-only handle for a directory.

    Some servers (e.g. FileZilla Pro) cannot open a directory like a file but can list
    it. Everything except listing and stat is rejected.
    """

    def __init__(self, client: paramiko.SFTPClient, path: str, lock=None):
        self._client = client
        self._path = path
        self._lock = lock if lock is not None else nullcontext()
        self._cursor = DirectoryCursor(self._listdir)

    def _listdir(self) -> List[paramiko.SFTPAttributes]:
        with self._lock:
            return self._client.listdir_attr(self._path)

    def _unsupported(self, message: str):
        raise UnsupportedOperation(message, self._path)

    def name(self) -> str:
        return self._path

    def stat(self) -> paramiko.SFTPAttributes:
        with self._lock:
            return self._client.stat(self._path)

    def close(self) -> None:
        pass

    def sync(self) -> None:
        pass

    def read(self, size: int = -1) -> bytes:
        self._unsupported("cannot read from directory")

    def read_at(self, size: int, offset: int) -> bytes:
        self._unsupported("cannot read from directory")

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        self._unsupported("cannot seek directory")

    def write(self, data: bytes) -> int:
        self._unsupported("cannot write to directory")

    def write_at(self, data: bytes, offset: int) -> int:
        self._unsupported("cannot write to directory")

    def write_string(self, text: str) -> int:
        self._unsupported("cannot write to directory")

    def truncate(self, size: int) -> None:
        self._unsupported("cannot truncate directory")

    def readdir(self, count: int = 0) -> List[paramiko.SFTPAttributes]:
        return self._cursor.next(count)


class RootPathFs(FileSystem):
    """
    Presents an SFTP tree rooted at the session's root path as "/".

    Every call translates its paths and hands them to the wrapped filesystem. Results and
    errors come back untouched.
    """

    def __init__(self, source: FileSystem, root: str, sftp_client: Optional[paramiko.SFTPClient] = None, session=None):
        self.source = source
        self.root = root
        self.sftp_client = sftp_client
        self.session = session

    def translate_path(self, name: str) -> str:
        return translate_path(self.root, name)

    def name(self) -> str:
        return "RootPathFs"

    def create(self, name: str) -> File:
        return self.source.create(self.translate_path(name))

    def open(self, name: str) -> File:
        translated = self.translate_path(name)
        try:
            return self.source.open(translated)
        except (OSError, paramiko.SSHException) as exc:
            if self.sftp_client is None:
                raise
            # The real error, if any, shows up on the first readdir/stat
            log_error(f"open {translated} failed ({exc}), using directory listing")
            return SftpDirFile(self.sftp_client, translated, getattr(self.source, "lock", None))

    def open_file(self, name: str, flags: int, mode: int) -> File:
        return self.source.open_file(self.translate_path(name), flags, mode)

    def mkdir(self, name: str, mode: int) -> None:
        return self.source.mkdir(self.translate_path(name), mode)

    def mkdir_all(self, path: str, mode: int) -> None:
        return self.source.mkdir_all(self.translate_path(path), mode)

    def remove(self, name: str) -> None:
        return self.source.remove(self.translate_path(name))

    def remove_all(self, path: str) -> None:
        return self.source.remove_all(self.translate_path(path))

    def rename(self, old: str, new: str) -> None:
        return self.source.rename(self.translate_path(old), self.translate_path(new))

    def stat(self, name: str):
        return self.source.stat(self.translate_path(name))

    def chmod(self, name: str, mode: int) -> None:
        return self.source.chmod(self.translate_path(name), mode)

    def chown(self, name: str, uid: int, gid: int) -> None:
        return self.source.chown(self.translate_path(name), uid, gid)

    def chtimes(self, name: str, atime: Timestamp, mtime: Timestamp) -> None:
        return self.source.chtimes(self.translate_path(name), atime, mtime)

    def close(self) -> None:
        if self.session is not None:
            self.session.close()
        else:
            self.source.close()

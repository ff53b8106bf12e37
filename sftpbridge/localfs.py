import os
import os.path
import shutil
from typing import List

from sftpbridge.fs import DirectoryCursor, File, FileSystem, Timestamp, to_epoch


class OsFile(File):
    def __init__(self, path: str, fd: int):
        self._path = path
        self._fd = fd
        self._cursor = DirectoryCursor(self._scandir)

    def _scandir(self) -> List[os.DirEntry]:
        with os.scandir(self._path) as entries:
            return list(entries)

    def name(self) -> str:
        return self._path

    def stat(self) -> os.stat_result:
        return os.fstat(self._fd)

    def close(self) -> None:
        os.close(self._fd)

    def sync(self) -> None:
        os.fsync(self._fd)

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            chunks = []
            while True:
                chunk = os.read(self._fd, 1024 * 1024)
                if not chunk:
                    return b"".join(chunks)
                chunks.append(chunk)
        return os.read(self._fd, size)

    def read_at(self, size: int, offset: int) -> bytes:
        return os.pread(self._fd, size, offset)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return os.lseek(self._fd, offset, whence)

    def write(self, data: bytes) -> int:
        return os.write(self._fd, data)

    def write_at(self, data: bytes, offset: int) -> int:
        return os.pwrite(self._fd, data, offset)

    def write_string(self, text: str) -> int:
        return self.write(text.encode("utf-8"))

    def truncate(self, size: int) -> None:
        os.ftruncate(self._fd, size)

    def readdir(self, count: int = 0) -> List[os.DirEntry]:
        return self._cursor.next(count)


class OsFs(FileSystem):
    """Local directory exposed as "/". Paths cannot climb out of the base path."""

    def __init__(self, base_path: str):
        self.base_path = os.path.abspath(base_path)

    def real_path(self, name: str) -> str:
        relative = os.path.normpath("/" + name.lstrip("/")).lstrip("/")
        if not relative or relative == ".":
            return self.base_path
        return os.path.join(self.base_path, relative)

    def name(self) -> str:
        return "OsFs"

    def create(self, name: str) -> OsFile:
        return self.open_file(name, os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o666)

    def open(self, name: str) -> OsFile:
        return self.open_file(name, os.O_RDONLY, 0)

    def open_file(self, name: str, flags: int, mode: int) -> OsFile:
        path = self.real_path(name)
        return OsFile(path, os.open(path, flags, mode))

    def mkdir(self, name: str, mode: int) -> None:
        os.mkdir(self.real_path(name), mode)

    def mkdir_all(self, path: str, mode: int) -> None:
        os.makedirs(self.real_path(path), mode, exist_ok=True)

    def remove(self, name: str) -> None:
        path = self.real_path(name)
        if os.path.isdir(path) and not os.path.islink(path):
            os.rmdir(path)
        else:
            os.unlink(path)

    def remove_all(self, path: str) -> None:
        real = self.real_path(path)
        if not os.path.lexists(real):
            return
        if os.path.isdir(real) and not os.path.islink(real):
            shutil.rmtree(real)
        else:
            os.unlink(real)

    def rename(self, old: str, new: str) -> None:
        os.rename(self.real_path(old), self.real_path(new))

    def stat(self, name: str) -> os.stat_result:
        return os.stat(self.real_path(name))

    def chmod(self, name: str, mode: int) -> None:
        os.chmod(self.real_path(name), mode)

    def chown(self, name: str, uid: int, gid: int) -> None:
        os.chown(self.real_path(name), uid, gid)

    def chtimes(self, name: str, atime: Timestamp, mtime: Timestamp) -> None:
        os.utime(self.real_path(name), (to_epoch(atime), to_epoch(mtime)))

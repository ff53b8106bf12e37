import errno
import io
from typing import Optional


class SftpConnectionError(ConnectionError):
    """Raised when an SFTP session cannot be established or its root resolved."""

    def __init__(self, source: object, message: Optional[str] = None):
        self.source = source
        super().__init__(message or f"could not connect to SFTP host: {source}")


class UnsupportedAuthMethod(SftpConnectionError):
    def __init__(self, method: str):
        self.method = method
        super().__init__(
            ValueError(f"unsupported auth method '{method}'"),
            f"could not connect to SFTP host: unsupported auth method '{method}' "
            "(expected 'password' or 'publickey')",
        )


class UnsupportedOperation(io.UnsupportedOperation):
    """Raised for byte-level operations on a directory listing handle."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(errno.EISDIR, message)
        self.filename = path or None


class ConfigurationError(Exception):
    pass

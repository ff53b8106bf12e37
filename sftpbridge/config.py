import os
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from sftpbridge.errors import ConfigurationError

# ========= Static config =========
CONNECT_TIMEOUT = 10
KEEPALIVE_INTERVAL = 30
DEFAULT_PORT = 22

DEFAULT_AUTH_METHOD = "password"

DEFAULT_DIR_MODE = 0o755
DEFAULT_FILE_MODE = 0o644

DEFAULT_BACKEND = "sftp"

# ========= Access descriptors =========
@dataclass(frozen=True)
class AccessDescriptor:
    hostname: str = ""
    username: str = ""
    method: str = ""
    password: str = ""
    private_key: str = ""
    private_key_passphrase: str = ""
    host_key: str = ""
    base_path: str = ""

    # Set when the descriptor comes from an access list
    user: str = ""
    fs: str = DEFAULT_BACKEND
    params: Dict[str, str] = field(default_factory=dict, compare=False, repr=False)

    @staticmethod
    def from_params(params: Mapping[str, Any], user: str = "", fs: str = DEFAULT_BACKEND) -> "AccessDescriptor":
        par = {str(k): "" if v is None else str(v) for k, v in (params or {}).items()}
        return AccessDescriptor(
            hostname=par.get("hostname", ""),
            username=par.get("username", ""),
            method=par.get("method", ""),
            password=par.get("password", ""),
            private_key=par.get("privateKey", ""),
            private_key_passphrase=par.get("privateKeyPassphrase", ""),
            host_key=par.get("hostKey", ""),
            base_path=par.get("basePath", ""),
            user=user,
            fs=(fs or DEFAULT_BACKEND).lower(),
            params=par,
        )

    def auth_method(self) -> str:
        method = (self.method or "").strip().lower()
        return method or DEFAULT_AUTH_METHOD

    def describe(self) -> str:
        return f"{self.username or '?'}@{self.hostname or '?'}"

def load_accesses(filename: str) -> List[AccessDescriptor]:
    try:
        with open(filename, "r", encoding="utf-8") as handle:
            document = json.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"no config file at {filename}") from exc
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"failed to read config file {filename}: {exc}") from exc

    if not isinstance(document, dict) or not isinstance(document.get("accesses"), list):
        raise ConfigurationError(f"config file {filename} has no 'accesses' list")

    accesses = []
    for idx, entry in enumerate(document["accesses"]):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"access at index {idx} must be an object")
        params = entry.get("params") or {}
        if not isinstance(params, dict):
            raise ConfigurationError(f"access at index {idx} has non-object params")
        accesses.append(AccessDescriptor.from_params(
            params,
            user=str(entry.get("user", "") or ""),
            fs=str(entry.get("fs", "") or DEFAULT_BACKEND),
        ))
    return accesses

def find_access(accesses: List[AccessDescriptor], user: Optional[str]) -> AccessDescriptor:
    if not accesses:
        raise ConfigurationError("no access configured")
    if not user:
        return accesses[0]
    for access in accesses:
        if access.user == user:
            return access
    raise ConfigurationError(f"no access configured for user '{user}'")

def load_fs(access: AccessDescriptor, server_config: Optional["ServerConfig"] = None):
    if access.fs == "sftp":
        from sftpbridge.ssh import connect
        return connect(access, server_config)
    if access.fs == "os":
        from sftpbridge.localfs import OsFs
        return OsFs(access.base_path or os.getcwd())
    raise ConfigurationError(f"unknown fs backend '{access.fs}'")

# ========= Runtime Configuration =========
class ServerConfig:
    def __init__(self):
        self.CONNECT_TIMEOUT: float = CONNECT_TIMEOUT
        self.KEEPALIVE_INTERVAL: int = KEEPALIVE_INTERVAL
        self.EVENT_LOG: Optional[str] = None

        # Direct connection parameters used by the CLI when no access list is given
        self.SFTP_HOST: Optional[str] = None
        self.SFTP_USER: Optional[str] = None
        self.SFTP_PASSWORD: Optional[str] = None
        self.SFTP_KEY_PATH: Optional[str] = None
        self.SFTP_KEY_PASSPHRASE: Optional[str] = None
        self.SFTP_HOST_KEY: Optional[str] = None
        self.SFTP_BASE_PATH: Optional[str] = None

    def load_from_env(self):
        self.SFTP_HOST = os.environ.get("SFTP_HOST", self.SFTP_HOST)
        self.SFTP_USER = os.environ.get("SFTP_USER", self.SFTP_USER)
        self.SFTP_PASSWORD = os.environ.get("SFTP_PASSWORD", self.SFTP_PASSWORD)
        self.SFTP_KEY_PATH = os.environ.get("SFTP_KEY_PATH", self.SFTP_KEY_PATH)
        self.SFTP_KEY_PASSPHRASE = os.environ.get("SFTP_KEY_PASSPHRASE", self.SFTP_KEY_PASSPHRASE)
        self.SFTP_HOST_KEY = os.environ.get("SFTP_HOST_KEY", self.SFTP_HOST_KEY)
        self.SFTP_BASE_PATH = os.environ.get("SFTP_BASE_PATH", self.SFTP_BASE_PATH)
        self.EVENT_LOG = os.environ.get("SFTP_EVENT_LOG", self.EVENT_LOG)

        timeout_env = os.environ.get("SFTP_CONNECT_TIMEOUT")
        if timeout_env:
            try:
                self.CONNECT_TIMEOUT = float(timeout_env)
            except ValueError:
                raise ConfigurationError(f"SFTP_CONNECT_TIMEOUT must be a number, got '{timeout_env}'")

    def direct_access(self) -> AccessDescriptor:
        params = {
            "hostname": self.SFTP_HOST or "",
            "username": self.SFTP_USER or "",
            "password": self.SFTP_PASSWORD or "",
            "privateKey": self.SFTP_KEY_PATH or "",
            "privateKeyPassphrase": self.SFTP_KEY_PASSPHRASE or "",
            "hostKey": self.SFTP_HOST_KEY or "",
            "basePath": self.SFTP_BASE_PATH or "",
        }
        if self.SFTP_KEY_PATH and not self.SFTP_PASSWORD:
            params["method"] = "publickey"
        return AccessDescriptor.from_params(params)

# Global instance
config = ServerConfig()

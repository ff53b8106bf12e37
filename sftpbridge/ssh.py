import base64
import socket
import threading
from datetime import datetime
from typing import Any, Dict, Optional

import paramiko

from sftpbridge.config import AccessDescriptor, ServerConfig, config as default_config
from sftpbridge.errors import SftpConnectionError, UnsupportedAuthMethod
from sftpbridge.pathfs import RootPathFs
from sftpbridge.sftpfs import SftpFs
from sftpbridge.utils import iso_now, json_line, log_error, split_hostname


_KEY_ERRORS = (ValueError, TypeError, paramiko.SSHException, paramiko.UnknownKeyType)
_REMOTE_ERRORS = (OSError, EOFError, paramiko.SSHException)

def parse_public_key(text: str) -> paramiko.PKey:
    for line in text.splitlines():
        fields = line.strip().split()
        if not fields or fields[0].startswith("#"):
            continue
        # authorized_keys lines may carry options before the key type
        for idx in range(len(fields) - 1):
            try:
                blob = base64.b64decode(fields[idx + 1], validate=True)
                return paramiko.PKey.from_type_string(fields[idx], blob)
            except _KEY_ERRORS:
                continue
        raise ValueError(f"no public key found in line '{line.strip()[:40]}'")
    raise ValueError("no public key found")

def load_host_key(path: str) -> paramiko.PKey:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = handle.read()
    except OSError as exc:
        raise SftpConnectionError(exc, f"could not connect to SFTP host: unable to read host key: {exc}") from exc
    try:
        return parse_public_key(data)
    except _KEY_ERRORS as exc:
        raise SftpConnectionError(exc, f"could not connect to SFTP host: unable to parse host key: {exc}") from exc

def load_private_key(path: str, passphrase: str = "") -> paramiko.PKey:
    # PKey.from_path picks the key type; cryptography wants the passphrase as bytes
    password = passphrase.encode("utf-8") if passphrase else None
    what = "private key with passphrase" if password else "private key"
    try:
        return paramiko.PKey.from_path(path, password)
    except OSError as exc:
        raise SftpConnectionError(exc, f"could not connect to SFTP host: unable to read private key: {exc}") from exc
    except _KEY_ERRORS as exc:
        raise SftpConnectionError(exc, f"could not connect to SFTP host: unable to parse {what}: {exc}") from exc

def load_auth(access: AccessDescriptor) -> Dict[str, Any]:
    method = access.auth_method()
    if method == "publickey":
        return {"pkey": load_private_key(access.private_key, access.private_key_passphrase)}
    if method == "password":
        return {"password": access.password}
    raise UnsupportedAuthMethod(method)

def resolve_home_dir(client: paramiko.SFTPClient) -> str:
    try:
        cwd = client.getcwd()
    except _REMOTE_ERRORS:
        cwd = None
    if cwd:
        return cwd

    try:
        home = client.normalize(".")
    except _REMOTE_ERRORS as exc:
        raise SftpConnectionError(exc, f"could not connect to SFTP host: unable to determine home directory: {exc}") from exc
    if not home:
        raise SftpConnectionError(
            ValueError("empty path"),
            "could not connect to SFTP host: unable to determine home directory",
        )
    return home

def resolve_root_path(client: paramiko.SFTPClient, base_path: str, home: str) -> str:
    if not base_path:
        return home

    base_path = base_path.rstrip("/") or "/"
    try:
        client.stat(base_path)
        return base_path
    except _REMOTE_ERRORS:
        pass

    relative = base_path.strip("/")
    if not relative:
        return home
    return home.rstrip("/") + "/" + relative

class Session:
    def __init__(self, access: AccessDescriptor, event_log: Optional[str] = None):
        self.access = access
        self.event_log = event_log

        self.sock: Optional[socket.socket] = None
        self.transport: Optional[paramiko.Transport] = None
        self.client: Optional[paramiko.SFTPClient] = None

        self.home: Optional[str] = None
        self.root: Optional[str] = None

        self.created_at = datetime.now()
        self.closed = False
        self.lock = threading.RLock()

    def _log_session(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        data = {"ts": iso_now(), "event": event, "access": self.access.describe()}
        if payload:
            data.update(payload)
        json_line(self.event_log, data)

    def _fail(self, stage: str, exc: BaseException):
        self._log_session("connect_failed", {"stage": stage, "error": str(exc)})
        log_error(f"connect to {self.access.describe()} failed at {stage}: {exc}")
        self.close()
        if isinstance(exc, SftpConnectionError):
            raise exc
        raise SftpConnectionError(exc) from exc

    def connect(self, connect_timeout: float, keepalive_interval: int = 0) -> None:
        # Everything local is loaded before anything touches the network
        host_key = load_host_key(self.access.host_key) if self.access.host_key else None
        auth = load_auth(self.access)
        try:
            host, port = split_hostname(self.access.hostname)
        except ValueError as exc:
            raise SftpConnectionError(exc) from exc

        if host_key is None:
            log_error(f"no host key configured for {self.access.hostname}, accepting any server key")

        try:
            self.sock = socket.create_connection((host, port), timeout=connect_timeout)
            self.transport = paramiko.Transport(self.sock)
            self.transport.connect(hostkey=host_key, username=self.access.username, **auth)
            if keepalive_interval:
                self.transport.set_keepalive(keepalive_interval)
        except _REMOTE_ERRORS as exc:
            self._fail("handshake", exc)

        try:
            self.client = paramiko.SFTPClient.from_transport(self.transport)
            if self.client is None:
                raise paramiko.SSHException("unable to open SFTP channel")
        except _REMOTE_ERRORS as exc:
            self._fail("sftp_open", exc)

        try:
            self.home = resolve_home_dir(self.client)
            self.root = resolve_root_path(self.client, self.access.base_path, self.home)
        except SftpConnectionError as exc:
            self._fail("home_dir", exc)

        self._log_session("connected", {"host": host, "port": port, "home": self.home, "root": self.root})

    def filesystem(self) -> RootPathFs:
        return RootPathFs(SftpFs(self.client, self.lock), self.root, self.client, session=self)

    def is_alive(self) -> bool:
        if self.closed or not self.transport:
            return False
        return bool(self.transport.is_active())

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            if self.client:
                self.client.close()
        except Exception as exc:
            log_error(f"sftp close failed: {exc}")
        self.client = None

        try:
            if self.transport:
                self.transport.close()
            elif self.sock:
                self.sock.close()
        except Exception as exc:
            log_error(f"transport close failed: {exc}")
        self.transport = None
        self.sock = None
        self._log_session("closed")

    def info(self) -> Dict[str, Any]:
        return {
            "access": self.access.describe(),
            "alive": self.is_alive(),
            "home": self.home,
            "root": self.root,
            "created_at": self.created_at.isoformat(),
        }

def connect(access: AccessDescriptor, server_config: Optional[ServerConfig] = None) -> RootPathFs:
    cfg = server_config or default_config
    session = Session(access, event_log=cfg.EVENT_LOG)
    session.connect(cfg.CONNECT_TIMEOUT, cfg.KEEPALIVE_INTERVAL)
    return session.filesystem()

"""
Pytest configuration and shared fixtures.
"""

import errno
import stat
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from sftpbridge import ssh


def make_attrs(name: str, mode: int = stat.S_IFREG | 0o644, size: int = 0) -> paramiko.SFTPAttributes:
    attrs = paramiko.SFTPAttributes()
    attrs.filename = name
    attrs.st_mode = mode
    attrs.st_size = size
    attrs.st_uid = 1000
    attrs.st_gid = 1000
    attrs.st_mtime = 1700000000
    return attrs


def not_found(path: str = "") -> FileNotFoundError:
    return FileNotFoundError(errno.ENOENT, "No such file", path)


@pytest.fixture
def sftp_client():
    """SFTP client stand-in whose home directory is /home/alice."""
    client = MagicMock(spec=paramiko.SFTPClient)
    client.getcwd.return_value = None
    client.normalize.return_value = "/home/alice"
    return client


@pytest.fixture(scope="session")
def rsa_key():
    return paramiko.RSAKey.generate(2048)


@pytest.fixture
def key_files(tmp_path, rsa_key):
    """Private key (plain and encrypted) and public key files for rsa_key."""
    private_key = tmp_path / "id_rsa"
    rsa_key.write_private_key_file(str(private_key))

    encrypted_key = tmp_path / "id_rsa_encrypted"
    rsa_key.write_private_key_file(str(encrypted_key), password="hunter2")

    public_key = tmp_path / "host_key.pub"
    public_key.write_text(f"{rsa_key.get_name()} {rsa_key.get_base64()} sftp@example\n")

    return SimpleNamespace(private=str(private_key), encrypted=str(encrypted_key), public=str(public_key))


@pytest.fixture
def network(sftp_client):
    """Replace the socket, the SSH transport and the SFTP channel with mocks."""
    with patch.object(ssh.socket, "create_connection") as create_connection, \
            patch.object(ssh.paramiko, "Transport") as transport_cls, \
            patch.object(ssh.paramiko.SFTPClient, "from_transport") as from_transport:
        from_transport.return_value = sftp_client
        yield SimpleNamespace(
            create_connection=create_connection,
            transport_cls=transport_cls,
            transport=transport_cls.return_value,
            from_transport=from_transport,
            client=sftp_client,
        )


@pytest.fixture
def clean_env(monkeypatch):
    """Drop every SFTP_* variable the runtime config reads."""
    for name in ("SFTP_HOST", "SFTP_USER", "SFTP_PASSWORD", "SFTP_KEY_PATH", "SFTP_KEY_PASSPHRASE",
                 "SFTP_HOST_KEY", "SFTP_BASE_PATH", "SFTP_EVENT_LOG", "SFTP_CONNECT_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch

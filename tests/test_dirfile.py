"""
Tests for the directory listing handle used when a directory cannot be opened.
"""

import errno
import io
import stat
from unittest.mock import MagicMock

import pytest

from sftpbridge.errors import UnsupportedOperation
from sftpbridge.pathfs import SftpDirFile
from conftest import make_attrs, not_found

NAMES = ["b.txt", "a.txt", "sub", "zz", "c.bin", "d"]


@pytest.fixture
def listing_client(sftp_client):
    sftp_client.listdir_attr.side_effect = lambda path: [
        make_attrs(name, stat.S_IFDIR | 0o755 if name == "sub" else stat.S_IFREG | 0o644)
        for name in NAMES
    ]
    return sftp_client


def drain(handle, count):
    collected = []
    while True:
        batch = handle.readdir(count)
        if not batch:
            return collected
        assert len(batch) <= count
        collected.extend(batch)


class TestListing:
    def test_unbounded_returns_everything_in_server_order(self, listing_client):
        handle = SftpDirFile(listing_client, "/home/alice")
        assert [e.filename for e in handle.readdir(0)] == NAMES
        listing_client.listdir_attr.assert_called_once_with("/home/alice")

    def test_negative_count_returns_remaining_tail(self, listing_client):
        handle = SftpDirFile(listing_client, "/home/alice")
        handle.readdir(2)
        assert [e.filename for e in handle.readdir(-1)] == NAMES[2:]

    @pytest.mark.parametrize("count", [1, 2, 4, 6, 100])
    def test_bounded_listing_concatenates_to_unbounded(self, listing_client, count):
        bounded = drain(SftpDirFile(listing_client, "/d"), count)
        unbounded = SftpDirFile(listing_client, "/d").readdir(0)

        assert [e.filename for e in bounded] == [e.filename for e in unbounded]

    def test_listing_is_fetched_once(self, listing_client):
        handle = SftpDirFile(listing_client, "/d")
        drain(handle, 1)
        handle.readdir(0)
        assert listing_client.listdir_attr.call_count == 1

    def test_exhausted_listing_keeps_returning_empty(self, listing_client):
        handle = SftpDirFile(listing_client, "/d")
        handle.readdir(0)

        for count in (0, 1, 10, -1):
            assert handle.readdir(count) == []
            assert handle.readdirnames(count) == []

    def test_empty_directory(self, sftp_client):
        sftp_client.listdir_attr.return_value = []
        handle = SftpDirFile(sftp_client, "/empty")
        assert handle.readdir(5) == []
        assert handle.readdir(0) == []

    def test_names_and_entries_share_a_cursor(self, listing_client):
        handle = SftpDirFile(listing_client, "/d")

        assert handle.readdirnames(2) == NAMES[:2]
        assert [e.filename for e in handle.readdir(1)] == NAMES[2:3]
        assert handle.readdirnames(0) == NAMES[3:]

    def test_listing_error_is_raised_every_time(self, sftp_client):
        sftp_client.listdir_attr.side_effect = not_found("/gone")
        handle = SftpDirFile(sftp_client, "/gone")

        with pytest.raises(FileNotFoundError):
            handle.readdir(0)
        with pytest.raises(FileNotFoundError):
            handle.readdirnames(1)

    def test_listing_uses_lock(self, listing_client):
        lock = MagicMock()
        SftpDirFile(listing_client, "/d", lock).readdir(0)
        lock.__enter__.assert_called_once_with()


class TestWriteProtection:
    @pytest.mark.parametrize("call", [
        lambda h: h.read(),
        lambda h: h.read(10),
        lambda h: h.read_at(10, 0),
        lambda h: h.seek(0),
        lambda h: h.write(b"data"),
        lambda h: h.write_at(b"data", 4),
        lambda h: h.write_string("data"),
        lambda h: h.truncate(0),
    ])
    def test_byte_operations_are_rejected(self, listing_client, call):
        handle = SftpDirFile(listing_client, "/d")
        handle.readdir(2)

        with pytest.raises(UnsupportedOperation) as excinfo:
            call(handle)

        assert excinfo.value.errno == errno.EISDIR
        assert isinstance(excinfo.value, io.UnsupportedOperation)
        # cursor and cache untouched
        assert handle.readdirnames(0) == NAMES[2:]
        assert listing_client.listdir_attr.call_count == 1

    def test_rejection_does_not_fetch_listing(self, sftp_client):
        handle = SftpDirFile(sftp_client, "/d")
        with pytest.raises(UnsupportedOperation, match="cannot write to directory"):
            handle.write(b"x")
        sftp_client.listdir_attr.assert_not_called()
        sftp_client.open.assert_not_called()


class TestMisc:
    def test_name_is_bound_path(self, sftp_client):
        assert SftpDirFile(sftp_client, "./pub").name() == "./pub"

    def test_close_and_sync_are_noops(self, sftp_client):
        handle = SftpDirFile(sftp_client, "/d")
        handle.sync()
        handle.close()
        handle.close()
        assert sftp_client.method_calls == []

    def test_stat_queries_bound_path(self, sftp_client):
        sftp_client.stat.return_value = make_attrs("d", stat.S_IFDIR | 0o755)
        attrs = SftpDirFile(sftp_client, "/home/alice/d").stat()

        sftp_client.stat.assert_called_once_with("/home/alice/d")
        assert stat.S_ISDIR(attrs.st_mode)

    def test_context_manager(self, sftp_client):
        with SftpDirFile(sftp_client, "/d") as handle:
            assert handle.name() == "/d"

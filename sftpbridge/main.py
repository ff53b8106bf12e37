import os
import sys
import json
import stat
import argparse
from typing import Any, Dict, List, Optional

import paramiko

from sftpbridge.config import (
    DEFAULT_DIR_MODE, DEFAULT_FILE_MODE, ServerConfig, config, find_access, load_accesses, load_fs
)
from sftpbridge.errors import ConfigurationError
from sftpbridge.fs import FileSystem, entry_name
from sftpbridge.utils import log_error

CHUNK_SIZE = 32768
ACTIONS = ("ls", "stat", "mkdir", "rm", "mv", "get", "put")
ARITY = {"ls": (0, 1), "stat": (1, 1), "mkdir": (1, 1), "rm": (1, 1), "mv": (2, 2), "get": (2, 2), "put": (2, 2)}


def _write_response(response: Dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(response, ensure_ascii=False, default=str) + "\n")
    sys.stdout.flush()


def describe_attrs(attrs: Any, name: Optional[str] = None) -> Dict[str, Any]:
    mode = getattr(attrs, "st_mode", None) or 0
    return {
        "name": name if name is not None else entry_name(attrs),
        "size": getattr(attrs, "st_size", None),
        "is_dir": stat.S_ISDIR(mode),
        "mode": oct(stat.S_IMODE(mode)),
        "mtime": getattr(attrs, "st_mtime", None),
        "uid": getattr(attrs, "st_uid", None),
        "gid": getattr(attrs, "st_gid", None),
    }


def run_action(fs: FileSystem, action: str, paths: List[str], recursive: bool = False) -> Dict[str, Any]:
    if action == "ls":
        target = paths[0] if paths else "/"
        with fs.open(target) as handle:
            entries = handle.readdir(0)
        files = []
        for entry in entries:
            # os.DirEntry carries its stat behind a call
            attrs = entry.stat() if callable(getattr(entry, "stat", None)) else entry
            files.append(describe_attrs(attrs, entry_name(entry)))
        return {"success": True, "action": "ls", "path": target, "files": files}

    if action == "stat":
        return {"success": True, "action": "stat", "path": paths[0], "stat": describe_attrs(fs.stat(paths[0]), paths[0])}

    if action == "mkdir":
        if recursive:
            fs.mkdir_all(paths[0], DEFAULT_DIR_MODE)
        else:
            fs.mkdir(paths[0], DEFAULT_DIR_MODE)
        return {"success": True, "action": "mkdir", "path": paths[0]}

    if action == "rm":
        if recursive:
            fs.remove_all(paths[0])
        else:
            fs.remove(paths[0])
        return {"success": True, "action": "rm", "path": paths[0]}

    if action == "mv":
        fs.rename(paths[0], paths[1])
        return {"success": True, "action": "mv", "path": paths[0], "target": paths[1]}

    if action == "get":
        size = 0
        with fs.open(paths[0]) as handle, open(paths[1], "wb") as local:
            while True:
                chunk = handle.read(CHUNK_SIZE)
                if not chunk:
                    break
                local.write(chunk)
                size += len(chunk)
        return {"success": True, "action": "get", "path": paths[0], "local_path": paths[1], "size": size}

    if action == "put":
        size = 0
        flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC
        with open(paths[0], "rb") as local, fs.open_file(paths[1], flags, DEFAULT_FILE_MODE) as handle:
            while True:
                chunk = local.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += handle.write(chunk)
        return {"success": True, "action": "put", "path": paths[1], "local_path": paths[0], "size": size}

    raise ValueError(f"unknown action '{action}'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sftpbridge",
        description="Browse an SFTP server through the same \"/\"-rooted view an FTP server gets",
    )
    parser.add_argument("action", choices=ACTIONS, help="Operation to run")
    parser.add_argument("paths", nargs="*", help="Client paths (\"/\" is the access root); local path for get/put")
    parser.add_argument("--conf", help="Access list file (JSON with an 'accesses' array)")
    parser.add_argument("--access-user", help="Pick the access of this FTP user from --conf (default: first)")
    parser.add_argument("--host", help="SFTP host[:port] (overrides SFTP_HOST env)")
    parser.add_argument("--username", help="SFTP username (overrides SFTP_USER env)")
    parser.add_argument("--password", help="SFTP password (overrides SFTP_PASSWORD env)")
    parser.add_argument("--key", help="Path to private key (overrides SFTP_KEY_PATH env)")
    parser.add_argument("--passphrase", help="Private key passphrase (overrides SFTP_KEY_PASSPHRASE env)")
    parser.add_argument("--host-key", help="Public host key to pin (overrides SFTP_HOST_KEY env)")
    parser.add_argument("--base-path", help="Remote root directory (overrides SFTP_BASE_PATH env)")
    parser.add_argument("--event-log", help="Append connection events as JSON lines to this file")
    parser.add_argument("-r", "--recursive", action="store_true", help="mkdir -p / rm -r")
    return parser


def main(argv: Optional[List[str]] = None, server_config: Optional[ServerConfig] = None) -> int:
    cfg = server_config or config

    parser = build_parser()
    args = parser.parse_args(argv)

    # Pre-load from environment, then apply args over env vars
    try:
        cfg.load_from_env()
    except ConfigurationError as exc:
        parser.error(str(exc))

    if args.host: cfg.SFTP_HOST = args.host
    if args.username: cfg.SFTP_USER = args.username
    if args.password: cfg.SFTP_PASSWORD = args.password
    if args.key: cfg.SFTP_KEY_PATH = args.key
    if args.passphrase: cfg.SFTP_KEY_PASSPHRASE = args.passphrase
    if args.host_key: cfg.SFTP_HOST_KEY = args.host_key
    if args.base_path: cfg.SFTP_BASE_PATH = args.base_path
    if args.event_log: cfg.EVENT_LOG = args.event_log

    low, high = ARITY[args.action]
    if not low <= len(args.paths) <= high:
        parser.error(f"{args.action} takes {low if low == high else f'{low} to {high}'} path argument(s)")

    if args.conf:
        try:
            access = find_access(load_accesses(args.conf), args.access_user)
        except ConfigurationError as exc:
            log_error(str(exc))
            return 1
    else:
        if not cfg.SFTP_HOST:
            parser.error("SFTP host is required (via --host, SFTP_HOST env or --conf)")
        if not cfg.SFTP_USER:
            parser.error("SFTP username is required (via --username or SFTP_USER env)")
        access = cfg.direct_access()

    try:
        fs = load_fs(access, cfg)
    except (ConnectionError, ConfigurationError) as exc:
        log_error(str(exc))
        return 1

    try:
        response = run_action(fs, args.action, args.paths, recursive=args.recursive)
        session = getattr(fs, "session", None)
        if session is not None:
            response["session"] = session.info()
        _write_response(response)
    except (OSError, ValueError, paramiko.SSHException) as exc:
        log_error(f"{args.action} failed: {exc}")
        _write_response({"success": False, "action": args.action, "error": str(exc)})
        return 1
    finally:
        fs.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())

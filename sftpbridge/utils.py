import sys
import json
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sftpbridge.config import DEFAULT_PORT

def log_error(message: str) -> None:
    print(f"[sftpbridge] {message}", file=sys.stderr, flush=True)

def iso_now() -> str:
    return datetime.now().isoformat(timespec="milliseconds")

def json_line(path: Optional[str], payload: Dict[str, Any]) -> None:
    if not path:
        return
    try:
        with open(path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
    except Exception as exc:
        log_error(f"log write failed ({path}): {exc}")

def split_hostname(hostname: str) -> Tuple[str, int]:
    hostname = (hostname or "").strip()
    if not hostname:
        raise ValueError("hostname is empty")

    # [::1]:2222
    if hostname.startswith("["):
        end = hostname.find("]")
        if end < 0:
            raise ValueError(f"invalid hostname '{hostname}'")
        host = hostname[1:end]
        rest = hostname[end + 1:]
        if not rest:
            return host, DEFAULT_PORT
        if not rest.startswith(":"):
            raise ValueError(f"invalid hostname '{hostname}'")
        return host, _parse_port(rest[1:], hostname)

    # A bare IPv6 address has more than one colon
    if hostname.count(":") != 1:
        return hostname, DEFAULT_PORT

    host, port = hostname.rsplit(":", 1)
    return host, _parse_port(port, hostname)

def _parse_port(port: str, hostname: str) -> int:
    try:
        value = int(port)
    except ValueError:
        raise ValueError(f"invalid port in hostname '{hostname}'")
    if value < 1 or value > 65535:
        raise ValueError(f"port out of range in hostname '{hostname}'")
    return value

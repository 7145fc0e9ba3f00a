"""MySQL Scanner - Reads what the current my.cnf says about the server."""

import re
from dataclasses import dataclass

from server_optimizer.connector.base import Connector

MY_CNF = "/etc/my.cnf"

_BUFFER_POOL_RE = re.compile(
    r"^\s*innodb[_-]buffer[_-]pool[_-]size\s*=\s*(\d+)\s*([KMGkmg])?", re.MULTILINE
)
_SERVER_TYPE_RE = re.compile(r"^#\s*Server Type:\s*([A-Za-z]+\d+)", re.MULTILINE)


@dataclass
class MySQLScanResult:
    """Raw facts from my.cnf and systemd."""

    config_present: bool
    buffer_pool_mb: int = 0
    server_type: str | None = None
    service: str | None = None  # mysqld or mariadb


def parse_buffer_pool_mb(content: str) -> int:
    """innodb_buffer_pool_size in MB; plain numbers are bytes."""
    match = _BUFFER_POOL_RE.search(content)
    if not match:
        return 0
    value = int(match.group(1))
    unit = (match.group(2) or "").upper()
    if unit == "G":
        return value * 1024
    if unit == "M":
        return value
    if unit == "K":
        return value // 1024
    return value // (1024 * 1024)


def parse_server_type(content: str) -> str | None:
    """Server class recorded in the ``# Server Type:`` header, if any."""
    match = _SERVER_TYPE_RE.search(content)
    return match.group(1).upper() if match else None


class MySQLScanner:
    """Scanner for the MySQL/MariaDB configuration and service."""

    def __init__(self, connector: Connector, config_path: str = MY_CNF) -> None:
        self.connector = connector
        self.config_path = config_path

    def scan(self) -> MySQLScanResult:
        content = self.connector.read_file(self.config_path)
        if content is None:
            return MySQLScanResult(config_present=False, service=self.detect_service())
        return MySQLScanResult(
            config_present=True,
            buffer_pool_mb=parse_buffer_pool_mb(content),
            server_type=parse_server_type(content),
            service=self.detect_service(),
        )

    def detect_service(self) -> str | None:
        for service in ("mysqld", "mariadb"):
            if self.connector.run(f"systemctl is-enabled --quiet {service}").success:
                return service
        return None

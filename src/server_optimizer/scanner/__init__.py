"""Scanner package - Reads facts from the server without changing it."""

from server_optimizer.scanner.mysql import MySQLScanner, MySQLScanResult
from server_optimizer.scanner.network import server_ipv4_addresses
from server_optimizer.scanner.php import PHPMemoryProfile, PHPMemoryScanner
from server_optimizer.scanner.resources import ResourceScanner

__all__ = [
    "MySQLScanResult",
    "MySQLScanner",
    "PHPMemoryProfile",
    "PHPMemoryScanner",
    "ResourceScanner",
    "server_ipv4_addresses",
]

"""Resource Scanner - Measures CPU, RAM, disk and swap on the host.

This scanner only collects numbers. Picking a server class from them is
the resolver's job.
"""

import logging

from server_optimizer.connector.base import Connector
from server_optimizer.errors import ResourceDetectionError
from server_optimizer.model.server import ResourceFacts

logger = logging.getLogger(__name__)


class ResourceScanner:
    """Reads host facts with ``nproc``, ``free`` and ``df``."""

    def __init__(self, connector: Connector) -> None:
        self.connector = connector

    def scan(self) -> ResourceFacts:
        """Capture a ResourceFacts snapshot.

        Raises:
            ResourceDetectionError: CPU count or total RAM is unreadable.
        """
        cpu_cores = self._cpu_cores()
        total_ram_mb = self._free_column("Mem:", "-m")
        if total_ram_mb is None or total_ram_mb <= 0:
            raise ResourceDetectionError("Unable to read total RAM from 'free -m'")

        total_disk_gb, available_disk_gb = self._root_disk_gb()
        facts = ResourceFacts(
            cpu_cores=cpu_cores,
            total_ram_mb=total_ram_mb,
            total_disk_gb=total_disk_gb,
            available_disk_gb=available_disk_gb,
        )
        logger.info(
            "Detected %s CPU cores, %sMB RAM, %sGB disk (%sGB available)",
            facts.cpu_cores, facts.total_ram_mb, facts.total_disk_gb, facts.available_disk_gb,
        )
        return facts

    def current_swap_mb(self) -> int:
        """Total configured swap in MB (0 when none or unreadable)."""
        return self._free_column("Swap:", "-m") or 0

    def _cpu_cores(self) -> int:
        result = self.connector.run("nproc")
        try:
            cores = int(result.stdout.strip()) if result.success else 0
        except ValueError:
            cores = 0
        if cores <= 0:
            raise ResourceDetectionError(f"Unable to read CPU core count: {result.stderr.strip() or result.stdout.strip()}")
        return cores

    def _free_column(self, row: str, unit_flag: str) -> int | None:
        result = self.connector.run(f"free {unit_flag}")
        if not result.success:
            return None
        for line in result.stdout.splitlines():
            parts = line.split()
            if parts and parts[0] == row and len(parts) > 1:
                try:
                    return int(parts[1])
                except ValueError:
                    return None
        return None

    def _root_disk_gb(self) -> tuple[int, int]:
        result = self.connector.run("df -BG /")
        lines = result.stdout.strip().splitlines() if result.success else []
        if len(lines) < 2:
            logger.warning("Unable to read disk usage for /; treating disk as 0GB")
            return 0, 0
        parts = lines[1].split()
        try:
            return int(parts[1].rstrip("G")), int(parts[3].rstrip("G"))
        except (IndexError, ValueError):
            logger.warning("Unexpected 'df' output: %s", lines[1])
            return 0, 0

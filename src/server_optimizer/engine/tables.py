"""Parameter tables - Hand-tuned per-class constants.

Nothing here is computed. Memory figures are stored in MB; any KB
rendering is derived later by the validator.
"""

from typing import Any

from server_optimizer.errors import NotFoundError
from server_optimizer.model.server import ParameterSet, ServerClass

S = ServerClass

APACHE_FIELDS = (
    "maxclients", "maxkeepaliverequests", "maxrequestsperchild", "serverlimit",
    "rlimit_cpu_soft", "rlimit_cpu_hard", "rlimit_mem_soft_mb", "rlimit_mem_hard_mb",
)
APACHE_COMMON = {"keepalive": "On", "timeout": 60}

APACHE: dict[ServerClass, tuple[int, ...]] = {
    S.VPS1: (25, 10, 200, 30, 120, 180, 1536, 1843),
    S.VPS2: (50, 50, 400, 60, 180, 240, 3072, 3686),
    S.VPS3: (75, 100, 800, 90, 240, 300, 6144, 7372),
    S.VPS4: (100, 150, 1600, 120, 300, 360, 12288, 14745),
    S.VPS5: (150, 200, 3200, 180, 360, 420, 24576, 29491),
    S.VPS6: (200, 250, 6400, 240, 420, 480, 49152, 58982),
    S.VPS7: (250, 300, 9600, 300, 480, 540, 73728, 88474),
    S.VPS8: (300, 350, 12800, 360, 540, 600, 98304, 117965),
    S.DSCPU1: (50, 100, 2000, 60, 240, 360, 3072, 3686),
    S.DSCPU2: (100, 150, 4000, 120, 300, 420, 6144, 7372),
    S.DSCPU3: (200, 200, 8000, 240, 360, 480, 12288, 14745),
    S.DSCPU4: (400, 250, 16000, 480, 420, 540, 24576, 29491),
    S.DSCPU5: (800, 300, 32000, 960, 480, 600, 49152, 58982),
    S.DSCPU6: (1200, 350, 48000, 1440, 540, 660, 73728, 88474),
    S.DSCPU7: (1500, 400, 50000, 1800, 600, 720, 98304, 117965),
    S.DSCPU8: (2000, 450, 56000, 2400, 660, 780, 196608, 235929),
    S.DSCPU9: (2500, 500, 64000, 3000, 720, 840, 393216, 471859),
}

LSAPI_FIELDS = (
    "children", "max_process_mem", "max_idle", "max_reqs", "initial_start",
    "backend_respawn", "max_crashes", "pgrp_max_crashes", "connect_tries",
)
LSAPI_COMMON = {"max_process_time": 300, "poll_timeout": 5000, "connect_timeout": 500}

LSAPI: dict[ServerClass, tuple[int, ...]] = {
    S.VPS1: (35, 48, 180, 2000, 12, 12, 10, 20, 15),
    S.VPS2: (35, 85, 180, 4000, 12, 12, 12, 25, 20),
    S.VPS3: (70, 96, 240, 8000, 20, 20, 15, 30, 25),
    S.VPS4: (90, 128, 300, 16000, 25, 25, 20, 40, 30),
    S.VPS5: (120, 192, 360, 32000, 30, 30, 25, 50, 35),
    S.VPS6: (160, 256, 420, 64000, 40, 40, 30, 60, 40),
    S.VPS7: (200, 384, 480, 100000, 50, 50, 35, 70, 45),
    S.VPS8: (200, 384, 480, 100000, 50, 50, 35, 70, 45),
}

# Nominal resources the sysctl/limits formulas are sized from.
# VPS8 and DSCPU6+ have no row: the system module refuses them.
SYSTEM_FIELDS = ("ram_gb", "cpus")
SYSTEM: dict[ServerClass, tuple[int, ...]] = {
    S.VPS1: (2, 1),
    S.VPS2: (4, 2),
    S.VPS3: (8, 4),
    S.VPS4: (16, 6),
    S.VPS5: (32, 8),
    S.VPS6: (64, 16),
    S.VPS7: (96, 20),
    S.DSCPU1: (4, 2),
    S.DSCPU2: (8, 4),
    S.DSCPU3: (16, 8),
    S.DSCPU4: (32, 16),
    S.DSCPU5: (64, 32),
}

# Fallback my.cnf sizing when no template file is shipped for the class.
MYSQL_FIELDS = (
    "innodb_buffer_pool_mb", "max_connections", "tmp_table_mb",
    "table_open_cache", "thread_cache_size", "key_buffer_mb",
)
MYSQL_COMMON = {"max_allowed_packet_mb": 256, "wait_timeout": 300, "interactive_timeout": 300}

MYSQL: dict[ServerClass, tuple[int, ...]] = {
    S.VPS1: (512, 100, 32, 2000, 16, 16),
    S.VPS2: (1024, 150, 64, 4000, 32, 32),
    S.VPS3: (3072, 200, 64, 6000, 50, 32),
    S.VPS4: (8192, 300, 128, 8000, 64, 64),
    S.VPS5: (16384, 500, 256, 12000, 100, 64),
    S.DSCPU1: (1536, 200, 64, 4000, 32, 32),
    S.DSCPU2: (4096, 300, 128, 8000, 64, 32),
    S.DSCPU3: (9216, 500, 128, 12000, 100, 64),
    S.DSCPU4: (20480, 800, 256, 16000, 150, 64),
    S.DSCPU5: (40960, 1200, 512, 24000, 200, 128),
}

_TABLES: dict[str, tuple[tuple[str, ...], dict[str, Any], dict[ServerClass, tuple[int, ...]]]] = {
    "apache": (APACHE_FIELDS, APACHE_COMMON, APACHE),
    "lsapi": (LSAPI_FIELDS, LSAPI_COMMON, LSAPI),
    "system": (SYSTEM_FIELDS, {}, SYSTEM),
    "mysql": (MYSQL_FIELDS, MYSQL_COMMON, MYSQL),
}


def subsystems() -> list[str]:
    return sorted(_TABLES)


def supported_classes(subsystem: str) -> list[ServerClass]:
    _, _, rows = _TABLES[subsystem]
    return list(rows)


def lookup(subsystem: str, server_class: ServerClass) -> ParameterSet:
    """Fetch the constant row for (subsystem, server_class).

    Raises:
        NotFoundError: No row exists. Callers fail the module; there is
            no fallback row.
    """
    try:
        fields, common, rows = _TABLES[subsystem]
    except KeyError:
        raise NotFoundError(subsystem, str(server_class)) from None
    row = rows.get(server_class)
    if row is None:
        raise NotFoundError(subsystem, str(server_class))
    values: dict[str, Any] = dict(zip(fields, row))
    values.update(common)
    return ParameterSet(subsystem=subsystem, server_class=server_class, values=values)

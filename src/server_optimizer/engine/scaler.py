"""Dynamic Scaler - Formula-based sizing.

Each formula is a plain function of its inputs so it can be tested on
its own; ``scale()`` wires them to ResourceFacts and a ServerClass and
returns a ParameterSet.
"""

import logging
from typing import Any

from server_optimizer.engine import tables
from server_optimizer.errors import InsufficientDiskSpaceError, NotFoundError, ValidationError
from server_optimizer.model.server import ParameterSet, ResourceFacts, ServerClass, ServerTier

logger = logging.getLogger(__name__)

# Redis
REDIS_MIN_MB = 256
REDIS_MAX_MB = 16384
REDIS_PERCENT_BY_CATEGORY = {1: 15, 2: 20, 3: 25, 4: 30}
REDIS_PERCENT_LARGE = 35

# Swap
SWAP_MIN_FREE_GB = 20
SWAP_DISK_SHARE_PERCENT = 25
SWAP_LARGE_RAM_GB = 32

# Conntrack
CONNTRACK_LIMITS = {
    ServerTier.VPS: (32768, 262144),
    ServerTier.DEDICATED: (65536, 524288),
}
CONNTRACK_GLOBAL_MAX = 524288

# LSAPI
LSAPI_RAM_BUDGET_PERCENT = 85
LSAPI_MEMORY_FLOOR_MB = 64
LSAPI_SHRINK_PERCENT = 90
LSAPI_MIN_CHILDREN = 20
LSAPI_MIN_DEPENDENTS = 5
LSAPI_REQS_PER_CHILD = 1000
LSAPI_CHILDREN_PER_CORE = 15
LSAPI_DEDICATED_START_MEM_MB = 128

# System
SOMAXCONN_MAX = 65535
NOFILE_LIMIT = 999999
MIN_FREE_KB_CAP = {ServerTier.VPS: 262144, ServerTier.DEDICATED: 524288}


def redis_memory_mb(total_ram_mb: int, other_service_mb: int, size_category: int) -> int:
    """Share of the RAM left after sibling services, clamped to [256, 16384]."""
    available = max(0, total_ram_mb - other_service_mb)
    percent = REDIS_PERCENT_BY_CATEGORY.get(size_category, REDIS_PERCENT_LARGE)
    return min(REDIS_MAX_MB, max(REDIS_MIN_MB, available * percent // 100))


def swap_ram_target_gb(ram_gb: int) -> int:
    # Hosts with less than 1GB are sized as 1GB.
    ram_gb = max(1, ram_gb)
    if ram_gb <= 2:
        return ram_gb * 2
    if ram_gb <= 8:
        return ram_gb
    if ram_gb <= 64:
        return ram_gb // 2
    return SWAP_LARGE_RAM_GB


def swap_size_gb(ram_gb: int, total_disk_gb: int, available_disk_gb: int) -> int:
    """Swap size: the RAM rule, capped by a quarter of the spare disk.

    Raises:
        InsufficientDiskSpaceError: Nothing is left once the reserved
            free space is taken out.
    """
    min_free = max(SWAP_MIN_FREE_GB, total_disk_gb * 10 // 100)
    disk_ceiling = (available_disk_gb - min_free) * SWAP_DISK_SHARE_PERCENT // 100
    if disk_ceiling <= 0:
        raise InsufficientDiskSpaceError(total_disk_gb, available_disk_gb, min_free)
    return min(swap_ram_target_gb(ram_gb), disk_ceiling)


def conntrack_max(ram_gb: int, cpu_cores: int, tier: ServerTier) -> int:
    """nf_conntrack_max: tier-bounded, rounded up to a power of two."""
    floor, cap = CONNTRACK_LIMITS[tier]
    value = min(ram_gb * 1024 * cpu_cores, cap, CONNTRACK_GLOBAL_MAX)
    value = max(value, floor)
    power = 1
    while power < value:
        power *= 2
    return power


def lsapi_budget_mb(total_ram_mb: int) -> int:
    return total_ram_mb * LSAPI_RAM_BUDGET_PERCENT // 100


def lsapi_dependents(children: int) -> dict[str, int]:
    """Fields that follow the child count."""
    share = min(children, max(LSAPI_MIN_DEPENDENTS, children // 4))
    return {
        "initial_start": share,
        "backend_respawn": share,
        "max_reqs": children * LSAPI_REQS_PER_CHILD,
    }


def lsapi_dedicated_start(cpu_cores: int, total_ram_mb: int) -> dict[str, int]:
    """Starting pool for dedicated servers, derived from cores and RAM."""
    budget = lsapi_budget_mb(total_ram_mb)
    children = cpu_cores * LSAPI_CHILDREN_PER_CORE
    mem = LSAPI_DEDICATED_START_MEM_MB
    if children * mem > budget:
        mem = budget // children
        if mem < LSAPI_MEMORY_FLOOR_MB:
            mem = LSAPI_MEMORY_FLOOR_MB
            children = budget // mem
    max_crashes = 10 + cpu_cores // 2
    values = {
        "children": children,
        "max_process_mem": mem,
        "max_idle": (total_ram_mb // 1024) * 10 + 180,
        "max_reqs": children * LSAPI_REQS_PER_CHILD,
        "initial_start": children // 4,
        "backend_respawn": children // 4,
        "max_crashes": max_crashes,
        "pgrp_max_crashes": max_crashes * 2,
        "connect_tries": 20 + cpu_cores // 2,
    }
    values.update(tables.LSAPI_COMMON)
    return values


def lsapi_pool(start: dict[str, Any], total_ram_mb: int) -> dict[str, Any]:
    """Fit a starting pool into 85% of RAM.

    Per-child memory shrinks in 10% steps down to 64MB before the child
    count is touched. Dependent fields are recomputed from the final
    child count whenever the pool had to change.

    Raises:
        ValidationError: Not even one 64MB child fits in the budget.
    """
    values = dict(start)
    budget = lsapi_budget_mb(total_ram_mb)
    children = values["children"]
    mem = max(LSAPI_MEMORY_FLOOR_MB, values["max_process_mem"])
    adjusted = mem != values["max_process_mem"]

    if children * mem > budget:
        adjusted = True
        while children > budget // mem and mem > LSAPI_MEMORY_FLOOR_MB:
            mem = max(LSAPI_MEMORY_FLOOR_MB, mem * LSAPI_SHRINK_PERCENT // 100)
        max_possible = budget // mem
        if max_possible < 1:
            raise ValidationError(
                f"lsapi: {total_ram_mb}MB RAM cannot hold a single {LSAPI_MEMORY_FLOOR_MB}MB backend"
            )
        if children > max_possible:
            children = max_possible

    # The 20-child floor only applies where the budget has room for it.
    floor = min(LSAPI_MIN_CHILDREN, budget // mem)
    if children < floor:
        children = floor
        adjusted = True

    values["children"] = children
    values["max_process_mem"] = mem
    if adjusted:
        values.update(lsapi_dependents(children))
    else:
        for key in ("initial_start", "backend_respawn"):
            values[key] = min(children, max(LSAPI_MIN_DEPENDENTS, values[key]))
    return values


def system_params(ram_gb: int, cpus: int, tier: ServerTier) -> dict[str, Any]:
    """sysctl keys and values, in file order."""
    ram_kb = ram_gb * 1024 * 1024
    admin_reserve = ram_kb * 3 // 100 if ram_gb < 64 else ram_kb * 15 // 1000
    min_free = min(ram_kb * 15 // 1000, MIN_FREE_KB_CAP[tier])
    return {
        "vm.swappiness": 10 if ram_gb <= 4 else 0,
        "vm.overcommit_memory": 1,
        "vm.admin_reserve_kbytes": admin_reserve,
        "vm.min_free_kbytes": min_free,
        "vm.panic_on_oom": 0,
        "vm.dirty_ratio": 20,
        "vm.dirty_background_ratio": 3,
        "vm.vfs_cache_pressure": 70,
        "net.core.rmem_max": 16777216,
        "net.core.wmem_max": 16777216,
        "net.core.netdev_max_backlog": cpus * 32768,
        "net.core.somaxconn": cpus * 16384,
        "net.ipv4.tcp_rmem": "4096 87380 16777216",
        "net.ipv4.tcp_wmem": "4096 65536 16777216",
        "net.ipv4.tcp_congestion_control": "bbr",
        "net.core.default_qdisc": "fq",
        "net.ipv4.tcp_low_latency": 1,
        "net.ipv4.tcp_fin_timeout": 30,
        "fs.file-max": ram_kb // 2,
        "fs.nr_open": NOFILE_LIMIT,
        "fs.inotify.max_user_watches": 524288,
        "net.ipv4.tcp_max_syn_backlog": cpus * 65536,
        "net.ipv4.tcp_max_tw_buckets": cpus * 262144,
        "net.ipv4.tcp_tw_reuse": 1,
        "net.ipv4.tcp_window_scaling": 1,
        "net.ipv4.tcp_slow_start_after_idle": 0,
        "net.ipv4.tcp_mtu_probing": 1,
        "net.netfilter.nf_conntrack_max": conntrack_max(ram_gb, cpus, tier),
        "net.netfilter.nf_conntrack_tcp_timeout_established": 600,
        "net.netfilter.nf_conntrack_tcp_timeout_time_wait": 30,
        "net.netfilter.nf_conntrack_tcp_timeout_close": 10,
        "net.ipv4.tcp_max_orphans": ram_kb // 32768,
        "net.ipv4.tcp_syncookies": 1,
        "net.ipv4.tcp_timestamps": 1,
        "net.ipv4.tcp_sack": 1,
        "net.ipv4.tcp_dsack": 1,
        "net.ipv4.tcp_fastopen": 3,
        "net.core.optmem_max": 25165824,
    }


def limits_params(cpus: int) -> dict[str, int]:
    return {
        "nproc_soft": cpus * 4096,
        "nproc_hard": cpus * 8192,
        "root_nproc_soft": cpus * 2048,
        "root_nproc_hard": cpus * 4096,
        "nofile_soft": NOFILE_LIMIT,
        "nofile_hard": NOFILE_LIMIT,
    }


def scale(subsystem: str, facts: ResourceFacts, server_class: ServerClass, **inputs: Any) -> ParameterSet:
    """Compute a ParameterSet for a formula-driven subsystem.

    Inputs by subsystem:
        redis: ``other_service_mb`` (default 0)
        lsapi: ``memory_profile_mb`` (optional starting per-child memory)
        system, limits, conntrack: none; nominal RAM/CPU come from the
            system table row of the class

    Raises:
        NotFoundError: Unknown subsystem, or no table row backing it.
        InsufficientDiskSpaceError: swap cannot fit on the disk.
        ValidationError: lsapi cannot fit a single backend.
    """
    if subsystem == "redis":
        mb = redis_memory_mb(facts.total_ram_mb, inputs.get("other_service_mb", 0), server_class.size_category)
        values: dict[str, Any] = {"maxmemory_mb": mb, "maxmemory": f"{mb}mb"}
    elif subsystem == "swap":
        values = {"size_gb": swap_size_gb(facts.ram_gb, facts.total_disk_gb, facts.available_disk_gb)}
    elif subsystem == "lsapi":
        if server_class.tier is ServerTier.DEDICATED:
            start = lsapi_dedicated_start(facts.cpu_cores, facts.total_ram_mb)
        else:
            start = tables.lookup("lsapi", server_class).as_dict()
        profile_mb = inputs.get("memory_profile_mb")
        if profile_mb:
            start["max_process_mem"] = profile_mb
        values = lsapi_pool(start, facts.total_ram_mb)
    elif subsystem in ("system", "limits", "conntrack"):
        nominal = tables.lookup("system", server_class)
        if subsystem == "system":
            values = system_params(nominal["ram_gb"], nominal["cpus"], server_class.tier)
        elif subsystem == "limits":
            values = limits_params(nominal["cpus"])
        else:
            values = {"nf_conntrack_max": conntrack_max(nominal["ram_gb"], nominal["cpus"], server_class.tier)}
    else:
        raise NotFoundError(subsystem, str(server_class))

    logger.debug("Scaled %s for %s: %s", subsystem, server_class, values)
    return ParameterSet(subsystem=subsystem, server_class=server_class, values=values)

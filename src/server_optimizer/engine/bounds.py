"""Per-subsystem validation bounds.

Some limits depend on the host (Apache memory rlimits cannot exceed
physical RAM, the LSAPI pool must fit its RAM budget), so bounds are
built from ResourceFacts rather than kept as constants.
"""

from server_optimizer.engine import scaler
from server_optimizer.engine.validator import Bounds, Derivation, FieldBound, Invariant, SoftHardPair
from server_optimizer.errors import NotFoundError
from server_optimizer.model.server import ResourceFacts


def mb_to_kb(mb: int) -> int:
    return mb * 1024


def apache_bounds(facts: ResourceFacts) -> Bounds:
    ram_mb = facts.total_ram_mb
    return Bounds(
        fields=(
            FieldBound("maxclients", 1, 20000),
            FieldBound("serverlimit", 1, 20000),
            FieldBound("maxkeepaliverequests", 0, 10000),
            FieldBound("maxrequestsperchild", 0, 1000000),
            FieldBound("timeout", 5, 600),
            FieldBound("rlimit_cpu_soft", 30, 3600),
            FieldBound("rlimit_cpu_hard", 30, 3600),
            FieldBound("rlimit_mem_soft_mb", 128, ram_mb),
            FieldBound("rlimit_mem_hard_mb", 128, ram_mb),
        ),
        derived=(
            Derivation("rlimit_mem_soft", lambda v: mb_to_kb(v["rlimit_mem_soft_mb"])),
            Derivation("rlimit_mem_hard", lambda v: mb_to_kb(v["rlimit_mem_hard_mb"])),
        ),
        pairs=(
            SoftHardPair("maxclients", "serverlimit"),
            SoftHardPair("rlimit_cpu_soft", "rlimit_cpu_hard"),
            SoftHardPair("rlimit_mem_soft_mb", "rlimit_mem_hard_mb"),
        ),
        invariants=(
            Invariant("keepalive must be On or Off", lambda v: v.get("keepalive") in ("On", "Off")),
            Invariant(
                "memory rlimits must match their MB values",
                lambda v: v["rlimit_mem_hard"] == mb_to_kb(v["rlimit_mem_hard_mb"])
                and v["rlimit_mem_soft"] == mb_to_kb(v["rlimit_mem_soft_mb"]),
            ),
        ),
    )


def lsapi_bounds(facts: ResourceFacts) -> Bounds:
    budget = scaler.lsapi_budget_mb(facts.total_ram_mb)
    floor = scaler.LSAPI_MEMORY_FLOOR_MB
    dependents = scaler.lsapi_dependents
    return Bounds(
        fields=(
            FieldBound("max_process_mem", floor, max(floor, budget)),
            FieldBound("children", 1, max(1, budget // floor)),
            FieldBound("max_idle", 10, 3600),
            FieldBound("max_crashes", 1, 1000),
            FieldBound("pgrp_max_crashes", 1, 2000),
            FieldBound("connect_tries", 1, 1000),
        ),
        derived=(
            Derivation("initial_start", lambda v: dependents(v["children"])["initial_start"], ("children",)),
            Derivation("backend_respawn", lambda v: dependents(v["children"])["backend_respawn"], ("children",)),
            Derivation("max_reqs", lambda v: dependents(v["children"])["max_reqs"], ("children",)),
        ),
        pairs=(SoftHardPair("max_crashes", "pgrp_max_crashes"),),
        invariants=(
            Invariant(
                f"children x max_process_mem must fit in {budget}MB",
                lambda v: v["children"] * v["max_process_mem"] <= budget,
            ),
            Invariant("initial_start cannot exceed children", lambda v: v["initial_start"] <= v["children"]),
            Invariant("backend_respawn cannot exceed children", lambda v: v["backend_respawn"] <= v["children"]),
        ),
    )


def system_bounds(facts: ResourceFacts) -> Bounds:
    return Bounds(
        fields=(
            FieldBound("vm.swappiness", 0, 100),
            FieldBound("net.core.somaxconn", 128, scaler.SOMAXCONN_MAX),
            FieldBound("net.netfilter.nf_conntrack_max", 32768, scaler.CONNTRACK_GLOBAL_MAX),
        ),
        invariants=(
            Invariant(
                "nf_conntrack_max must be a power of two",
                lambda v: v["net.netfilter.nf_conntrack_max"] & (v["net.netfilter.nf_conntrack_max"] - 1) == 0,
            ),
        ),
    )


def limits_bounds(facts: ResourceFacts) -> Bounds:
    return Bounds(
        fields=(
            FieldBound("nproc_soft", 1024),
            FieldBound("root_nproc_soft", 1024),
        ),
        pairs=(
            SoftHardPair("nproc_soft", "nproc_hard"),
            SoftHardPair("root_nproc_soft", "root_nproc_hard"),
            SoftHardPair("nofile_soft", "nofile_hard"),
        ),
    )


def redis_bounds(facts: ResourceFacts) -> Bounds:
    return Bounds(
        fields=(FieldBound("maxmemory_mb", scaler.REDIS_MIN_MB, scaler.REDIS_MAX_MB),),
        derived=(Derivation("maxmemory", lambda v: f"{v['maxmemory_mb']}mb"),),
    )


def swap_bounds(facts: ResourceFacts) -> Bounds:
    return Bounds(fields=(FieldBound("size_gb", 1, scaler.SWAP_LARGE_RAM_GB),))


def mysql_bounds(facts: ResourceFacts) -> Bounds:
    # Leave at least 30% of RAM to everything that is not InnoDB.
    pool_max = max(128, facts.total_ram_mb * 70 // 100)
    return Bounds(
        fields=(
            FieldBound("innodb_buffer_pool_mb", 128, pool_max),
            FieldBound("max_connections", 10, 10000),
            FieldBound("tmp_table_mb", 16, 1024),
        ),
        derived=(
            Derivation("innodb_buffer_pool_instances", lambda v: min(64, max(1, v["innodb_buffer_pool_mb"] // 1024))),
            Derivation("innodb_log_file_mb", lambda v: min(2048, max(48, v["innodb_buffer_pool_mb"] // 4))),
            Derivation("max_heap_table_mb", lambda v: v["tmp_table_mb"]),
        ),
    )


_BUILDERS = {
    "apache": apache_bounds,
    "lsapi": lsapi_bounds,
    "system": system_bounds,
    "limits": limits_bounds,
    "redis": redis_bounds,
    "swap": swap_bounds,
    "mysql": mysql_bounds,
}


def bounds_for(subsystem: str, facts: ResourceFacts) -> Bounds:
    builder = _BUILDERS.get(subsystem)
    if builder is None:
        raise NotFoundError(subsystem, "any")
    return builder(facts)

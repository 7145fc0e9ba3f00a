"""Tests for the dynamic scaler formulas."""

import pytest

from server_optimizer.engine import scaler, tables
from server_optimizer.engine.bounds import bounds_for
from server_optimizer.engine.scaler import (
    conntrack_max,
    limits_params,
    lsapi_dedicated_start,
    lsapi_dependents,
    lsapi_pool,
    redis_memory_mb,
    scale,
    swap_ram_target_gb,
    swap_size_gb,
    system_params,
)
from server_optimizer.engine.validator import validate
from server_optimizer.errors import InsufficientDiskSpaceError, NotFoundError, ValidationError
from server_optimizer.model.server import ResourceFacts, ServerClass, ServerTier


# =============================================================================
# REDIS
# =============================================================================

def test_redis_vps2_share():
    assert redis_memory_mb(4096, 0, 2) == 819


def test_redis_subtracts_sibling_service():
    assert redis_memory_mb(8192, 3072, 3) == (8192 - 3072) * 25 // 100


def test_redis_large_categories_use_top_share():
    assert redis_memory_mb(20000, 0, 5) == 7000
    assert redis_memory_mb(20000, 0, 8) == 7000


@pytest.mark.parametrize(
    "ram_mb, other_mb, category",
    [(512, 0, 1), (1024, 2048, 1), (4096, 4000, 2), (1_000_000, 0, 7), (65536, 0, 6)],
)
def test_redis_always_within_bounds(ram_mb, other_mb, category):
    mb = redis_memory_mb(ram_mb, other_mb, category)
    assert scaler.REDIS_MIN_MB <= mb <= scaler.REDIS_MAX_MB


@pytest.mark.parametrize("category", range(1, 10))
@pytest.mark.parametrize("other_mb", [0, 1024, 8192])
def test_redis_never_shrinks_as_ram_grows(category, other_mb):
    sizes = [redis_memory_mb(ram_mb, other_mb, category) for ram_mb in range(0, 1_000_001, 4999)]

    assert sizes == sorted(sizes)
    assert sizes[0] == scaler.REDIS_MIN_MB
    assert sizes[-1] == scaler.REDIS_MAX_MB


def test_scale_redis_renders_mb_string():
    facts = ResourceFacts(cpu_cores=2, total_ram_mb=4096)
    params = scale("redis", facts, ServerClass.VPS2)

    assert params["maxmemory_mb"] == 819
    assert params["maxmemory"] == "819mb"


# =============================================================================
# SWAP
# =============================================================================

@pytest.mark.parametrize(
    "ram_gb, expected",
    [(0, 2), (1, 2), (2, 4), (4, 4), (8, 8), (16, 8), (64, 32), (128, 32)],
)
def test_swap_ram_rule(ram_gb, expected):
    assert swap_ram_target_gb(ram_gb) == expected


def test_swap_vps2_with_roomy_disk():
    assert swap_size_gb(4, total_disk_gb=50, available_disk_gb=40) == 4


def test_swap_capped_by_disk():
    # min free 20GB, (28 - 20) * 25% = 2GB
    assert swap_size_gb(16, total_disk_gb=50, available_disk_gb=28) == 2


def test_swap_min_free_is_ten_percent_of_large_disks():
    # min free 100GB, (140 - 100) * 25% = 10GB
    assert swap_size_gb(32, total_disk_gb=1000, available_disk_gb=140) == 10


def test_swap_insufficient_disk():
    with pytest.raises(InsufficientDiskSpaceError) as exc:
        swap_size_gb(4, total_disk_gb=40, available_disk_gb=22)

    assert exc.value.min_free_gb == 20


def test_swap_size_never_exceeds_quarter_of_spare_disk():
    for avail in range(25, 400, 7):
        size = swap_size_gb(64, total_disk_gb=500, available_disk_gb=avail + 50)
        assert size <= (avail + 50 - 50) * 25 // 100


# =============================================================================
# CONNTRACK
# =============================================================================

@pytest.mark.parametrize("tier", list(ServerTier))
@pytest.mark.parametrize("ram_gb, cpus", [(1, 1), (4, 2), (16, 6), (64, 32), (512, 64)])
def test_conntrack_power_of_two_within_tier(tier, ram_gb, cpus):
    value = conntrack_max(ram_gb, cpus, tier)
    floor, cap = scaler.CONNTRACK_LIMITS[tier]

    assert value & (value - 1) == 0
    assert floor <= value <= cap


def test_conntrack_rounds_up():
    # 16GB x 6 cores = 98304 -> 131072
    assert conntrack_max(16, 6, ServerTier.VPS) == 131072


# =============================================================================
# LSAPI
# =============================================================================

def test_lsapi_pool_shrinks_children_when_floor_memory_does_not_fit():
    start = tables.lookup("lsapi", ServerClass.VPS1).as_dict()

    values = lsapi_pool(start, total_ram_mb=2048)

    # budget 1740MB, memory raised to the 64MB floor, 27 children fit
    assert values["max_process_mem"] == 64
    assert values["children"] == 27
    assert values["initial_start"] == 6
    assert values["backend_respawn"] == 6
    assert values["max_reqs"] == 27000


@pytest.mark.parametrize("children, share", [(3, 3), (12, 5), (20, 5), (24, 6), (40, 10)])
def test_lsapi_dependents_follow_children(children, share):
    assert lsapi_dependents(children) == {
        "initial_start": share,
        "backend_respawn": share,
        "max_reqs": children * 1000,
    }


def test_lsapi_pool_keeps_table_values_that_fit():
    start = tables.lookup("lsapi", ServerClass.VPS3).as_dict()

    values = lsapi_pool(start, total_ram_mb=8192)

    assert values["children"] == 70
    assert values["max_process_mem"] == 96
    assert values["initial_start"] == 20
    assert values["max_reqs"] == 8000


def test_lsapi_pool_shrinks_memory_before_children():
    start = dict(children=10, max_process_mem=1000, initial_start=5, backend_respawn=5, max_reqs=1)

    values = lsapi_pool(start, total_ram_mb=8192)

    assert values["max_process_mem"] == 656
    assert values["children"] == 10
    assert values["max_reqs"] == 10000


def test_lsapi_pool_cannot_fit_a_single_backend():
    start = dict(children=5, max_process_mem=64, initial_start=5, backend_respawn=5, max_reqs=5000)

    with pytest.raises(ValidationError):
        lsapi_pool(start, total_ram_mb=50)


@pytest.mark.parametrize("ram_mb", [1024, 2048, 4096, 8192, 16384, 65536])
def test_lsapi_pool_always_fits_budget(ram_mb):
    for cls in tables.supported_classes("lsapi"):
        values = lsapi_pool(tables.lookup("lsapi", cls).as_dict(), ram_mb)
        assert values["children"] * values["max_process_mem"] <= ram_mb * 85 // 100
        assert values["max_process_mem"] >= 64
        assert values["initial_start"] <= values["children"]


def test_lsapi_dedicated_start_fits_memory_to_budget():
    values = lsapi_dedicated_start(cpu_cores=16, total_ram_mb=32768)

    assert values["children"] == 240
    assert values["max_process_mem"] == 27852 // 240
    assert values["max_crashes"] == 18
    assert values["pgrp_max_crashes"] == 36


def test_scale_lsapi_memory_profile_kept_when_it_fits():
    facts = ResourceFacts(cpu_cores=4, total_ram_mb=32768)

    params = scale("lsapi", facts, ServerClass.VPS3, memory_profile_mb=256)

    assert params["max_process_mem"] == 256
    assert params["children"] == 70


def test_scale_lsapi_memory_profile_shrinks_to_fit():
    facts = ResourceFacts(cpu_cores=4, total_ram_mb=8192)

    params = scale("lsapi", facts, ServerClass.VPS3, memory_profile_mb=256)

    # 70 x 256MB does not fit in 6963MB, so memory shrinks in 10% steps
    assert params["max_process_mem"] == 97
    assert params["children"] == 70
    assert params["max_reqs"] == 70000


# =============================================================================
# SYSTEM
# =============================================================================

def test_system_params_vps2():
    values = system_params(4, 2, ServerTier.VPS)

    assert values["vm.swappiness"] == 10
    assert values["net.core.somaxconn"] == 32768
    assert values["net.core.netdev_max_backlog"] == 65536
    assert values["fs.file-max"] == 2097152
    assert values["vm.admin_reserve_kbytes"] == 4194304 * 3 // 100
    assert values["vm.min_free_kbytes"] == 4194304 * 15 // 1000
    assert values["net.ipv4.tcp_max_orphans"] == 128


def test_system_params_large_host():
    values = system_params(64, 32, ServerTier.DEDICATED)
    ram_kb = 64 * 1024 * 1024

    assert values["vm.swappiness"] == 0
    assert values["vm.admin_reserve_kbytes"] == ram_kb * 15 // 1000
    assert values["vm.min_free_kbytes"] == 524288


def test_somaxconn_clamped_after_validation():
    facts = ResourceFacts(cpu_cores=32, total_ram_mb=65536)
    params = validate(scale("system", facts, ServerClass.DSCPU5), bounds_for("system", facts))

    assert params["net.core.somaxconn"] == 65535
    assert any("somaxconn" in note for note in params.corrections)


def test_limits_params():
    assert limits_params(2) == {
        "nproc_soft": 8192,
        "nproc_hard": 16384,
        "root_nproc_soft": 4096,
        "root_nproc_hard": 8192,
        "nofile_soft": 999999,
        "nofile_hard": 999999,
    }


def test_scale_system_uses_nominal_resources():
    facts = ResourceFacts(cpu_cores=64, total_ram_mb=512 * 1024)

    params = scale("limits", facts, ServerClass.VPS2)

    assert params["nproc_soft"] == 2 * 4096


def test_scale_system_without_row():
    with pytest.raises(NotFoundError):
        scale("system", ResourceFacts(cpu_cores=24, total_ram_mb=131072), ServerClass.VPS8)


def test_scale_unknown_subsystem():
    with pytest.raises(NotFoundError):
        scale("varnish", ResourceFacts(cpu_cores=1, total_ram_mb=1024), ServerClass.VPS1)

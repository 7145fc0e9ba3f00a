"""Tests for the resource scanner and server profile resolver."""

from unittest.mock import MagicMock

import pytest

from server_optimizer.engine.resolver import ServerProfileResolver, classify, drift_warnings
from server_optimizer.errors import ResourceDetectionError
from server_optimizer.model.server import ResourceFacts, ServerClass, ServerTier
from server_optimizer.scanner.resources import ResourceScanner

from conftest import script_host


@pytest.mark.parametrize(
    "cpus, ram_mb, expected",
    [
        (1, 1000, ServerClass.VPS1),
        (1, 2048, ServerClass.VPS1),
        (2, 3900, ServerClass.VPS2),
        (2, 4096, ServerClass.VPS2),
        (4, 8192, ServerClass.VPS3),
        (8, 32768, ServerClass.VPS5),
        (9, 8192, ServerClass.DSCPU3),
        (4, 65536, ServerClass.DSCPU6),
        (16, 131072, ServerClass.DSCPU8),
    ],
)
def test_classify_buckets(cpus, ram_mb, expected):
    assert classify(ResourceFacts(cpu_cores=cpus, total_ram_mb=ram_mb)) == expected


def test_classify_boundaries_are_strict():
    """Exactly 8 cores and 32GB is still a VPS; one more of either is dedicated."""
    assert classify(ResourceFacts(cpu_cores=8, total_ram_mb=32 * 1024)).tier is ServerTier.VPS
    assert classify(ResourceFacts(cpu_cores=8, total_ram_mb=33 * 1024)).tier is ServerTier.DEDICATED
    assert classify(ResourceFacts(cpu_cores=9, total_ram_mb=4 * 1024)).tier is ServerTier.DEDICATED


def test_classify_ram_always_inside_bucket():
    for ram_gb in range(0, 200, 3):
        cls = classify(ResourceFacts(cpu_cores=2, total_ram_mb=ram_gb * 1024))
        lower, upper = cls.ram_bucket_gb
        assert ram_gb > lower or (lower == 0 and ram_gb >= 0)
        assert upper is None or ram_gb <= upper


RAM_STEPS_GB = (1, 2, 4, 8, 16, 32, 64, 96, 128)


@pytest.mark.parametrize("cpus", [1, 4, 8, 16])
def test_classify_never_shrinks_as_ram_grows(cpus):
    classes = [classify(ResourceFacts(cpu_cores=cpus, total_ram_mb=gb * 1024)) for gb in RAM_STEPS_GB]
    ranks = [(cls.tier is ServerTier.DEDICATED, cls.size_category) for cls in classes]

    assert ranks == sorted(ranks)
    for gb, cls in zip(RAM_STEPS_GB, classes):
        lower, upper = cls.ram_bucket_gb
        assert lower < gb and (upper is None or gb <= upper), f"{gb}GB -> {cls}"


def test_drift_warnings_within_tolerance():
    facts = ResourceFacts(cpu_cores=2, total_ram_mb=3800)
    assert drift_warnings(ServerClass.VPS2, facts) == []


def test_drift_warnings_outside_tolerance():
    facts = ResourceFacts(cpu_cores=8, total_ram_mb=16384)
    warnings = drift_warnings(ServerClass.VPS2, facts)
    assert len(warnings) == 2
    assert "RAM" in warnings[0]
    assert "CPU" in warnings[1]


def test_resolver_uses_override_verbatim():
    scanner = MagicMock(spec=ResourceScanner)
    scanner.scan.return_value = ResourceFacts(cpu_cores=16, total_ram_mb=65536)
    resolver = ServerProfileResolver(scanner)

    cls, facts = resolver.resolve(ServerClass.VPS1)

    assert cls is ServerClass.VPS1
    assert facts.cpu_cores == 16
    assert resolver.warnings


def test_resolver_auto_detects():
    scanner = MagicMock(spec=ResourceScanner)
    scanner.scan.return_value = ResourceFacts(cpu_cores=4, total_ram_mb=8192)
    resolver = ServerProfileResolver(scanner)

    cls, _ = resolver.resolve()

    assert cls is ServerClass.VPS3
    assert resolver.warnings == []


def test_scanner_reads_host(fake):
    script_host(fake, cpus=4, ram_mb=7821, disk_total_gb=80, disk_avail_gb=55)

    facts = ResourceScanner(fake).scan()

    assert facts == ResourceFacts(cpu_cores=4, total_ram_mb=7821, total_disk_gb=80, available_disk_gb=55)
    assert facts.ram_gb == 7
    assert ResourceScanner(fake).current_swap_mb() == 2047


def test_scanner_missing_ram_is_fatal(fake):
    fake.on("nproc", "2\n")
    fake.on("free -m", "", "free: command not found", 127)

    with pytest.raises(ResourceDetectionError):
        ResourceScanner(fake).scan()


def test_scanner_missing_cpu_is_fatal(fake):
    script_host(fake, cpus=2, ram_mb=4096)
    fake.on("nproc", "", "nproc: not found", 127)

    with pytest.raises(ResourceDetectionError):
        ResourceScanner(fake).scan()


def test_scanner_unreadable_disk_is_zero(fake):
    script_host(fake, cpus=2, ram_mb=4096)
    fake.on("df -BG /", "", "df: error", 1)

    facts = ResourceScanner(fake).scan()

    assert (facts.total_disk_gb, facts.available_disk_gb) == (0, 0)

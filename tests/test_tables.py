"""Tests for the per-class parameter tables."""

import pytest

from server_optimizer.engine import tables
from server_optimizer.errors import NotFoundError
from server_optimizer.model.server import ServerClass


def test_apache_row_has_every_field():
    params = tables.lookup("apache", ServerClass.VPS3)

    assert params.subsystem == "apache"
    assert params.server_class is ServerClass.VPS3
    assert params["maxclients"] == 75
    assert params["serverlimit"] == 90
    assert params["rlimit_mem_soft_mb"] == 6144
    assert params["keepalive"] == "On"
    assert params["timeout"] == 60


def test_apache_covers_every_class():
    assert set(tables.supported_classes("apache")) == set(ServerClass)


@pytest.mark.parametrize("subsystem", ["apache", "lsapi", "mysql"])
def test_tables_keep_serverlimit_and_memory_consistent(subsystem):
    for cls in tables.supported_classes(subsystem):
        params = tables.lookup(subsystem, cls)
        if subsystem == "apache":
            assert params["serverlimit"] >= params["maxclients"]
            assert params["rlimit_mem_hard_mb"] >= params["rlimit_mem_soft_mb"]
        elif subsystem == "lsapi":
            assert params["pgrp_max_crashes"] >= params["max_crashes"]
        else:
            assert params["innodb_buffer_pool_mb"] > 0


def test_mysql_row_for_dedicated_class():
    params = tables.lookup("mysql", ServerClass.DSCPU2)

    assert params["innodb_buffer_pool_mb"] == 4096
    assert params["max_allowed_packet_mb"] == 256


def test_missing_row_raises_not_found():
    with pytest.raises(NotFoundError) as exc:
        tables.lookup("mysql", ServerClass.VPS8)

    assert exc.value.subsystem == "mysql"
    assert exc.value.server_class == "VPS8"


def test_unknown_subsystem_raises_not_found():
    with pytest.raises(NotFoundError):
        tables.lookup("varnish", ServerClass.VPS1)


def test_lookup_returns_independent_copies():
    first = tables.lookup("lsapi", ServerClass.VPS1)
    second = tables.lookup("lsapi", ServerClass.VPS1).with_values(children=1)

    assert first["children"] == 35
    assert second["children"] == 1

"""Tests for ConfigWriter and ApplyAction (backup, write, verify, rollback)."""

from datetime import datetime

import pytest

from server_optimizer.actions.apply import ApplyAction, ApplyTarget, ConfigWriter
from server_optimizer.actions.renderers import render_ea4, render_redis
from server_optimizer.connector.base import CommandResult
from server_optimizer.connector.services import ServiceManager
from server_optimizer.errors import ApplyError, BackupError, PreconditionError
from server_optimizer.model.server import ApplyStatus, ConfigArtifact, ParameterSet, ServerClass

from conftest import FIXED_NOW

CONF = "/etc/redis.conf"
BACKUP = f"{CONF}.bak.20240501_123045_123456"


@pytest.fixture
def writer(fake):
    return ConfigWriter(fake, clock=lambda: FIXED_NOW)


@pytest.fixture
def applier(fake, writer):
    return ApplyAction(fake, ServiceManager(fake), writer)


def _redis_params(mb: int = 819) -> ParameterSet:
    return ParameterSet("redis", ServerClass.VPS2, {"maxmemory_mb": mb, "maxmemory": f"{mb}mb"})


# =============================================================================
# CONFIG WRITER
# =============================================================================

def test_backup_records_exact_path(fake, writer):
    fake.files[CONF] = "old"

    record = writer.backup(CONF)

    assert record.backup_path == BACKUP
    assert record.had_original
    assert fake.files[BACKUP] == "old"


def test_backup_of_missing_file(fake, writer):
    record = writer.backup(CONF)

    assert record.backup_path is None
    assert not record.had_original


def test_backup_name_collision_gets_suffix(fake, writer):
    fake.files[CONF] = "old"
    fake.files[BACKUP] = "older"

    record = writer.backup(CONF)

    assert record.backup_path == f"{BACKUP}.1"
    assert fake.files[BACKUP] == "older"


def test_backup_failure_leaves_file_untouched(fake, writer, monkeypatch):
    fake.files[CONF] = "old"
    monkeypatch.setattr(
        fake, "copy_file", lambda src, dst: CommandResult("cp", "", "No space left on device", 1)
    )

    with pytest.raises(BackupError):
        writer.write(ConfigArtifact(CONF, render_redis), _redis_params())

    assert fake.files[CONF] == "old"


def test_write_creates_exactly_one_backup(fake, writer):
    fake.files[CONF] = "old"

    record = writer.write(ConfigArtifact(CONF, render_redis, mode="640", owner="redis:redis"), _redis_params())

    backups = [name for name in fake.files if name.startswith(f"{CONF}.bak.")]
    assert backups == [record.backup_path]
    assert "maxmemory 819mb" in fake.files[CONF]
    assert fake.modes[CONF] == "640"
    assert fake.owners[CONF] == "redis:redis"


def test_repeated_write_is_byte_identical(fake):
    ticks = iter([datetime(2024, 5, 1, 12, 0, 0), datetime(2024, 5, 1, 12, 0, 1)])
    writer = ConfigWriter(fake, clock=lambda: next(ticks))

    writer.write(ConfigArtifact(CONF, render_redis), _redis_params())
    first = fake.files[CONF]
    writer.write(ConfigArtifact(CONF, render_redis), _redis_params())

    assert fake.files[CONF] == first


def test_write_failure_raises_apply_error(fake, writer, monkeypatch):
    monkeypatch.setattr(fake, "write_file", lambda path, content: CommandResult("write", "", "read-only", 1))

    with pytest.raises(ApplyError):
        writer.write_text(CONF, "x")


def test_restore_removes_file_that_did_not_exist(fake, writer):
    record = writer.backup(CONF)
    fake.files[CONF] = "new"

    assert writer.restore(record)
    assert CONF not in fake.files


def test_write_refuses_unparseable_document(fake, writer):
    ea4 = "/etc/cpanel/ea4/ea4.conf"
    fake.files[ea4] = "{not json"

    with pytest.raises(PreconditionError, match="not valid JSON"):
        writer.write(ConfigArtifact(ea4, render_ea4), _redis_params())

    assert fake.files[ea4] == "{not json"
    assert not any(".bak." in name for name in fake.files)


def test_staged_restores_earlier_writes(fake, writer, monkeypatch):
    other = "/etc/sysctl.conf"
    fake.files[CONF] = "old redis"
    fake.files[other] = "old sysctl"
    real_copy = fake.copy_file

    def copy_file(source, destination):
        if source == other:
            return CommandResult("cp", "", "disk full", 1)
        return real_copy(source, destination)

    monkeypatch.setattr(fake, "copy_file", copy_file)
    backups = []

    with pytest.raises(BackupError, match="disk full"):
        with writer.staged(backups):
            backups.append(writer.write(ConfigArtifact(CONF, render_redis), _redis_params()))
            backups.append(writer.backup(other))

    assert fake.files[CONF] == "old redis"
    assert fake.files[other] == "old sysctl"


def test_staged_leaves_files_alone_on_success(fake, writer):
    backups = []
    with writer.staged(backups):
        backups.append(writer.write(ConfigArtifact(CONF, render_redis), _redis_params()))

    assert "maxmemory 819mb" in fake.files[CONF]
    assert len(backups) == 1


# =============================================================================
# APPLY ACTION
# =============================================================================

def test_apply_ok(fake, applier):
    result = applier.apply(ApplyTarget("redis", service="redis"), [])

    assert result.status is ApplyStatus.OK
    assert result.ok
    assert fake.ran("systemctl restart redis")


def test_failed_restart_rolls_back_and_recovers(fake, writer, applier):
    fake.files[CONF] = "old"
    record = writer.write(ConfigArtifact(CONF, render_redis), _redis_params())
    fake.on_sequence("systemctl restart redis", [("", "Job failed", 1), ("", "", 0)])

    result = applier.apply(ApplyTarget("redis", service="redis"), [record])

    assert result.status is ApplyStatus.DEGRADED
    assert result.rolled_back
    assert result.restored
    assert not result.ok
    assert fake.files[CONF] == "old"


def test_failed_verification_rolls_back(fake, writer, applier):
    fake.files[CONF] = "old"
    record = writer.write(ConfigArtifact(CONF, render_redis), _redis_params())

    result = applier.apply(ApplyTarget("redis", service="redis", verify=lambda: "maxmemory is 0"), [record])

    assert result.rolled_back
    assert "maxmemory is 0" in result.detail
    assert fake.files[CONF] == "old"


def test_service_down_after_rollback_is_failed(fake, writer, applier):
    fake.files[CONF] = "old"
    record = writer.write(ConfigArtifact(CONF, render_redis), _redis_params())
    fake.on("systemctl restart redis", "", "Job failed", 1)

    result = applier.apply(ApplyTarget("redis", service="redis"), [record])

    assert result.status is ApplyStatus.FAILED
    assert result.restored
    # The backup content is back on disk and the backup itself is kept.
    assert fake.files[CONF] == "old"
    assert fake.files[record.backup_path] == "old"
    assert fake.commands.count("systemctl restart redis") == 2


def test_inactive_service_is_not_restarted(fake, applier):
    fake.on("systemctl is-active --quiet httpd", "", "", 3)

    result = applier.apply(ApplyTarget("apache", service="httpd", skip_if_inactive=True), [])

    assert result.status is ApplyStatus.DEGRADED
    assert result.ok
    assert not fake.ran("systemctl restart httpd")


def test_command_target(fake, applier):
    fake.on("sysctl -e -p", "vm.swappiness = 10\n")

    result = applier.apply(ApplyTarget("sysctl", command="sysctl -e -p"), [])

    assert result.ok
    assert "vm.swappiness" in result.output

"""Tests for the shared run pipeline."""

import pytest

from server_optimizer.errors import PreconditionError, ResourceDetectionError
from server_optimizer.model.server import ModuleResult, ServerClass
from server_optimizer.modules import BaseModule
from server_optimizer.pipeline import build_context, plan_modules, preflight, run_modules

from conftest import script_host


class Passing(BaseModule):
    number = 1
    name = "passing"
    title = "Passing"

    def run(self, ctx):
        return self.result(True, "done")


class Raising(BaseModule):
    number = 2
    name = "raising"
    title = "Raising"

    def run(self, ctx):
        raise PreconditionError("not on this host")


class Failing(BaseModule):
    number = 3
    name = "failing"
    title = "Failing"

    def run(self, ctx):
        return self.result(False, "broken")


def _cpanel_host(fake):
    fake.on("id -u", "0\n")
    fake.files["/etc/redhat-release"] = "AlmaLinux release 9.3\n"
    fake.dirs.add("/usr/local/cpanel")


def test_preflight_passes(fake):
    _cpanel_host(fake)
    fake.on("cpanel -V", "118.0 (build 9)\n")

    preflight(fake)

    assert fake.ran("/usr/local/cpanel/cpanel -V")


@pytest.mark.parametrize("broken", ["root", "os", "cpanel"])
def test_preflight_rejects(fake, broken):
    _cpanel_host(fake)
    if broken == "root":
        fake.on("id -u", "1000\n")
    elif broken == "os":
        del fake.files["/etc/redhat-release"]
    else:
        fake.dirs.clear()

    with pytest.raises(PreconditionError):
        preflight(fake)


def test_build_context_resolves_host(fake, settings):
    script_host(fake, cpus=4, ram_mb=7800)

    ctx, warnings = build_context(fake, settings, report=None)

    assert ctx.server_class is ServerClass.VPS3
    assert ctx.facts.total_ram_mb == 7800
    assert ctx.explicit_class is None
    assert warnings == []


def test_build_context_explicit_class(fake, settings):
    script_host(fake, cpus=2, ram_mb=3900)

    ctx, warnings = build_context(fake, settings, report=None, explicit_class=ServerClass.VPS5, interactive=True)

    assert ctx.server_class is ServerClass.VPS5
    assert ctx.explicit_class is ServerClass.VPS5
    assert ctx.interactive
    assert warnings


def test_build_context_needs_ram(fake, settings):
    fake.on("nproc", "2\n")
    fake.on("free -m", "", "free: not found", 127)

    with pytest.raises(ResourceDetectionError):
        build_context(fake, settings, report=None)


def test_run_modules_continues_after_failure(make_ctx):
    outcome = run_modules(make_ctx(), [Passing, Raising, Failing])

    assert [r.success for r in outcome.results] == [True, False, False]
    assert outcome.results[1].reason == "not on this host"
    assert outcome.exit_code == 1
    assert not outcome.stopped


def test_run_modules_stops_when_told(make_ctx):
    seen = []

    def stop(result: ModuleResult) -> bool:
        seen.append(result.name)
        return False

    outcome = run_modules(make_ctx(), [Raising, Passing], continue_after_failure=stop)

    assert seen == ["raising"]
    assert [r.name for r in outcome.results] == ["raising"]
    assert outcome.stopped


def test_run_modules_survives_unreadable_config(fake, make_ctx):
    from server_optimizer.modules.apache import EA4_CONF, ApacheModule

    fake.files[EA4_CONF] = "{not json"

    outcome = run_modules(make_ctx(), [ApacheModule, Passing])

    assert [r.name for r in outcome.results] == ["apache", "passing"]
    assert not outcome.results[0].success
    assert "not valid JSON" in outcome.results[0].reason
    assert outcome.results[1].success
    assert fake.files[EA4_CONF] == "{not json"
    assert outcome.exit_code == 1


def test_run_modules_skips_disabled(make_ctx, settings):
    ctx = make_ctx(settings=settings.model_copy(update={"modules": {"failing": False}}))

    outcome = run_modules(ctx, [Passing, Failing])

    assert [r.name for r in outcome.results] == ["passing"]
    assert outcome.exit_code == 0


def test_plan_modules_reports_errors(make_ctx):
    from server_optimizer.modules.mysql import MySQLModule
    from server_optimizer.modules.redis import RedisModule

    entries = plan_modules(make_ctx(server_class=ServerClass.VPS6), [MySQLModule, RedisModule, Passing])

    assert "No mysql parameters" in entries[0].error
    assert entries[1].parameters[0]["maxmemory_mb"] > 0
    assert entries[2].parameters == [] and entries[2].error is None

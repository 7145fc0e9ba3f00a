"""Tests for the click CLI, run against an in-memory host."""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from server_optimizer.cli import main

from conftest import FakeConnector, script_host


@pytest.fixture
def host():
    fake = FakeConnector()
    script_host(fake, cpus=4, ram_mb=7800)
    fake.on("id -u", "0\n")
    fake.files["/etc/redhat-release"] = "AlmaLinux release 9.3\n"
    fake.dirs.add("/usr/local/cpanel")
    fake.on("set_tweaksetting", json.dumps({"metadata": {"result": 1}}))
    return fake


@pytest.fixture
def invoke(tmp_path, host):
    runner = CliRunner()

    def _invoke(*args, input=None):
        base = ["--config", str(tmp_path), "--log-file", str(tmp_path / "optimizer.log")]
        with patch("server_optimizer.cli.LocalConnector", lambda **kwargs: host):
            return runner.invoke(main, base + list(args), input=input)

    return _invoke


def test_modules_command(invoke):
    result = invoke("modules")

    assert result.exit_code == 0
    assert "apache_mpm" in result.output
    assert "wordpress" in result.output


def test_detect(invoke):
    result = invoke("detect")

    assert result.exit_code == 0
    assert "VPS3" in result.output


def test_plan_with_class_override(invoke, host):
    result = invoke("plan", "-t", "vps2", "-m", "redis")

    assert result.exit_code == 0
    assert "maxmemory" in result.output
    assert not host.ran("systemctl restart")


def test_run_non_interactive(invoke, host, tmp_path):
    result = invoke("run", "-n", "-m", "cpanel")

    assert result.exit_code == 0, result.output
    assert "Run Summary" in result.output
    assert host.ran("set_tweaksetting key=skipanalog value=1")
    assert (tmp_path / "optimizer.log").exists()


def test_run_exit_code_reflects_failure(invoke, host):
    host.on("command -v imunify360-agent", "", "", 1)

    result = invoke("run", "-n", "-m", "imunify")

    assert result.exit_code == 1
    assert "not installed" in result.output


def test_run_requires_root(invoke, host):
    host.on("id -u", "1000\n")

    result = invoke("run", "-n", "-m", "cpanel")

    assert result.exit_code == 1
    assert "must run as root" in result.output
    assert not host.ran("set_tweaksetting")


def test_run_cancelled_at_confirmation(invoke, host):
    result = invoke("run", "-m", "cpanel", input="n\n")

    assert result.exit_code == 0
    assert "Execution cancelled" in result.output
    assert not host.ran("set_tweaksetting")


def test_unknown_module(invoke):
    result = invoke("run", "-n", "-m", "nginx")

    assert result.exit_code == 2
    assert "Unknown module" in result.output


def test_invalid_log_level(invoke):
    result = invoke("--log-level", "chatty", "modules")

    assert result.exit_code == 2


def test_invalid_settings_file(invoke, tmp_path):
    (tmp_path / "settings.yaml").write_text("server_type: VPS99\n")

    result = invoke("modules")

    assert result.exit_code == 1
    assert "Invalid server type" in result.output


def test_settings_disable_module(invoke, tmp_path):
    (tmp_path / "settings.yaml").write_text("modules:\n  swap: false\n")

    result = invoke("modules")

    assert result.exit_code == 0
    swap_row = next(line for line in result.output.splitlines() if "swap" in line)
    assert "no" in swap_row


def test_config_profiles(invoke):
    added = invoke("config", "add", "web1", "--host", "203.0.113.10", "--user", "admin", "--port", "2222")
    listed = invoke("config", "list")
    removed = invoke("config", "remove", "web1")
    missing = invoke("config", "remove", "web1")

    assert added.exit_code == 0
    assert "admin@203.0.113.10:2222" in listed.output
    assert removed.exit_code == 0
    assert missing.exit_code == 1

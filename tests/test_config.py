"""Tests for settings.yaml loading, SSH profile storage and logging setup."""

import logging
from io import StringIO

import keyring
import pytest
import yaml
from keyring.errors import KeyringError, NoKeyringError
from rich.console import Console

from server_optimizer.config import ConfigError, ConfigManager, OptimizerSettings, normalize_log_level
from server_optimizer.connector.ssh import SSHConfig
from server_optimizer.logging_setup import configure_logging
from server_optimizer.model.server import ServerClass


@pytest.fixture
def vault(monkeypatch):
    """In-memory keyring."""
    store = {}
    monkeypatch.setattr(keyring, "set_password", lambda service, name, pw: store.__setitem__((service, name), pw))
    monkeypatch.setattr(keyring, "get_password", lambda service, name: store.get((service, name)))
    monkeypatch.setattr(keyring, "delete_password", lambda service, name: store.pop((service, name)))
    return store


def test_defaults_without_settings_file(tmp_path):
    settings = ConfigManager(tmp_path).load_settings()

    assert settings.log_level == "INFO"
    assert settings.redis_db_limit == 16
    assert settings.server_class() is None
    assert settings.module_enabled("swap")
    assert "skipanalog" in settings.cpanel_tweaks


def test_settings_file(tmp_path):
    (tmp_path / "settings.yaml").write_text(
        "log_level: warn\nserver_type: vps3\nmodules:\n  swap: false\nredis_db_limit: 32\n"
    )

    settings = ConfigManager(tmp_path).load_settings()

    assert settings.log_level == "WARNING"
    assert settings.server_class() is ServerClass.VPS3
    assert not settings.module_enabled("swap")
    assert settings.module_enabled("redis")
    assert settings.redis_db_limit == 32


@pytest.mark.parametrize(
    "content",
    [
        "server_type: VPS99\n",
        "log_level: chatty\n",
        "redis_db_limit: 0\n",
        "- just\n- a list\n",
        "log_level: [unclosed\n",
    ],
)
def test_invalid_settings(tmp_path, content):
    (tmp_path / "settings.yaml").write_text(content)

    with pytest.raises(ConfigError):
        ConfigManager(tmp_path).load_settings()


def test_settings_round_trip(tmp_path):
    mgr = ConfigManager(tmp_path / "cfg")
    mgr.save_settings(OptimizerSettings(server_type="DSCPU2", non_interactive=True))

    loaded = mgr.load_settings()

    assert loaded.server_class() is ServerClass.DSCPU2
    assert loaded.non_interactive


def test_normalize_log_level():
    assert normalize_log_level(" debug ") == "DEBUG"
    assert normalize_log_level("fatal") == "ERROR"
    with pytest.raises(ValueError):
        normalize_log_level("trace")


def test_config_dir_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("SERVER_OPTIMIZER_CONFIG", str(tmp_path))

    assert ConfigManager().settings_file == tmp_path.resolve() / "settings.yaml"


def test_profile_password_goes_to_keyring(tmp_path, vault):
    mgr = ConfigManager(tmp_path)
    mgr.add_profile("web1", SSHConfig(host="203.0.113.10", password="s3cret"))

    stored = yaml.safe_load((tmp_path / "profiles.yaml").read_text())
    assert stored["web1"]["password"] == "__keyring__"
    assert vault[("server-optimizer", "web1")] == "s3cret"

    cfg = mgr.get_profile("web1")
    assert cfg.host == "203.0.113.10"
    assert cfg.user == "root"
    assert cfg.password == "s3cret"


def test_profile_without_keyring_backend(tmp_path, monkeypatch):
    def no_backend(*args):
        raise NoKeyringError("no backend")

    monkeypatch.setattr(keyring, "set_password", no_backend)
    mgr = ConfigManager(tmp_path)
    mgr.add_profile("web1", SSHConfig(host="203.0.113.10", password="s3cret"))

    assert mgr.get_profile("web1").password == "s3cret"


def test_remove_profile(tmp_path, vault):
    mgr = ConfigManager(tmp_path)
    mgr.add_profile("web1", SSHConfig(host="203.0.113.10", password="s3cret"))

    assert mgr.remove_profile("web1")
    assert vault == {}
    assert mgr.list_profiles() == {}
    assert not mgr.remove_profile("web1")
    assert mgr.get_profile("web1") is None


def test_unreadable_keyring_yields_no_password(tmp_path, vault, monkeypatch):
    mgr = ConfigManager(tmp_path)
    mgr.add_profile("web1", SSHConfig(host="203.0.113.10", password="s3cret"))

    def broken(*args):
        raise KeyringError("locked")

    monkeypatch.setattr(keyring, "get_password", broken)

    assert mgr.get_profile("web1").password is None


def test_logging_writes_plain_file(tmp_path):
    log_file = tmp_path / "optimizer.log"
    in_use = configure_logging("INFO", str(log_file), console=Console(file=StringIO()))
    logging.getLogger("server_optimizer.modules.redis").info("maxmemory set to %dmb", 819)
    logging.getLogger("server_optimizer.modules.redis").debug("hidden")
    for handler in logging.getLogger("server_optimizer").handlers:
        handler.flush()

    assert in_use == str(log_file)
    text = log_file.read_text()
    assert "[INFO] server_optimizer.modules.redis: maxmemory set to 819mb" in text
    assert "hidden" not in text


def test_logging_falls_back_to_console(tmp_path):
    out = StringIO()
    in_use = configure_logging("INFO", str(tmp_path / "missing" / "x.log"), console=Console(file=out, width=200))

    assert in_use is None
    assert "Cannot open log file" in out.getvalue()

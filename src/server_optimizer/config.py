"""Configuration management: run settings and SSH server profiles."""

import logging
import os
from pathlib import Path
from typing import Any

import keyring
import yaml
from keyring.errors import KeyringError
from pydantic import BaseModel, Field, ValidationError, field_validator

from server_optimizer.connector.ssh import SSHConfig
from server_optimizer.errors import OptimizerError
from server_optimizer.model.server import ServerClass

logger = logging.getLogger(__name__)

CONFIG_ENV = "SERVER_OPTIMIZER_CONFIG"
DEFAULT_CONFIG_DIR = Path.home() / ".server-optimizer"

DEFAULT_CPANEL_TWEAKS: dict[str, str] = {
    "skipanalog": "1",
    "skipawstats": "1",
    "skipwebalizer": "1",
    "skipmailman": "1",
    "mycnf_auto_adjust_maxallowedpacket": "0",
    "mycnf_auto_adjust_openfiles_limit": "0",
    "mycnf_auto_adjust_innodb_buffer_pool_size": "0",
    "disk_usage_include_mailman": "0",
    "smtpmailgidonly": "0",
    "disk_usage_include_sqldbs": "0",
    "skipboxtrapper": "1",
    "skipspamassassin": "1",
}

DEFAULT_IMUNIFY_PATCHES: list[dict[str, Any]] = [
    {"MALWARE_SCAN_INTENSITY": {"io": 1}},
    {"MALWARE_SCAN_INTENSITY": {"cpu": 1}},
    {"MALWARE_SCANNING": {"try_restore_from_backup_first": True}},
    {"CAPTCHA_DOS": {"enabled": False}},
    {"WEBSHIELD": {"known_proxies_support": False}},
    {"WEBSHIELD": {"enable": False}},
    {"MOD_SEC_BLOCK_BY_SEVERITY": {"enable": False}},
]

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "ERROR"}


class ConfigError(OptimizerError):
    """settings.yaml exists but is not valid."""


def normalize_log_level(value: str) -> str:
    level = value.strip().upper()
    level = LOG_LEVEL_ALIASES.get(level, level)
    if level not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {value}. Use one of {', '.join(LOG_LEVELS)}")
    return level


class OptimizerSettings(BaseModel):
    """Contents of ``settings.yaml``. Every field has a working default."""

    log_file: str = Field("/var/log/server-optimizer.log", description="Plain-text log file")
    log_level: str = Field("INFO", description="DEBUG, INFO, WARNING or ERROR")
    non_interactive: bool = Field(False, description="Never prompt")
    server_type: str | None = Field(None, description="Server class override, e.g. VPS3")
    modules: dict[str, bool] = Field(default_factory=dict, description="Per-module enable flags")
    command_timeout: float = Field(120, gt=0, description="Seconds per external command")
    install_timeout: float = Field(600, gt=0, description="Seconds per package install")
    redis_db_limit: int = Field(16, ge=1, description="Redis databases, one per WordPress site")
    wordpress_root: str = Field("/home", description="Where wp-config.php files are searched")
    mysql_templates_dir: str | None = Field(None, description="Directory holding <CLASS>.cnf templates")
    lsapi_use_memory_profile: bool = Field(
        False, description="Start LSAPI sizing from the measured PHP memory_limit average"
    )
    report_dir: str = Field("/root/lsapi_reports", description="Where analysis CSVs are written")
    disable_ipv6: bool = Field(False, description="Also disable IPv6 in sysctl.conf")
    cpanel_tweaks: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_CPANEL_TWEAKS))
    imunify_patches: list[dict[str, Any]] = Field(default_factory=lambda: list(DEFAULT_IMUNIFY_PATCHES))

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        return normalize_log_level(value)

    @field_validator("server_type")
    @classmethod
    def _check_server_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return ServerClass.parse(value).label

    def server_class(self) -> ServerClass | None:
        return ServerClass.parse(self.server_type) if self.server_type else None

    def module_enabled(self, name: str) -> bool:
        return self.modules.get(name, True)


class ConfigManager:
    """Settings and server profiles under one config directory.

    Profiles live in ``profiles.yaml``; passwords go to the system keyring
    when a backend is available.
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        if config_dir is None:
            env_config = os.getenv(CONFIG_ENV)
            config_dir = Path(env_config).expanduser().resolve() if env_config else DEFAULT_CONFIG_DIR

        self.config_dir = config_dir
        self.profiles_file = config_dir / "profiles.yaml"
        self.settings_file = config_dir / "settings.yaml"
        self.service_id = "server-optimizer"

    def _ensure_config_dir(self) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def load_settings(self) -> OptimizerSettings:
        """Read settings.yaml, or defaults when it does not exist.

        Raises:
            ConfigError: The file is not valid YAML or fails validation.
        """
        if not self.settings_file.exists():
            return OptimizerSettings()
        try:
            with open(self.settings_file) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{self.settings_file}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{self.settings_file}: expected a mapping at the top level")
        try:
            return OptimizerSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"{self.settings_file}: {e}") from e

    def save_settings(self, settings: OptimizerSettings) -> None:
        self._ensure_config_dir()
        with open(self.settings_file, "w") as f:
            yaml.safe_dump(settings.model_dump(), f, sort_keys=False)

    # =========================================================================
    # SSH PROFILES
    # =========================================================================

    def _load_profiles(self) -> dict[str, Any]:
        if not self.profiles_file.exists():
            return {}
        try:
            with open(self.profiles_file) as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.warning("Ignoring unreadable %s: %s", self.profiles_file, e)
            return {}

    def _save_profiles(self, profiles: dict[str, Any]) -> None:
        self._ensure_config_dir()
        self.profiles_file.touch(mode=0o600)
        with open(self.profiles_file, "w") as f:
            yaml.safe_dump(profiles, f)

    def add_profile(self, name: str, config: SSHConfig) -> None:
        """Add or update a server profile."""
        profiles = self._load_profiles()

        password_ref = None
        if config.password:
            try:
                keyring.set_password(self.service_id, name, config.password)
                password_ref = "__keyring__"
            except KeyringError as e:
                # Headless hosts often have no keyring backend
                logger.warning("Keyring unavailable (%s); storing password in %s", e, self.profiles_file)
                password_ref = config.password

        profiles[name] = {
            "host": config.host,
            "user": config.user,
            "port": config.port,
            "key_path": config.key_path,
            "use_sudo": config.use_sudo,
            "password": password_ref,
        }
        self._save_profiles(profiles)

    def get_profile(self, name: str) -> SSHConfig | None:
        """Get an SSHConfig by profile name."""
        data = self._load_profiles().get(name)
        if not data:
            return None

        password = data.get("password")
        if password == "__keyring__":
            try:
                password = keyring.get_password(self.service_id, name)
            except KeyringError as e:
                logger.warning("Could not read password for %s from keyring: %s", name, e)
                password = None

        return SSHConfig(
            host=data["host"],
            user=data.get("user", "root"),
            port=data.get("port", 22),
            key_path=data.get("key_path"),
            use_sudo=data.get("use_sudo", True),
            password=password,
        )

    def list_profiles(self) -> dict[str, Any]:
        return self._load_profiles()

    def remove_profile(self, name: str) -> bool:
        profiles = self._load_profiles()
        if name not in profiles:
            return False
        if profiles[name].get("password") == "__keyring__":
            try:
                keyring.delete_password(self.service_id, name)
            except KeyringError as e:
                logger.warning("Could not remove keyring entry for %s: %s", name, e)
        del profiles[name]
        self._save_profiles(profiles)
        return True

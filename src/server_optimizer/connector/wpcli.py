"""WP-CLI wrapper - every command is scoped to one site path."""

import shlex

from server_optimizer.connector.base import CommandResult, Connector


class WpCli:
    """Per-site WordPress commands run as root."""

    def __init__(self, connector: Connector, binary: str = "wp") -> None:
        self.connector = connector
        self.binary = binary

    def available(self) -> bool:
        return self.connector.command_exists(self.binary)

    def _wp(self, path: str, *args: str) -> CommandResult:
        quoted = " ".join(shlex.quote(a) for a in args)
        return self.connector.run(f"{self.binary} {quoted} --allow-root --path={shlex.quote(path)}")

    def is_installed(self, path: str) -> bool:
        return self._wp(path, "core", "is-installed", "--quiet").success

    def plugin_is_installed(self, path: str, plugin: str) -> bool:
        return self._wp(path, "plugin", "is-installed", plugin).success

    def plugin_install(self, path: str, plugin: str) -> CommandResult:
        return self._wp(path, "plugin", "install", plugin)

    def plugin_activate(self, path: str, plugin: str) -> CommandResult:
        return self._wp(path, "plugin", "activate", plugin)

    def config_set(self, path: str, key: str, value: str) -> CommandResult:
        return self._wp(path, "config", "set", key, value)

    def redis_enable(self, path: str) -> CommandResult:
        return self._wp(path, "redis", "enable")

    def redis_status(self, path: str) -> CommandResult:
        return self._wp(path, "redis", "status")

"""Service and package management through systemctl, rpm and yum."""

import logging
import shlex

from server_optimizer.connector.base import CommandResult, Connector

logger = logging.getLogger(__name__)

INSTALL_TIMEOUT = 600


class ServiceManager:
    """Thin wrapper over the host's service and package managers.

    Every call returns a plain bool or CommandResult; failures are logged
    with the captured stderr.
    """

    def __init__(self, connector: Connector, install_timeout: float = INSTALL_TIMEOUT) -> None:
        self.connector = connector
        self.install_timeout = install_timeout

    def _systemctl(self, action: str, service: str, timeout: float | None = None) -> CommandResult:
        result = self.connector.run(f"systemctl {action} {shlex.quote(service)}", timeout=timeout)
        if not result.success and not action.startswith("is-"):
            logger.error("systemctl %s %s failed: %s", action, service, result.stderr.strip())
        return result

    def is_active(self, service: str) -> bool:
        return self._systemctl("is-active --quiet", service).success

    def is_enabled(self, service: str) -> bool:
        return self._systemctl("is-enabled --quiet", service).success

    def restart(self, service: str, timeout: float | None = None) -> CommandResult:
        return self._systemctl("restart", service, timeout=timeout)

    def start(self, service: str) -> CommandResult:
        return self._systemctl("start", service)

    def enable(self, service: str) -> CommandResult:
        return self._systemctl("enable", service)

    def daemon_reload(self) -> CommandResult:
        return self.connector.run("systemctl daemon-reload")

    def package_installed(self, package: str) -> bool:
        return self.connector.run(f"rpm -q {shlex.quote(package)}").success

    def install_package(self, package: str, *extra_args: str) -> CommandResult:
        args = " ".join(extra_args)
        command = f"yum install -y {shlex.quote(package)} {args}".strip()
        logger.info("Installing package %s", package)
        result = self.connector.run(command, timeout=self.install_timeout)
        if not result.success:
            logger.error("Failed to install %s: %s", package, result.stderr.strip())
        return result

    def remove_package_nodeps(self, package: str) -> CommandResult:
        result = self.connector.run(f"rpm -e --nodeps {shlex.quote(package)}")
        if not result.success:
            logger.error("Failed to remove %s: %s", package, result.stderr.strip())
        return result

    def command_exists(self, name: str) -> bool:
        return self.connector.command_exists(name)

"""Apache MPM: worker out, event in."""

import logging

from server_optimizer.actions.apply import ApplyTarget
from server_optimizer.errors import ExternalToolError
from server_optimizer.model.server import ModuleResult
from server_optimizer.modules import BaseModule, ModuleContext, register_module

logger = logging.getLogger(__name__)

WORKER_PACKAGE = "ea-apache24-mod_mpm_worker"
EVENT_PACKAGE = "ea-apache24-mod_mpm_event"


@register_module
class ApacheMpmModule(BaseModule):
    number = 12
    name = "apache_mpm"
    title = "Apache MPM Switch"

    def run(self, ctx: ModuleContext) -> ModuleResult:
        services = ctx.services
        warnings: list[str] = []

        if services.package_installed(WORKER_PACKAGE):
            logger.info("Removing worker MPM")
            result = services.remove_package_nodeps(WORKER_PACKAGE)
            if not result.success:
                raise ExternalToolError(result.command, result.exit_code, result.stderr)
        else:
            logger.info("Worker MPM not installed")

        if services.package_installed(EVENT_PACKAGE):
            logger.info("Event MPM is already installed")
        else:
            result = services.install_package(EVENT_PACKAGE)
            if not result.success or not services.package_installed(EVENT_PACKAGE):
                raise ExternalToolError(result.command, result.exit_code, result.stderr)
            if not ctx.connector.run("httpd -M 2>/dev/null | grep -q mpm_event_module").success:
                warnings.append("Event MPM installed but mpm_event_module is not loaded")

        def verify() -> str | None:
            if not ctx.connector.run("httpd -V 2>/dev/null | grep -q 'Server MPM:.*event'").success:
                warnings.append("Apache restarted but 'httpd -V' does not report the event MPM")
            return None

        outcome = ctx.applier.apply(
            ApplyTarget("apache_mpm", service="httpd", verify=verify, timeout=ctx.settings.command_timeout),
            [],
        )
        return self.from_apply(outcome, "Apache is running with the event MPM", warnings=warnings)

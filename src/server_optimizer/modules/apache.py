"""Apache limits applied through the EasyApache 4 JSON config."""

import json
import logging

from server_optimizer.actions.apply import ApplyTarget
from server_optimizer.actions.renderers import render_ea4
from server_optimizer.engine.tables import lookup
from server_optimizer.errors import PreconditionError
from server_optimizer.model.server import ConfigArtifact, ModuleResult, ParameterSet
from server_optimizer.modules import BaseModule, ModuleContext, register_module

logger = logging.getLogger(__name__)

EA4_CONF = "/etc/cpanel/ea4/ea4.conf"


@register_module
class ApacheModule(BaseModule):
    number = 2
    name = "apache"
    title = "Apache Settings"

    def plan(self, ctx: ModuleContext) -> list[ParameterSet]:
        return [self.validated(lookup("apache", ctx.server_class), ctx.facts)]

    def run(self, ctx: ModuleContext) -> ModuleResult:
        if not ctx.connector.file_exists(EA4_CONF):
            raise PreconditionError(f"{EA4_CONF} not found; is this an EasyApache 4 server?")

        (params,) = self.plan(ctx)
        backups = [ctx.writer.write(ConfigArtifact(EA4_CONF, render_ea4, mode="644"), params)]

        def verify() -> str | None:
            content = ctx.connector.read_file(EA4_CONF)
            try:
                written = json.loads(content or "")
            except json.JSONDecodeError as e:
                return f"{EA4_CONF} is not valid JSON after the update: {e}"
            if written.get("maxclients") != params["maxclients"]:
                return f"maxclients in {EA4_CONF} is {written.get('maxclients')}, expected {params['maxclients']}"
            return None

        outcome = ctx.applier.apply(
            ApplyTarget(
                "apache",
                service="httpd",
                verify=verify,
                timeout=ctx.settings.command_timeout,
                skip_if_inactive=True,
            ),
            backups,
        )
        return self.from_apply(
            outcome,
            f"Apache tuned for {ctx.server_class} (MaxClients {params['maxclients']})",
            parameters=[params],
            backups=backups,
        )

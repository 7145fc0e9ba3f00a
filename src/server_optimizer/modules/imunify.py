"""Imunify360 agent settings."""

import json
import logging
import shlex

from server_optimizer.model.server import ModuleResult
from server_optimizer.modules import BaseModule, ModuleContext, register_module

logger = logging.getLogger(__name__)

AGENT = "imunify360-agent"
SERVICE = "imunify360"


def describe_patch(patch: dict) -> str:
    """``SECTION.key`` for log lines."""
    section, body = next(iter(patch.items()))
    if isinstance(body, dict) and body:
        return f"{section}.{next(iter(body))}"
    return section


@register_module
class ImunifyModule(BaseModule):
    number = 11
    name = "imunify"
    title = "Imunify360 Optimization"

    def run(self, ctx: ModuleContext) -> ModuleResult:
        if not ctx.connector.command_exists(AGENT):
            return self.result(False, "Imunify360 is not installed; skipped")

        failures = []
        for patch in ctx.settings.imunify_patches:
            label = describe_patch(patch)
            logger.info("Setting %s", label)
            command = f"{AGENT} config update {shlex.quote(json.dumps(patch))}"
            result = ctx.connector.run(command, timeout=ctx.settings.command_timeout)
            if not result.success:
                logger.error("Failed to update %s: %s", label, result.stderr.strip())
                failures.append(f"{label}: {result.stderr.strip() or 'exit ' + str(result.exit_code)}")

        restart = ctx.services.restart(SERVICE, timeout=ctx.settings.command_timeout)
        if not restart.success:
            failures.append(f"{SERVICE} restart failed; restart it manually")

        total = len(ctx.settings.imunify_patches)
        if failures:
            return self.result(
                False,
                f"Imunify360 optimization completed with {len(failures)} error(s)",
                warnings=failures,
                details={"patches": total},
            )
        return self.result(True, f"{total} Imunify360 settings applied", details={"patches": total})

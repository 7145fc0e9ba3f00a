"""cPanel tweak settings through the WHM API."""

import logging

from server_optimizer.errors import PreconditionError
from server_optimizer.model.server import ModuleResult
from server_optimizer.modules import BaseModule, ModuleContext, register_module

logger = logging.getLogger(__name__)


@register_module
class CpanelModule(BaseModule):
    number = 8
    name = "cpanel"
    title = "cPanel Tweak Settings"

    def run(self, ctx: ModuleContext) -> ModuleResult:
        if not ctx.whm.available():
            raise PreconditionError("whmapi1 not found; this module requires a cPanel server")

        applied = []
        warnings = []
        for key, value in ctx.settings.cpanel_tweaks.items():
            logger.info("Setting %s to %s", key, value)
            outcome = ctx.whm.set_tweak_setting(key, value)
            if outcome.success:
                applied.append(key)
            else:
                logger.error("Failed to set %s to %s: %s", key, value, outcome.reason)
                warnings.append(f"{key}={value}: {outcome.reason or 'no reason given'}")

        # Individual tweak failures are reported, not fatal.
        return self.result(
            True,
            f"{len(applied)} of {len(ctx.settings.cpanel_tweaks)} tweak settings applied",
            warnings=warnings,
            details={"applied": applied, "failed": len(warnings)},
        )

"""Swap: resize with cPanel's create-swap utility."""

import logging
import re

from server_optimizer.engine.scaler import scale
from server_optimizer.errors import ExternalToolError, OptimizerError, PreconditionError
from server_optimizer.model.server import BackupRecord, ModuleResult, ParameterSet
from server_optimizer.modules import BaseModule, ModuleContext, register_module
from server_optimizer.scanner.resources import ResourceScanner

logger = logging.getLogger(__name__)

CREATE_SWAP = "/usr/local/cpanel/bin/create-swap"
FSTAB = "/etc/fstab"

_DEVICE_SWAP_RE = re.compile(r"^(/dev/[a-z0-9]+.*swap.*)$", re.MULTILINE)


def comment_device_swap(fstab: str) -> str:
    """Comment out swap partitions so they do not come back at boot."""
    return _DEVICE_SWAP_RE.sub(r"#\1", fstab)


def swap_gb(swap_mb: int) -> int:
    """Nearest whole GB; 4095MB of swap is 4GB."""
    return (swap_mb + 512) // 1024


@register_module
class SwapModule(BaseModule):
    number = 10
    name = "swap"
    title = "Swap Management"

    def plan(self, ctx: ModuleContext) -> list[ParameterSet]:
        return [self.validated(scale("swap", ctx.facts, ctx.server_class), ctx.facts)]

    def run(self, ctx: ModuleContext) -> ModuleResult:
        if not ctx.connector.command_exists(CREATE_SWAP):
            raise PreconditionError("cPanel create-swap utility not found")

        (params,) = self.plan(ctx)
        target_gb = params["size_gb"]
        scanner = ResourceScanner(ctx.connector)
        current_gb = swap_gb(scanner.current_swap_mb())
        if current_gb == target_gb:
            return self.result(True, f"Swap already {current_gb}GB", parameters=[params])

        logger.info("Current swap size: %sGB, target size: %sGB", current_gb, target_gb)
        if ctx.interactive and not ctx.confirm(f"Proceed with creating {target_gb}GB swap?"):
            return self.result(True, "Swap creation cancelled by user", parameters=[params])

        result = ctx.connector.run("swapoff -a", timeout=ctx.settings.install_timeout)
        if not result.success:
            raise ExternalToolError(result.command, result.exit_code, result.stderr)

        backups: list[BackupRecord] = []
        fstab = ctx.connector.read_file(FSTAB)
        if fstab is not None:
            updated = comment_device_swap(fstab)
            if updated != fstab:
                try:
                    backups.append(ctx.writer.backup(FSTAB))
                    ctx.writer.write_text(FSTAB, updated)
                except OptimizerError:
                    ctx.connector.run("swapon -a")
                    raise
                logger.info("Commented out swap partitions in %s", FSTAB)

        create = ctx.connector.run(f"{CREATE_SWAP} --size {target_gb}G -v", timeout=ctx.settings.install_timeout)
        if not create.success:
            return self._restore_swap(
                ctx,
                backups,
                f"create-swap failed: {create.stderr.strip() or create.stdout.strip()}",
                params,
            )

        active_gb = swap_gb(scanner.current_swap_mb())
        active = ctx.connector.run("swapon --show --noheadings")
        if not active.stdout.strip() and active_gb == 0:
            return self._restore_swap(ctx, backups, "create-swap finished but no active swap was found", params)
        return self.result(
            True,
            f"Swap resized from {current_gb}GB to {target_gb}GB",
            parameters=[params],
            backups=backups,
            details={"active_gb": active_gb},
        )

    def _restore_swap(
        self, ctx: ModuleContext, backups: list[BackupRecord], reason: str, params: ParameterSet
    ) -> ModuleResult:
        """Put fstab back and turn the previous swap on again."""
        ctx.writer.restore_all(backups)
        swapon = ctx.connector.run("swapon -a")
        if not swapon.success:
            logger.error("swapon -a failed: %s", swapon.stderr.strip())
            reason += f"; swapon -a failed: {swapon.stderr.strip()}"
        else:
            reason += "; previous swap re-enabled"
        return self.result(
            False,
            reason,
            parameters=[params],
            backups=backups,
            details={"rolled_back": True},
        )

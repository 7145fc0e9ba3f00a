"""System limits: sysctl, security limits and Transparent Huge Pages."""

import logging

from server_optimizer.actions.apply import ApplyTarget
from server_optimizer.actions.renderers import render_limits, render_sysctl
from server_optimizer.engine.scaler import scale
from server_optimizer.model.server import BackupRecord, ConfigArtifact, ModuleResult, ParameterSet
from server_optimizer.modules import BaseModule, ModuleContext, register_module

logger = logging.getLogger(__name__)

SYSCTL_CONF = "/etc/sysctl.conf"
LIMITS_CONF = "/etc/security/limits.conf"
RC_LOCAL = "/etc/rc.local"
THP_DIR = "/sys/kernel/mm/transparent_hugepage"
THP_LINES = (
    f"echo never > {THP_DIR}/enabled",
    f"echo never > {THP_DIR}/defrag",
)
IPV6_KEYS = (
    "net.ipv6.conf.all.disable_ipv6",
    "net.ipv6.conf.default.disable_ipv6",
    "net.ipv6.conf.lo.disable_ipv6",
)


@register_module
class SystemModule(BaseModule):
    number = 1
    name = "system"
    title = "System Limits"

    def plan(self, ctx: ModuleContext) -> list[ParameterSet]:
        sysctl = scale("system", ctx.facts, ctx.server_class)
        if ctx.settings.disable_ipv6:
            sysctl = sysctl.with_values(**{key: 1 for key in IPV6_KEYS})
        limits = scale("limits", ctx.facts, ctx.server_class)
        return [self.validated(sysctl, ctx.facts), self.validated(limits, ctx.facts)]

    def run(self, ctx: ModuleContext) -> ModuleResult:
        sysctl, limits = self.plan(ctx)
        backups: list[BackupRecord] = []
        warnings = []
        with ctx.writer.staged(backups):
            backups.append(ctx.writer.write(ConfigArtifact(LIMITS_CONF, render_limits, mode="644"), limits))
            backups.append(ctx.writer.write(ConfigArtifact(SYSCTL_CONF, render_sysctl, mode="644"), sysctl))
            if ctx.connector.dir_exists(THP_DIR):
                warnings.extend(self._disable_thp(ctx, backups))
            else:
                logger.info("Transparent Huge Pages not available on this kernel")

        expected = sysctl["net.netfilter.nf_conntrack_max"]

        def verify() -> str | None:
            result = ctx.connector.run("sysctl -n net.netfilter.nf_conntrack_max")
            if not result.success:
                # nf_conntrack not loaded: the value applies once it is
                warnings.append("nf_conntrack is not loaded; nf_conntrack_max could not be read back")
                return None
            actual = result.stdout.strip()
            if actual != str(expected):
                return f"nf_conntrack_max reads {actual}, expected {expected}"
            return None

        outcome = ctx.applier.apply(
            ApplyTarget("sysctl", command="sysctl -e -p", verify=verify, timeout=ctx.settings.command_timeout),
            backups,
        )
        return self.from_apply(
            outcome,
            f"System limits applied for {ctx.server_class}",
            warnings=warnings,
            parameters=[sysctl, limits],
            backups=backups,
        )

    def _disable_thp(self, ctx: ModuleContext, backups: list[BackupRecord]) -> list[str]:
        warnings = []
        for line in THP_LINES:
            result = ctx.connector.run(line)
            if not result.success:
                warnings.append(f"Could not disable THP at runtime: {result.stderr.strip()}")

        current = ctx.connector.read_file(RC_LOCAL)
        if current is not None and "transparent_hugepage" in current:
            return warnings

        if current is None:
            content = "#!/bin/bash\n"
        else:
            content = current if current.endswith("\n") else current + "\n"
        content += "".join(f"{line}\n" for line in THP_LINES)
        backups.append(ctx.writer.backup(RC_LOCAL))
        ctx.writer.write_text(RC_LOCAL, content)
        ctx.connector.chmod(RC_LOCAL, "+x")
        logger.info("Added THP settings to %s", RC_LOCAL)
        return warnings

"""mod_lsapi: install, size the backend pool, monitor crashes."""

import csv
import io
import logging

from server_optimizer.actions.apply import ApplyTarget
from server_optimizer.actions.renderers import LSAPI_MONITOR_SCRIPT, render_lsapi, render_lsapi_monitor_unit
from server_optimizer.engine.scaler import scale
from server_optimizer.errors import ExternalToolError
from server_optimizer.model.server import BackupRecord, ConfigArtifact, ModuleResult, ParameterSet
from server_optimizer.modules import BaseModule, ModuleContext, register_module
from server_optimizer.scanner.php import PHPMemoryProfile, PHPMemoryScanner

logger = logging.getLogger(__name__)

LSAPI_PACKAGE = "ea-apache24-mod_lsapi"
LSAPI_CONF = "/etc/apache2/conf.d/lsapi.conf"
MONITOR_DIR = "/var/log/mod_lsapi"
MONITOR_LOG = f"{MONITOR_DIR}/lsapi_events.log"
MONITOR_SCRIPT = f"{MONITOR_DIR}/monitor_lsapi.sh"
CORE_DIR = "/var/cores/mod_lsapi"
MONITOR_SERVICE = "lsapi-monitor"
MONITOR_UNIT = f"/etc/systemd/system/{MONITOR_SERVICE}.service"


def profile_csv(profile: PHPMemoryProfile) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(profile.to_rows())
    return buffer.getvalue()


@register_module
class LsapiModule(BaseModule):
    number = 6
    name = "lsapi"
    title = "LSAPI Installation"

    def __init__(self) -> None:
        self.profile: PHPMemoryProfile | None = None
        self.warnings: list[str] = []

    def _analyze(self, ctx: ModuleContext) -> PHPMemoryProfile | None:
        if not ctx.whm.available():
            self.warnings.append("whmapi1 not found; PHP memory analysis skipped")
            return None
        try:
            return PHPMemoryScanner(ctx.connector, ctx.whm).scan()
        except ExternalToolError as e:
            self.warnings.append(f"PHP memory analysis failed: {e}")
            return None

    def plan(self, ctx: ModuleContext) -> list[ParameterSet]:
        self.profile = self._analyze(ctx)
        profile_mb = None
        if self.profile and self.profile.domains:
            logger.info(
                "PHP memory profile: average %sMB, max %sMB, recommended %sMB",
                self.profile.average_mb, self.profile.max_mb, self.profile.recommended_mb,
            )
            if ctx.settings.lsapi_use_memory_profile:
                profile_mb = self.profile.recommended_mb
        params = scale("lsapi", ctx.facts, ctx.server_class, memory_profile_mb=profile_mb)
        return [self.validated(params, ctx.facts)]

    def run(self, ctx: ModuleContext) -> ModuleResult:
        self.warnings = []
        if ctx.services.package_installed(LSAPI_PACKAGE):
            logger.info("mod_lsapi is already installed")
        else:
            result = ctx.services.install_package(LSAPI_PACKAGE)
            if not result.success:
                raise ExternalToolError(result.command, result.exit_code, result.stderr)

        ctx.connector.make_dirs(MONITOR_DIR)
        ctx.connector.make_dirs(CORE_DIR)
        ctx.connector.run(f"touch {MONITOR_LOG}")
        ctx.connector.chmod(MONITOR_LOG, "644")
        ctx.connector.chmod(CORE_DIR, "755")

        (params,) = self.plan(ctx)
        details = {}
        if self.profile and self.profile.domains:
            details["php_memory_recommended_mb"] = self.profile.recommended_mb
            details["report"] = self._write_report(ctx, self.profile)

        backups: list[BackupRecord] = []
        with ctx.writer.staged(backups):
            backups.append(
                ctx.writer.write(ConfigArtifact(LSAPI_CONF, render_lsapi, mode="644", owner="root:root"), params)
            )
            self._install_monitor(ctx, backups)

        def verify() -> str | None:
            if not ctx.connector.run("httpd -M 2>/dev/null | grep -q lsapi_module").success:
                self.warnings.append("httpd restarted but lsapi_module is not listed by 'httpd -M'")
            return None

        outcome = ctx.applier.apply(
            ApplyTarget(
                "lsapi",
                service="httpd",
                verify=verify,
                timeout=ctx.settings.command_timeout,
                skip_if_inactive=True,
            ),
            backups,
        )
        return self.from_apply(
            outcome,
            f"mod_lsapi configured: {params['children']} children at {params['max_process_mem']}MB",
            warnings=self.warnings,
            parameters=[params],
            backups=backups,
            details=details,
        )

    def _write_report(self, ctx: ModuleContext, profile: PHPMemoryProfile) -> str:
        timestamp = ctx.writer.clock().strftime("%Y%m%d_%H%M%S")
        path = f"{ctx.settings.report_dir.rstrip('/')}/memory_analysis_{timestamp}.csv"
        ctx.connector.make_dirs(ctx.settings.report_dir)
        ctx.writer.write_text(path, profile_csv(profile))
        return path

    def _install_monitor(self, ctx: ModuleContext, backups: list[BackupRecord]) -> None:
        for path, content in (
            (MONITOR_SCRIPT, LSAPI_MONITOR_SCRIPT),
            (MONITOR_UNIT, render_lsapi_monitor_unit(MONITOR_SCRIPT)),
        ):
            backups.append(ctx.writer.backup(path))
            ctx.writer.write_text(path, content)
        ctx.connector.chmod(MONITOR_SCRIPT, "+x")

        for step, result in (
            ("daemon-reload", ctx.services.daemon_reload()),
            ("enable", ctx.services.enable(MONITOR_SERVICE)),
            ("start", ctx.services.start(MONITOR_SERVICE)),
        ):
            if not result.success:
                self.warnings.append(f"{MONITOR_SERVICE} {step} failed: {result.stderr.strip()}")

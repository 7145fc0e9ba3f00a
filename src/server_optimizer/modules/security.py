"""Security: the Apache Ultimate Bad Bot Blocker under /home."""

import logging

from server_optimizer.actions.apply import ApplyTarget
from server_optimizer.errors import ExternalToolError
from server_optimizer.model.server import BackupRecord, ModuleResult
from server_optimizer.modules import BaseModule, ModuleContext, register_module
from server_optimizer.scanner.network import server_ipv4_addresses

logger = logging.getLogger(__name__)

APACHE_CONF = "/etc/apache2"
CUSTOM_DIR = f"{APACHE_CONF}/custom.d"
BLOCKER_CONF = f"{APACHE_CONF}/conf.d/bad_bot_blocker.conf"
BLOCKER_URL = (
    "https://raw.githubusercontent.com/mitchellkrogza/apache-ultimate-bad-bot-blocker/master/Apache_2.4/custom.d"
)
BLOCKER_FILES = (
    "globalblacklist.conf",
    "whitelist-ips.conf",
    "whitelist-domains.conf",
    "blacklist-ips.conf",
    "bad-referrer-words.conf",
    "blacklist-user-agents.conf",
)

CLOUDFLARE_RANGES = (
    "103.21.244.0/22",
    "103.22.200.0/22",
    "103.31.4.0/22",
    "104.16.0.0/13",
    "104.24.0.0/14",
    "108.162.192.0/18",
    "131.0.72.0/22",
    "141.101.64.0/18",
    "162.158.0.0/15",
    "172.64.0.0/13",
    "173.245.48.0/20",
    "188.114.96.0/20",
    "190.93.240.0/20",
    "197.234.240.0/22",
    "198.41.128.0/17",
    "199.27.128.0/21",
    "2400:cb00::/32",
    "2606:4700::/32",
    "2803:f800::/32",
    "2405:b500::/32",
    "2405:8100::/32",
    "2c0f:f248::/32",
    "2a06:98c0::/29",
)


def render_whitelist_ips(server_ips: list[str]) -> str:
    lines = ["# Cloudflare IP ranges"]
    lines += [f"Require ip {cidr}" for cidr in CLOUDFLARE_RANGES]
    lines += ["", "# Server IPs"]
    lines += [f"Require ip {ip}" for ip in server_ips]
    return "\n".join(lines) + "\n"


def render_whitelist_domains(domains: list[str]) -> str:
    lines = ["# Whitelisted domains"]
    lines += [f"SetEnvIfNoCase Referer ~*{domain} good_ref" for domain in domains if domain]
    return "\n".join(lines) + "\n"


def render_blocker_conf() -> str:
    return (
        "<Directory /home>\n"
        "    AllowOverride All\n"
        "    Options FollowSymLinks\n"
        f"    Include {CUSTOM_DIR}/globalblacklist.conf\n"
        "</Directory>\n"
    )


@register_module
class SecurityModule(BaseModule):
    number = 9
    name = "security"
    title = "Bad Bot Blocker"

    def run(self, ctx: ModuleContext) -> ModuleResult:
        result = ctx.connector.make_dirs(CUSTOM_DIR)
        if not result.success:
            raise ExternalToolError(result.command, result.exit_code, result.stderr)

        warnings = self._download(ctx)
        backups: list[BackupRecord] = []

        ips = server_ipv4_addresses(ctx.connector)
        if not ips:
            warnings.append("No server IPv4 addresses found; only Cloudflare ranges whitelisted")
        domains = self._domains(ctx, warnings)
        with ctx.writer.staged(backups):
            self._replace(ctx, f"{CUSTOM_DIR}/whitelist-ips.conf", render_whitelist_ips(ips), backups)
            if domains:
                self._replace(ctx, f"{CUSTOM_DIR}/whitelist-domains.conf", render_whitelist_domains(domains), backups)
            self._replace(ctx, BLOCKER_CONF, render_blocker_conf(), backups)
        ctx.connector.chown(BLOCKER_CONF, "root:root")
        ctx.connector.chmod(BLOCKER_CONF, "0600")

        outcome = ctx.applier.apply(
            ApplyTarget("security", service="httpd", timeout=ctx.settings.command_timeout, skip_if_inactive=True),
            backups,
        )
        return self.from_apply(
            outcome,
            f"Bad Bot Blocker installed ({len(ips)} server IPs, {len(domains)} domains whitelisted)",
            warnings=warnings,
            backups=backups,
        )

    def _download(self, ctx: ModuleContext) -> list[str]:
        warnings = []
        for name in BLOCKER_FILES:
            command = f"wget -q -O {CUSTOM_DIR}/{name} {BLOCKER_URL}/{name}"
            result = ctx.connector.run(command, timeout=ctx.settings.command_timeout)
            if not result.success:
                logger.error("Failed to download %s: %s", name, result.stderr.strip())
                warnings.append(f"Failed to download {name}")
        if warnings:
            logger.warning("%d blocker file(s) failed to download", len(warnings))
        return warnings

    def _domains(self, ctx: ModuleContext, warnings: list[str]) -> list[str]:
        if not ctx.whm.available():
            warnings.append("whmapi1 not found; domain whitelist not generated")
            return []
        try:
            domains = [info.domain for info in ctx.whm.list_domains(("main", "addon"))]
        except ExternalToolError as e:
            warnings.append(f"Could not list domains: {e}")
            return []
        if not domains:
            warnings.append("No domains found; domain whitelist not generated")
        return domains

    def _replace(self, ctx: ModuleContext, path: str, content: str, backups: list[BackupRecord]) -> None:
        backups.append(ctx.writer.backup(path))
        ctx.writer.write_text(path, content)

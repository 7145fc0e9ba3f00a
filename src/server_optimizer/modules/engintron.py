"""Engintron: Nginx in front of Apache on cPanel servers."""

import logging
import re

from server_optimizer.errors import ExternalToolError, PreconditionError
from server_optimizer.model.server import ModuleResult
from server_optimizer.modules import BaseModule, ModuleContext, register_module
from server_optimizer.scanner.network import server_ipv4_addresses

logger = logging.getLogger(__name__)

INSTALLER_URL = "https://raw.githubusercontent.com/engintron/engintron/master/engintron.sh"
INSTALLER_PATH = "/root/engintron.sh"
ENGINTRON_BIN = "/opt/engintron/engintron.sh"
CUSTOM_RULES = "/etc/nginx/custom_rules"
AUTOSSL_CRON = "/etc/cron.d/cpanel_autossl"
AUTOSSL_COMMAND = "/usr/local/cpanel/bin/autossl_check --all"
NGINX_RELOAD = "/usr/sbin/nginx -s reload"

_PROXY_RE = re.compile(r"^\s*set \$PROXY_DOMAIN_OR_IP.*$", re.MULTILINE)


def set_proxy_ip(rules: str, ip: str) -> str:
    line = f'set $PROXY_DOMAIN_OR_IP "{ip}"; # Use your cPanel\'s shared IP address here'
    if _PROXY_RE.search(rules):
        return _PROXY_RE.sub(lambda _m: line, rules, count=1)
    if rules and not rules.endswith("\n"):
        rules += "\n"
    return rules + line + "\n"


def add_autossl_reload(cron: str) -> str | None:
    """Chain an nginx reload after AutoSSL; None when the line is missing."""
    if f"{AUTOSSL_COMMAND} && {NGINX_RELOAD}" in cron:
        return cron
    if AUTOSSL_COMMAND not in cron:
        return None
    return cron.replace(AUTOSSL_COMMAND, f"{AUTOSSL_COMMAND} && {NGINX_RELOAD}")


@register_module
class EngintronModule(BaseModule):
    number = 5
    name = "engintron"
    title = "Engintron Installation"

    def run(self, ctx: ModuleContext) -> ModuleResult:
        if ctx.services.is_active("lsws"):
            return self.result(True, "LiteSpeed is active; Engintron skipped")

        for command in (
            f"wget -q -O {INSTALLER_PATH} {INSTALLER_URL}",
            f"chmod +x {INSTALLER_PATH}",
            f"bash {INSTALLER_PATH} install",
        ):
            result = ctx.connector.run(command, timeout=ctx.settings.install_timeout)
            if not result.success:
                raise ExternalToolError(command, result.exit_code, result.stderr)

        warnings = []
        backups = []
        addresses = server_ipv4_addresses(ctx.connector)
        if not addresses:
            raise PreconditionError("Could not determine the server's primary IP address")
        server_ip = addresses[0]
        logger.info("Server IP detected: %s", server_ip)

        cron = ctx.connector.read_file(AUTOSSL_CRON)
        updated = add_autossl_reload(cron) if cron is not None else None
        rules = ctx.connector.read_file(CUSTOM_RULES)
        with ctx.writer.staged(backups):
            if rules is None:
                warnings.append(f"{CUSTOM_RULES} not found; PROXY_DOMAIN_OR_IP not set")
            else:
                backups.append(ctx.writer.backup(CUSTOM_RULES))
                ctx.writer.write_text(CUSTOM_RULES, set_proxy_ip(rules, server_ip))
            if updated is None:
                warnings.append("AutoSSL cron job not found; nginx will not reload after certificate renewal")
            elif updated != cron:
                backups.append(ctx.writer.backup(AUTOSSL_CRON))
                ctx.writer.write_text(AUTOSSL_CRON, updated)

        if ctx.connector.file_exists(ENGINTRON_BIN):
            reload = ctx.connector.run(f"{ENGINTRON_BIN} reload", timeout=ctx.settings.command_timeout)
            if not reload.success:
                warnings.append(f"Engintron reload failed: {reload.stderr.strip()}")
        else:
            warnings.append(f"{ENGINTRON_BIN} not found; configuration not reloaded")

        return self.result(
            True,
            f"Engintron installed, proxying to {server_ip}",
            warnings=warnings,
            backups=backups,
        )

"""Redis: install, size maxmemory next to MySQL, and wire up PHP."""

import logging
import shlex

from server_optimizer.actions.apply import ApplyTarget
from server_optimizer.actions.renderers import render_redis
from server_optimizer.engine.scaler import scale
from server_optimizer.errors import ExternalToolError, PreconditionError
from server_optimizer.model.server import ConfigArtifact, ModuleResult, ParameterSet, ServerClass
from server_optimizer.modules import BaseModule, ModuleContext, register_module
from server_optimizer.scanner.mysql import MySQLScanner

logger = logging.getLogger(__name__)

REDIS_CONF_CANDIDATES = ("/etc/redis/redis.conf", "/etc/redis.conf")
REDIS_DATA_DIR = "/var/lib/redis"
REMI_RELEASE_URL = "https://rpms.remirepo.net/enterprise/remi-release-{release}.rpm"
PHP_MIN_VERSION = (7, 2)


@register_module
class RedisModule(BaseModule):
    number = 4
    name = "redis"
    title = "Redis Installation"

    def _server_class(self, ctx: ModuleContext, header_type: str | None) -> ServerClass:
        if ctx.explicit_class is not None:
            return ctx.explicit_class
        if header_type:
            try:
                server_class = ServerClass.parse(header_type)
            except ValueError:
                logger.warning("Ignoring unknown server type %r in my.cnf", header_type)
            else:
                logger.info("Using server type %s from MySQL configuration", server_class)
                return server_class
        return ctx.server_class

    def plan(self, ctx: ModuleContext) -> list[ParameterSet]:
        mysql = MySQLScanner(ctx.connector).scan()
        server_class = self._server_class(ctx, mysql.server_type)
        if mysql.buffer_pool_mb:
            logger.info("MySQL innodb_buffer_pool_size: %sMB", mysql.buffer_pool_mb)
        params = scale("redis", ctx.facts, server_class, other_service_mb=mysql.buffer_pool_mb)
        params = params.with_values(databases=ctx.settings.redis_db_limit)
        return [self.validated(params, ctx.facts)]

    def run(self, ctx: ModuleContext) -> ModuleResult:
        (params,) = self.plan(ctx)

        if not ctx.services.is_active("redis"):
            self._install(ctx)
        else:
            logger.info("Redis is already installed and running")

        conf = next((p for p in REDIS_CONF_CANDIDATES if ctx.connector.file_exists(p)), None)
        if conf is None:
            raise PreconditionError("Redis configuration file not found")

        backups = [ctx.writer.write(ConfigArtifact(conf, render_redis), params)]
        ctx.connector.make_dirs(REDIS_DATA_DIR)
        ctx.connector.chown(REDIS_DATA_DIR, "redis:redis")
        ctx.connector.chmod(REDIS_DATA_DIR, "750")

        expected_bytes = params["maxmemory_mb"] * 1024 * 1024

        def verify() -> str | None:
            result = ctx.connector.run("redis-cli config get maxmemory")
            lines = result.stdout.split()
            if not result.success or len(lines) < 2:
                return f"redis-cli could not read maxmemory: {result.stderr.strip() or result.stdout.strip()}"
            if lines[1] != str(expected_bytes):
                return f"maxmemory is {lines[1]} bytes, expected {expected_bytes}"
            return None

        outcome = ctx.applier.apply(
            ApplyTarget("redis", service="redis", verify=verify, timeout=ctx.settings.command_timeout),
            backups,
        )
        if not outcome.ok:
            return self.from_apply(outcome, "", parameters=[params], backups=backups)

        warnings = self._install_php_extensions(ctx)
        return self.from_apply(
            outcome,
            f"Redis configured with maxmemory {params['maxmemory']} ({conf})",
            warnings=warnings,
            parameters=[params],
            backups=backups,
        )

    def _os_release(self, ctx: ModuleContext) -> str:
        result = ctx.connector.run("rpm -q --qf '%{version}' $(rpm -q --whatprovides redhat-release)")
        release = result.stdout.strip()[:1]
        if not result.success or not release.isdigit():
            raise PreconditionError("Could not determine OS release version")
        return release

    def _install(self, ctx: ModuleContext) -> None:
        """Remi repo, redis package, enable and start.

        Raises:
            ExternalToolError: Any step failed.
        """
        services = ctx.services
        if not services.package_installed("remi-release"):
            url = REMI_RELEASE_URL.format(release=self._os_release(ctx))
            result = services.install_package(url)
            if not result.success:
                raise ExternalToolError(result.command, result.exit_code, result.stderr)
            clean = ctx.connector.run("yum clean all", timeout=ctx.settings.install_timeout)
            if not clean.success:
                logger.warning("Could not clean the yum cache: %s", clean.stderr.strip())

        for step in (
            lambda: services.install_package("redis", "--enablerepo=remi", "--disableplugin=priorities"),
            lambda: services.enable("redis"),
            lambda: services.start("redis"),
        ):
            result = step()
            if not result.success:
                raise ExternalToolError(result.command, result.exit_code, result.stderr)
        logger.info("Redis installed and started")

    def _install_php_extensions(self, ctx: ModuleContext) -> list[str]:
        """PECL redis for every EA-PHP >= 7.2. Failures become warnings."""
        warnings = []
        try:
            versions = ctx.whm.installed_php_versions()
        except ExternalToolError as e:
            return [f"Could not list PHP versions: {e}"]

        for php in versions:
            binary = f"/opt/cpanel/{php}/root/usr/bin/php"
            if not ctx.connector.file_exists(binary):
                warnings.append(f"PHP binary not found for {php}")
                continue
            version = ctx.connector.run(f"{shlex.quote(binary)} -r 'echo PHP_MAJOR_VERSION.\".\".PHP_MINOR_VERSION;'")
            try:
                major, minor = (int(part) for part in version.stdout.strip().split(".")[:2])
            except ValueError:
                warnings.append(f"Could not read the PHP version of {php}")
                continue
            if (major, minor) < PHP_MIN_VERSION:
                logger.info("Skipping PECL redis for %s (PHP %s.%s)", php, major, minor)
                continue
            if ctx.connector.run(f"{shlex.quote(binary)} -m | grep -qi '^redis$'").success:
                logger.info("PECL redis already loaded for %s", php)
                continue

            pecl = f"/opt/cpanel/{php}/root/usr/bin/pecl"
            result = ctx.connector.run(
                f"printf '\\n\\n\\n' | {shlex.quote(pecl)} install igbinary redis",
                timeout=ctx.settings.install_timeout,
            )
            if result.success:
                logger.info("Installed PECL redis for %s", php)
            else:
                logger.warning("PECL redis failed for %s: %s", php, result.stderr.strip())
                warnings.append(f"Failed to install the Redis extension for {php}")
        return warnings

"""WordPress: point every site at its own Redis database."""

import logging
import posixpath
import shlex

from server_optimizer.connector.wpcli import WpCli
from server_optimizer.errors import PreconditionError
from server_optimizer.model.server import ModuleResult
from server_optimizer.modules import BaseModule, ModuleContext, register_module

logger = logging.getLogger(__name__)

PLUGIN = "redis-cache"
REDIS_HOST = "127.0.0.1"
REDIS_PORT = "6379"
WP_MEMORY_LIMIT = "256M"


class SiteError(Exception):
    """One site could not be configured; the batch continues."""


def find_sites(ctx: ModuleContext) -> list[str]:
    """WordPress roots under the search root, plugin bundles excluded."""
    root = ctx.settings.wordpress_root
    result = ctx.connector.run(
        f"find {shlex.quote(root)} -type f -name wp-config.php",
        timeout=ctx.settings.install_timeout,
    )
    sites = []
    for path in sorted(result.stdout.splitlines()):
        path = path.strip()
        if not path:
            continue
        if "/plugins/" in path:
            logger.debug("Skipping plugin directory: %s", path)
            continue
        sites.append(posixpath.dirname(path))
    return sites


def configure_site(wp: WpCli, path: str, database: int) -> None:
    """Install the plugin and point the site at ``database``.

    Raises:
        SiteError: A required step failed.
    """
    if not wp.is_installed(path):
        raise SiteError("WordPress is not fully installed")

    # Best effort; older wp-config.php layouts may refuse it.
    wp.config_set(path, "WP_MEMORY_LIMIT", WP_MEMORY_LIMIT)

    if not wp.plugin_is_installed(path, PLUGIN):
        result = wp.plugin_install(path, PLUGIN)
        if not result.success:
            raise SiteError(f"plugin install failed: {result.stderr.strip()}")
    result = wp.plugin_activate(path, PLUGIN)
    if not result.success:
        raise SiteError(f"plugin activation failed: {result.stderr.strip()}")

    for key, value in (
        ("WP_REDIS_HOST", REDIS_HOST),
        ("WP_REDIS_PORT", REDIS_PORT),
        ("WP_REDIS_DATABASE", str(database)),
    ):
        result = wp.config_set(path, key, value)
        if not result.success:
            raise SiteError(f"could not set {key}: {result.stderr.strip()}")

    result = wp.redis_enable(path)
    if not result.success:
        status = wp.redis_status(path)
        if "already enabled" not in (status.stdout + status.stderr):
            raise SiteError(f"wp redis enable failed: {result.stderr.strip()}")


@register_module
class WordPressModule(BaseModule):
    number = 7
    name = "wordpress"
    title = "WordPress Redis Configuration"

    def run(self, ctx: ModuleContext) -> ModuleResult:
        if not ctx.wpcli.available():
            raise PreconditionError("WP-CLI not found; install it before configuring WordPress")

        limit = ctx.settings.redis_db_limit
        configured: dict[str, int] = {}
        warnings = []
        database = 0

        for path in find_sites(ctx):
            if database >= limit:
                warnings.append(f"Redis database limit of {limit} reached; remaining sites skipped")
                break
            logger.info("Processing WordPress site at %s", path)
            try:
                configure_site(ctx.wpcli, path, database)
            except SiteError as e:
                logger.warning("Skipping %s: %s", path, e)
                warnings.append(f"{path}: {e}")
                continue
            configured[path] = database
            database += 1

        return self.result(
            True,
            f"Redis configured for {len(configured)} WordPress site(s)",
            warnings=warnings,
            details={"sites": configured},
        )

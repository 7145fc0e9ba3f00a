"""MySQL/MariaDB: my.cnf by server class, from a template or the table."""

import logging
import re

from server_optimizer.actions.apply import ApplyTarget
from server_optimizer.actions.renderers import render_mysql
from server_optimizer.engine.tables import lookup
from server_optimizer.errors import PreconditionError
from server_optimizer.model.server import ConfigArtifact, ModuleResult, ParameterSet, ServerClass
from server_optimizer.modules import BaseModule, ModuleContext, register_module
from server_optimizer.scanner.mysql import MY_CNF, MySQLScanner, parse_buffer_pool_mb

logger = logging.getLogger(__name__)

# Lines in the shipped templates known to stop some MySQL builds from starting.
RISKY_TEMPLATE_LINES = frozenset({
    "performance_schema = on",
    "performance-schema-consumer-events-statements-history-long = ON",
    "performance-schema-consumer-events-statements-history = ON",
    "performance-schema-consumer-events-statements-current = ON",
    "performance-schema-consumer-events-stages-current=ON",
    "performance-schema-consumer-events-stages-history=ON",
    "performance-schema-consumer-events-stages-history-long=ON",
    "performance-schema-consumer-events-transactions-current=ON",
    "performance-schema-consumer-events-transactions-history=ON",
    "performance-schema-consumer-events-transactions-history-long=ON",
    "performance-schema-consumer-events-waits-current=ON",
    "performance-schema-consumer-events-waits-history=ON",
    "performance-schema-consumer-events-waits-history-long=ON",
    "performance-schema-instrument='%=ON'",
    "max-digest-length=2048",
    "performance-schema-max-digest-length=2048",
})

_UNCOMMENT = (
    (re.compile(r'^#(sql_mode\s*=\s*"")', re.MULTILINE), r"\1"),
    (re.compile(r"^#(default_authentication_plugin)", re.MULTILINE), r"\1"),
)


def prepare_template(template: str, server_class: ServerClass) -> str:
    """Header, risky lines dropped, selected settings uncommented."""
    kept = [line for line in template.splitlines() if line.strip() not in RISKY_TEMPLATE_LINES]
    content = "\n".join(kept) + "\n"
    for pattern, replacement in _UNCOMMENT:
        content = pattern.sub(replacement, content)
    return f"# Server Type: {server_class}\n{content}"


@register_module
class MySQLModule(BaseModule):
    number = 3
    name = "mysql"
    title = "MySQL Optimization"

    def _template_path(self, ctx: ModuleContext) -> str | None:
        directory = ctx.settings.mysql_templates_dir
        if not directory:
            return None
        path = f"{directory.rstrip('/')}/{ctx.server_class}.cnf"
        return path if ctx.connector.file_exists(path) else None

    def plan(self, ctx: ModuleContext) -> list[ParameterSet]:
        # The table doubles as the list of supported classes.
        row = lookup("mysql", ctx.server_class)
        template = self._template_path(ctx)
        if template:
            return [ParameterSet("mysql", ctx.server_class, {"template": template})]
        return [self.validated(row, ctx.facts)]

    def run(self, ctx: ModuleContext) -> ModuleResult:
        service = MySQLScanner(ctx.connector).detect_service()
        if service is None:
            raise PreconditionError("MySQL/MariaDB is not installed or not managed by systemd")
        logger.info("Detected MySQL service: %s", service)

        (params,) = self.plan(ctx)
        if "template" in params:
            template = ctx.connector.read_file(params["template"])
            if not template or not template.strip():
                raise PreconditionError(f"MySQL template {params['template']} is empty or unreadable")
            content = prepare_template(template, ctx.server_class)
            artifact = ConfigArtifact(MY_CNF, lambda _params, _existing: content, mode="644")
            source = params["template"]
        else:
            artifact = ConfigArtifact(MY_CNF, render_mysql, mode="644")
            source = "built-in table"

        backups = [ctx.writer.write(artifact, params)]
        warnings: list[str] = []

        def verify() -> str | None:
            written = ctx.connector.read_file(MY_CNF)
            if not written or not written.strip():
                return f"{MY_CNF} is missing or empty"
            expected_mb = parse_buffer_pool_mb(written)
            result = ctx.connector.run('mysql -NBe "SELECT @@innodb_buffer_pool_size"')
            if not result.success:
                warnings.append("Could not query MySQL to confirm innodb_buffer_pool_size")
                return None
            try:
                actual_mb = int(result.stdout.strip()) // (1024 * 1024)
            except ValueError:
                warnings.append(f"Unexpected innodb_buffer_pool_size reply: {result.stdout.strip()}")
                return None
            # MySQL rounds the pool up to a multiple of chunk size x instances.
            if expected_mb and actual_mb < expected_mb:
                return f"innodb_buffer_pool_size is {actual_mb}MB, expected {expected_mb}MB"
            return None

        outcome = ctx.applier.apply(
            ApplyTarget("mysql", service=service, verify=verify, timeout=ctx.settings.install_timeout),
            backups,
        )
        version = ctx.connector.run("mysql --version")
        details = {"service": service, "source": source}
        if version.success:
            details["version"] = version.stdout.strip().splitlines()[0] if version.stdout.strip() else ""
        return self.from_apply(
            outcome,
            f"MySQL optimized for {ctx.server_class} from {source}",
            warnings=warnings,
            parameters=[params],
            backups=backups,
            details=details,
        )

"""Shared run pipeline.

Used by every CLI command that touches a server.
Public API:
    preflight(connector) -> None
    build_context(connector, settings, ...) -> ModuleContext
    run_modules(ctx, modules, ...) -> RunResult
    plan_modules(ctx, modules) -> list[PlanEntry]
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

from server_optimizer.actions.apply import ApplyAction, ConfigWriter
from server_optimizer.actions.report import ReportAction
from server_optimizer.config import OptimizerSettings
from server_optimizer.connector.base import Connector
from server_optimizer.connector.services import ServiceManager
from server_optimizer.connector.whm import WhmApi
from server_optimizer.connector.wpcli import WpCli
from server_optimizer.engine.resolver import ServerProfileResolver
from server_optimizer.errors import OptimizerError, PreconditionError
from server_optimizer.model.server import ModuleResult, ParameterSet, ServerClass
from server_optimizer.modules import BaseModule, ModuleContext
from server_optimizer.scanner.resources import ResourceScanner

logger = logging.getLogger(__name__)

CPANEL_DIR = "/usr/local/cpanel"
REDHAT_RELEASE = "/etc/redhat-release"


@dataclass
class RunResult:
    """Outcome of one optimizer run."""

    results: list[ModuleResult] = field(default_factory=list)
    stopped: bool = False  # the user chose not to continue after a failure

    @property
    def failed(self) -> list[ModuleResult]:
        return [r for r in self.results if not r.success]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed or self.stopped else 0


@dataclass
class PlanEntry:
    """Parameter sets a module would write, or why it cannot say."""

    module: str
    parameters: list[ParameterSet] = field(default_factory=list)
    error: str | None = None


def preflight(connector: Connector) -> None:
    """Root on a RHEL-family cPanel server, or nothing runs.

    Raises:
        PreconditionError: A requirement is not met.
    """
    uid = connector.run("id -u")
    if not uid.success or uid.stdout.strip() != "0":
        raise PreconditionError("The optimizer must run as root")
    if not connector.file_exists(REDHAT_RELEASE):
        raise PreconditionError("Only RHEL-family systems (CentOS, AlmaLinux, CloudLinux) are supported")
    if not connector.dir_exists(CPANEL_DIR):
        raise PreconditionError("cPanel/WHM is not installed")

    release = connector.read_file(REDHAT_RELEASE)
    version = connector.run(f"{CPANEL_DIR}/cpanel -V")
    logger.info("OS: %s", (release or "").strip())
    logger.info("cPanel version: %s", version.stdout.strip() if version.success else "unknown")


def build_context(
    connector: Connector,
    settings: OptimizerSettings,
    report: ReportAction,
    *,
    explicit_class: ServerClass | None = None,
    interactive: bool = False,
    confirm: Callable[[str], bool] | None = None,
) -> tuple[ModuleContext, list[str]]:
    """Resolve the host and wire up every collaborator.

    Returns the context and the resolver's drift warnings.

    Raises:
        ResourceDetectionError: RAM or CPU could not be read.
    """
    resolver = ServerProfileResolver(ResourceScanner(connector))
    server_class, facts = resolver.resolve(explicit_class)

    services = ServiceManager(connector, install_timeout=settings.install_timeout)
    writer = ConfigWriter(connector)
    ctx = ModuleContext(
        connector=connector,
        services=services,
        whm=WhmApi(connector),
        wpcli=WpCli(connector),
        writer=writer,
        applier=ApplyAction(connector, services, writer),
        settings=settings,
        server_class=server_class,
        facts=facts,
        report=report,
        explicit_class=explicit_class,
        interactive=interactive,
    )
    if confirm is not None:
        ctx.confirm = confirm
    return ctx, resolver.warnings


def run_module(module: BaseModule, ctx: ModuleContext) -> ModuleResult:
    """Run one module; optimizer errors become a failed result."""
    try:
        return module.run(ctx)
    except OptimizerError as e:
        logger.error("Module %s failed: %s", module.name, e)
        return module.result(False, str(e))


def run_modules(
    ctx: ModuleContext,
    modules: list[type[BaseModule]],
    *,
    continue_after_failure: Callable[[ModuleResult], bool] | None = None,
) -> RunResult:
    """Run modules in order, one at a time.

    Modules disabled in settings are skipped. After a failure the run
    continues unless ``continue_after_failure`` returns False.
    """
    run = RunResult()
    for module_class in modules:
        module = module_class()
        if not ctx.settings.module_enabled(module.name):
            logger.info("Module %s is disabled in settings; skipped", module.name)
            continue

        ctx.report.report_module_start(module.number, module.title)
        logger.info("Executing module: %s", module.name)
        result = run_module(module, ctx)
        run.results.append(result)
        ctx.report.report_module_result(result)

        if result.success:
            logger.info("Module executed successfully: %s", module.name)
            continue
        logger.error("Module execution failed: %s", module.name)
        if continue_after_failure is not None and not continue_after_failure(result):
            logger.info("Execution stopped by user after module failure")
            run.stopped = True
            break
    return run


def plan_modules(ctx: ModuleContext, modules: list[type[BaseModule]]) -> list[PlanEntry]:
    """What each module would write. Nothing on the server changes."""
    entries = []
    for module_class in modules:
        module = module_class()
        try:
            entries.append(PlanEntry(module.name, module.plan(ctx)))
        except OptimizerError as e:
            entries.append(PlanEntry(module.name, error=str(e)))
    return entries

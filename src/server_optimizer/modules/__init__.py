"""Optimization module plugin system.

Each module tunes one part of the server and reports a ModuleResult.
Modules register themselves with ``@register_module`` and are run in
order of their menu number.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

from server_optimizer.actions.apply import ApplyAction, ConfigWriter
from server_optimizer.actions.report import ReportAction
from server_optimizer.config import OptimizerSettings
from server_optimizer.connector.base import Connector
from server_optimizer.connector.services import ServiceManager
from server_optimizer.connector.whm import WhmApi
from server_optimizer.connector.wpcli import WpCli
from server_optimizer.engine.bounds import bounds_for
from server_optimizer.engine.validator import validate
from server_optimizer.model.server import (
    ApplyResult,
    ApplyStatus,
    ModuleResult,
    ParameterSet,
    ResourceFacts,
    ServerClass,
)


@dataclass
class ModuleContext:
    """Everything a module may use. Built once per run."""

    connector: Connector
    services: ServiceManager
    whm: WhmApi
    wpcli: WpCli
    writer: ConfigWriter
    applier: ApplyAction
    settings: OptimizerSettings
    server_class: ServerClass
    facts: ResourceFacts
    report: ReportAction
    explicit_class: ServerClass | None = None
    interactive: bool = False
    confirm: Callable[[str], bool] = field(default=lambda question: True)


class BaseModule(ABC):
    """Abstract base class for all optimization modules."""

    number: int = 0
    name: str = ""
    title: str = ""

    @abstractmethod
    def run(self, ctx: ModuleContext) -> ModuleResult:
        """Apply the module's changes and report the outcome."""
        ...

    def plan(self, ctx: ModuleContext) -> list[ParameterSet]:
        """Validated parameter sets the module would write. Read-only."""
        return []

    def validated(self, params: ParameterSet, facts: ResourceFacts) -> ParameterSet:
        return validate(params, bounds_for(params.subsystem, facts))

    def result(self, success: bool, reason: str = "", **kwargs) -> ModuleResult:
        return ModuleResult(name=self.name, success=success, reason=reason, **kwargs)

    def from_apply(
        self,
        outcome: ApplyResult,
        ok_reason: str,
        *,
        warnings: list[str] | None = None,
        **kwargs,
    ) -> ModuleResult:
        """Turn an ApplyResult into the module's result.

        A rollback always fails the module, even when the previous
        configuration came back up.
        """
        warnings = list(warnings or [])
        if outcome.ok:
            if outcome.status is ApplyStatus.DEGRADED and outcome.detail:
                warnings.append(outcome.detail)
            return self.result(True, ok_reason, warnings=warnings, **kwargs)
        details = kwargs.pop("details", {})
        details.update(rolled_back=outcome.rolled_back, restored=outcome.restored)
        return self.result(False, outcome.detail, warnings=warnings, details=details, **kwargs)


_module_registry: list[type[BaseModule]] = []


def register_module(module_class: type[BaseModule]) -> type[BaseModule]:
    """Decorator to register a module class."""
    _module_registry.append(module_class)
    return module_class


def get_all_modules() -> list[type[BaseModule]]:
    """Registered modules, ordered by menu number."""
    # Importing the implementations populates the registry.
    from server_optimizer.modules import (  # noqa: F401
        apache,
        apache_mpm,
        cpanel,
        engintron,
        imunify,
        lsapi,
        mysql,
        redis,
        security,
        swap,
        system,
        wordpress,
    )

    return sorted(_module_registry, key=lambda m: m.number)


def select_modules(selection: str | None) -> list[type[BaseModule]]:
    """Resolve ``--modules 1,3,redis`` into module classes.

    Raises:
        ValueError: An entry matches no module.
    """
    modules = get_all_modules()
    if not selection:
        return modules

    by_number = {str(m.number): m for m in modules}
    by_name = {m.name: m for m in modules}
    chosen: list[type[BaseModule]] = []
    for token in (t.strip().lower() for t in selection.split(",")):
        if not token:
            continue
        module = by_number.get(token) or by_name.get(token)
        if module is None:
            raise ValueError(f"Unknown module: {token}")
        if module not in chosen:
            chosen.append(module)
    return sorted(chosen, key=lambda m: m.number)

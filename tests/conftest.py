"""Pytest configuration and fixtures for server-optimizer tests."""

import io
import sys
from datetime import datetime
from pathlib import Path

import pytest
from rich.console import Console

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from server_optimizer.actions.apply import ApplyAction, ConfigWriter
from server_optimizer.actions.report import ReportAction
from server_optimizer.config import OptimizerSettings
from server_optimizer.connector.base import CommandResult, Connector
from server_optimizer.connector.services import ServiceManager
from server_optimizer.connector.whm import WhmApi
from server_optimizer.connector.wpcli import WpCli
from server_optimizer.model.server import ResourceFacts, ServerClass
from server_optimizer.modules import ModuleContext

FIXED_NOW = datetime(2024, 5, 1, 12, 30, 45, 123456)


class FakeConnector(Connector):
    """In-memory host: a dict of files plus scripted command replies.

    Replies are matched by substring, most recently registered first.
    A reply given as a list is consumed one entry per call; the last
    entry then repeats. Unmatched commands succeed with empty output.
    """

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files = dict(files or {})
        self.dirs: set[str] = set()
        self.modes: dict[str, str] = {}
        self.owners: dict[str, str] = {}
        self.commands: list[str] = []
        self._replies: list[tuple[str, list[tuple[str, str, int]]]] = []

    def on(self, pattern: str, stdout: str = "", stderr: str = "", exit_code: int = 0) -> None:
        self._replies.append((pattern, [(stdout, stderr, exit_code)]))

    def on_sequence(self, pattern: str, replies: list[tuple[str, str, int]]) -> None:
        self._replies.append((pattern, list(replies)))

    def run(self, command: str, timeout: float | None = None) -> CommandResult:
        self.commands.append(command)
        for pattern, replies in reversed(self._replies):
            if pattern in command:
                stdout, stderr, exit_code = replies.pop(0) if len(replies) > 1 else replies[0]
                return CommandResult(command=command, stdout=stdout, stderr=stderr, exit_code=exit_code)
        return CommandResult(command=command, stdout="", stderr="", exit_code=0)

    def ran(self, fragment: str) -> bool:
        return any(fragment in command for command in self.commands)

    # File helpers act on the in-memory tree

    def read_file(self, path: str) -> str | None:
        return self.files.get(path)

    def file_exists(self, path: str) -> bool:
        return path in self.files

    def dir_exists(self, path: str) -> bool:
        prefix = path.rstrip("/") + "/"
        return path in self.dirs or any(name.startswith(prefix) for name in self.files)

    def make_dirs(self, path: str) -> CommandResult:
        self.dirs.add(path)
        return CommandResult(command=f"mkdir -p {path}", stdout="", stderr="", exit_code=0)

    def copy_file(self, source: str, destination: str) -> CommandResult:
        if source not in self.files:
            return CommandResult(command=f"cp {source}", stdout="", stderr="No such file", exit_code=1)
        self.files[destination] = self.files[source]
        return CommandResult(command=f"cp {source} {destination}", stdout="", stderr="", exit_code=0)

    def remove_file(self, path: str) -> CommandResult:
        self.files.pop(path, None)
        return CommandResult(command=f"rm -f {path}", stdout="", stderr="", exit_code=0)

    def write_file(self, path: str, content: str) -> CommandResult:
        self.files[path] = content
        return CommandResult(command=f"write {path}", stdout="", stderr="", exit_code=0)

    def chmod(self, path: str, mode: str) -> CommandResult:
        self.modes[path] = mode
        return CommandResult(command=f"chmod {mode} {path}", stdout="", stderr="", exit_code=0)

    def chown(self, path: str, owner: str) -> CommandResult:
        self.owners[path] = owner
        return CommandResult(command=f"chown {owner} {path}", stdout="", stderr="", exit_code=0)


def script_host(fake: FakeConnector, cpus: int, ram_mb: int, disk_total_gb: int = 100, disk_avail_gb: int = 60) -> None:
    """Script nproc, free and df replies for a host of the given size."""
    fake.on("nproc", f"{cpus}\n")
    fake.on(
        "free -m",
        "              total        used        free\n"
        f"Mem:          {ram_mb}         512        1024\n"
        "Swap:          2047           0        2047\n",
    )
    fake.on(
        "df -BG /",
        "Filesystem     1G-blocks  Used Available Use% Mounted on\n"
        f"/dev/vda1          {disk_total_gb}G   30G       {disk_avail_gb}G  40% /\n",
    )


@pytest.fixture
def fake() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def settings(tmp_path) -> OptimizerSettings:
    return OptimizerSettings(log_file=str(tmp_path / "optimizer.log"), report_dir=str(tmp_path / "reports"))


@pytest.fixture
def make_ctx(fake, settings):
    """Build a ModuleContext around the fake host."""

    def _make(
        server_class: ServerClass = ServerClass.VPS2,
        facts: ResourceFacts | None = None,
        **overrides,
    ) -> ModuleContext:
        services = ServiceManager(fake)
        writer = ConfigWriter(fake, clock=lambda: FIXED_NOW)
        ctx = ModuleContext(
            connector=fake,
            services=services,
            whm=WhmApi(fake),
            wpcli=WpCli(fake),
            writer=writer,
            applier=ApplyAction(fake, services, writer),
            settings=overrides.pop("settings", settings),
            server_class=server_class,
            facts=facts or ResourceFacts(cpu_cores=2, total_ram_mb=4096, total_disk_gb=50, available_disk_gb=40),
            report=ReportAction(Console(file=io.StringIO())),
        )
        for key, value in overrides.items():
            setattr(ctx, key, value)
        return ctx

    return _make

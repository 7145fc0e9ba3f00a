"""Connector base - One command interface for local and remote hosts.

Every operation the optimizer performs on a server goes through
``run()``. File helpers are built on top of it so the local and SSH
connectors behave identically.
"""

import base64
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

DEFAULT_TIMEOUT = 120


@dataclass
class CommandResult:
    """Result of a command execution."""

    command: str
    stdout: str
    stderr: str
    exit_code: int
    success: bool = field(init=False)

    def __post_init__(self) -> None:
        self.success = self.exit_code == 0


class Connector(ABC):
    """Abstract command runner with file helpers."""

    timeout: float = DEFAULT_TIMEOUT

    @abstractmethod
    def run(self, command: str, timeout: float | None = None) -> CommandResult:
        """Execute a shell command and capture its output."""
        ...

    def __enter__(self) -> "Connector":
        return self

    def __exit__(self, *args: object) -> None:
        pass

    def read_file(self, path: str) -> str | None:
        """Return file contents, or None if it cannot be read."""
        result = self.run(f"cat {shlex.quote(path)}")
        if result.success:
            return result.stdout
        return None

    def file_exists(self, path: str) -> bool:
        return self.run(f"test -f {shlex.quote(path)}").success

    def dir_exists(self, path: str) -> bool:
        return self.run(f"test -d {shlex.quote(path)}").success

    def command_exists(self, name: str) -> bool:
        return self.run(f"command -v {shlex.quote(name)}").success

    def list_dir(self, path: str) -> list[str]:
        result = self.run(f"ls -1 {shlex.quote(path)}")
        if result.success:
            return [f for f in result.stdout.strip().split("\n") if f]
        return []

    def make_dirs(self, path: str) -> CommandResult:
        return self.run(f"mkdir -p {shlex.quote(path)}")

    def copy_file(self, source: str, destination: str) -> CommandResult:
        """Copy preserving mode and ownership."""
        return self.run(f"cp -p {shlex.quote(source)} {shlex.quote(destination)}")

    def remove_file(self, path: str) -> CommandResult:
        return self.run(f"rm -f {shlex.quote(path)}")

    def chmod(self, path: str, mode: str) -> CommandResult:
        return self.run(f"chmod {mode} {shlex.quote(path)}")

    def chown(self, path: str, owner: str) -> CommandResult:
        return self.run(f"chown {owner} {shlex.quote(path)}")

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    def write_file(self, path: str, content: str) -> CommandResult:
        """Write content to a temp file next to ``path``, then move it into place.

        Content travels base64-encoded so no shell escaping is involved.
        """
        encoded = base64.b64encode(content.encode()).decode()
        temp_path = f"{path}.tmp-optimizer"
        quoted_tmp = shlex.quote(temp_path)
        result = self.run(f"echo '{encoded}' | base64 -d > {quoted_tmp}")
        if not result.success:
            self.run(f"rm -f {quoted_tmp}")
            return result
        return self.run(f"mv -f {quoted_tmp} {shlex.quote(path)}")

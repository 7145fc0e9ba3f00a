"""Local Connector - Run commands on the machine the optimizer runs on."""

import os
import subprocess
import tempfile

from server_optimizer.connector.base import DEFAULT_TIMEOUT, CommandResult, Connector


class LocalConnector(Connector):
    """Connector backed by ``subprocess`` with an explicit timeout per call."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    def run(self, command: str, timeout: float | None = None) -> CommandResult:
        cmd_timeout = timeout if timeout is not None else self.timeout
        try:
            completed = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=cmd_timeout,
            )
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                command=command,
                stdout=e.stdout if isinstance(e.stdout, str) else "",
                stderr=f"Timed out after {cmd_timeout}s",
                exit_code=124,
            )
        except OSError as e:
            return CommandResult(command=command, stdout="", stderr=str(e), exit_code=127)

        return CommandResult(
            command=command,
            stdout=completed.stdout,
            stderr=completed.stderr,
            exit_code=completed.returncode,
        )

    def write_file(self, path: str, content: str) -> CommandResult:
        """Atomic write: temp file in the target directory, then rename."""
        directory = os.path.dirname(path) or "."
        try:
            fd, temp_path = tempfile.mkstemp(dir=directory, prefix=".optimizer-")
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(content)
                if os.path.exists(path):
                    os.chmod(temp_path, os.stat(path).st_mode & 0o7777)
                else:
                    os.chmod(temp_path, 0o644)
                os.replace(temp_path, path)
            except BaseException:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
        except OSError as e:
            return CommandResult(command=f"write {path}", stdout="", stderr=str(e), exit_code=1)
        return CommandResult(command=f"write {path}", stdout="", stderr="", exit_code=0)

"""SSH Connector - Run the optimizer against a remote server.

Same interface as the local connector; every command goes through
``exec_command`` with a timeout.
"""

import shlex
from dataclasses import dataclass
from pathlib import Path

import paramiko
from paramiko.ssh_exception import AuthenticationException, SSHException

from server_optimizer.connector.base import DEFAULT_TIMEOUT, CommandResult, Connector


@dataclass
class SSHConfig:
    """SSH connection configuration."""

    host: str
    user: str = "root"
    port: int = 22
    key_path: str | None = None
    password: str | None = None  # Fallback, prefer keys
    use_sudo: bool = True
    timeout: int = 30


class SSHConnector(Connector):
    """SSH connection manager for remote server operations.

    Example:
        >>> config = SSHConfig(host="192.168.1.100", user="root")
        >>> with SSHConnector(config) as ssh:
        ...     result = ssh.run("nproc")
        ...     print(result.stdout)
    """

    def __init__(self, config: SSHConfig, command_timeout: float = DEFAULT_TIMEOUT) -> None:
        self.config = config
        self.timeout = command_timeout
        self._client: paramiko.SSHClient | None = None

    def connect(self) -> None:
        """Establish SSH connection."""
        self._client = paramiko.SSHClient()
        self._client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs: dict = {
            "hostname": self.config.host,
            "port": self.config.port,
            "username": self.config.user,
            "timeout": self.config.timeout,
        }

        # Prefer key-based authentication
        if self.config.key_path:
            key_path = Path(self.config.key_path).expanduser()
            if key_path.exists():
                connect_kwargs["key_filename"] = str(key_path)
        elif self.config.password:
            connect_kwargs["password"] = self.config.password

        try:
            self._client.connect(**connect_kwargs)
        except AuthenticationException as e:
            raise ConnectionError(f"Authentication failed: {e}") from e
        except SSHException as e:
            raise ConnectionError(f"SSH error: {e}") from e

    def disconnect(self) -> None:
        """Close SSH connection."""
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self) -> "SSHConnector":
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.disconnect()

    def run(self, command: str, timeout: float | None = None) -> CommandResult:
        """Execute a command on the remote server.

        Non-root users get the whole command wrapped in ``sudo sh -c``
        so pipes and redirections keep their privileges.
        """
        if not self._client:
            raise RuntimeError("Not connected. Use 'with SSHConnector(config):' context.")

        remote_command = command
        if self.config.use_sudo and self.config.user != "root":
            wrapped = f"sh -c {shlex.quote(command)}"
            if self.config.password:
                # Use -S to read password from stdin
                remote_command = f"echo {shlex.quote(self.config.password)} | sudo -S {wrapped}"
            else:
                remote_command = f"sudo {wrapped}"

        cmd_timeout = timeout if timeout is not None else self.timeout

        try:
            stdin, stdout, stderr = self._client.exec_command(remote_command, timeout=cmd_timeout)
            exit_code = stdout.channel.recv_exit_status()

            return CommandResult(
                command=command,
                stdout=stdout.read().decode("utf-8", errors="replace"),
                stderr=stderr.read().decode("utf-8", errors="replace"),
                exit_code=exit_code,
            )
        except Exception as e:
            # Timeouts and channel errors surface as a failed command
            return CommandResult(
                command=command,
                stdout="",
                stderr=f"SSH Execution Error: {str(e)}",
                exit_code=255,
            )

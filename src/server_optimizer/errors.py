"""Exception taxonomy.

Module-level failures are reported through ``ModuleResult``; these
exceptions are what the engine and the collaborators raise on the way.
"""


class OptimizerError(Exception):
    """Base class for all server-optimizer errors."""


class ResourceDetectionError(OptimizerError):
    """Host facts (RAM, CPU) could not be read. Fatal for the run."""


class NotFoundError(OptimizerError):
    """No parameter table row for a (subsystem, server class) pair."""

    def __init__(self, subsystem: str, server_class: str) -> None:
        self.subsystem = subsystem
        self.server_class = server_class
        super().__init__(f"No {subsystem} parameters defined for server class {server_class}")


class PreconditionError(OptimizerError):
    """A module cannot run on this host as it currently is."""


class InsufficientDiskSpaceError(PreconditionError):
    """Not enough free disk space to size a swap file."""

    def __init__(self, total_disk_gb: int, available_disk_gb: int, min_free_gb: int) -> None:
        self.total_disk_gb = total_disk_gb
        self.available_disk_gb = available_disk_gb
        self.min_free_gb = min_free_gb
        super().__init__(
            f"Insufficient disk space for swap: {available_disk_gb}GB available of "
            f"{total_disk_gb}GB, {min_free_gb}GB must stay free"
        )


class ValidationError(OptimizerError):
    """Clamping could not produce a consistent ParameterSet."""


class BackupError(OptimizerError):
    """A backup could not be taken, so the target file was not touched."""


class ApplyError(OptimizerError):
    """The owning service did not come up after a configuration write."""


class ExternalToolError(OptimizerError):
    """An external command (package manager, API, CLI) failed."""

    def __init__(self, command: str, exit_code: int, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip() or "no output"
        super().__init__(f"'{command}' failed with exit code {exit_code}: {detail}")

"""Apply Action - Write config files and bring their service back up.

CONTRACT:
- read_only: False (MODIFIES SERVER)
- requires_backup: True
- rollback_support: True
- prerequisites: ["backup of the target file succeeds"]

Every write is preceded by a timestamped copy of the existing file. The
BackupRecord returned by the writer is the only handle used for
rollback; nothing is ever restored by globbing for ``*.bak.*``.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator

from server_optimizer.actions.report import ActionContract
from server_optimizer.connector.base import Connector
from server_optimizer.connector.services import ServiceManager
from server_optimizer.errors import ApplyError, BackupError, OptimizerError, PreconditionError
from server_optimizer.model.server import ApplyResult, ApplyStatus, BackupRecord, ConfigArtifact, ParameterSet

logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"


class ConfigWriter:
    """Backup-then-write for configuration files."""

    CONTRACT = ActionContract(
        read_only=False,
        requires_backup=True,
        rollback_support=True,
        prerequisites=["backup of the target file succeeds"],
    )

    def __init__(self, connector: Connector, clock: Callable[[], datetime] = datetime.now) -> None:
        self.connector = connector
        self.clock = clock

    def backup(self, path: str) -> BackupRecord:
        """Copy ``path`` aside. A missing file yields a record with no backup.

        Raises:
            BackupError: The copy failed.
        """
        timestamp = self.clock()
        if not self.connector.file_exists(path):
            return BackupRecord(original_path=path, backup_path=None, timestamp=timestamp)

        base = f"{path}.bak.{timestamp.strftime(BACKUP_TIMESTAMP_FORMAT)}"
        backup_path = base
        suffix = 1
        while self.connector.file_exists(backup_path):
            backup_path = f"{base}.{suffix}"
            suffix += 1

        result = self.connector.copy_file(path, backup_path)
        if not result.success:
            raise BackupError(f"Failed to back up {path}: {result.stderr.strip()}")
        logger.info("Backed up %s to %s", path, backup_path)
        return BackupRecord(original_path=path, backup_path=backup_path, timestamp=timestamp)

    def write(self, artifact: ConfigArtifact, params: ParameterSet) -> BackupRecord:
        """Render ``params`` into ``artifact.path``.

        The renderer receives the current file content (or None) so
        formats that update a document in place can preserve keys they
        do not own.

        Raises:
            PreconditionError: The current file could not be parsed; nothing
                was backed up or written.
            BackupError: The backup failed; the file was not touched.
            ApplyError: The write itself failed.
        """
        existing = self.connector.read_file(artifact.path)
        try:
            content = artifact.renderer(params, existing)
        except ValueError as e:
            raise PreconditionError(f"Cannot update {artifact.path}: {e}") from e
        record = self.backup(artifact.path)
        self.write_text(artifact.path, content)
        if artifact.mode:
            self.connector.chmod(artifact.path, artifact.mode)
        if artifact.owner:
            self.connector.chown(artifact.path, artifact.owner)
        return record

    def write_text(self, path: str, content: str) -> None:
        result = self.connector.write_file(path, content)
        if not result.success:
            raise ApplyError(f"Failed to write {path}: {result.stderr.strip()}")
        logger.info("Wrote %s", path)

    def restore(self, record: BackupRecord) -> bool:
        """Put a file back the way it was before the write."""
        if record.had_original:
            result = self.connector.copy_file(record.backup_path, record.original_path)
        else:
            result = self.connector.remove_file(record.original_path)
        if not result.success:
            logger.error("Failed to restore %s: %s", record.original_path, result.stderr.strip())
            return False
        logger.warning("Restored %s from %s", record.original_path, record.backup_path or "(no previous file)")
        return True

    def restore_all(self, records: list[BackupRecord]) -> bool:
        """Restore newest first. True only if every record was restored."""
        restored = True
        for record in reversed(records):
            restored = self.restore(record) and restored
        return restored

    @contextmanager
    def staged(self, backups: list[BackupRecord]) -> Iterator[list[BackupRecord]]:
        """Put back every file recorded in ``backups`` if the block raises.

        Used around a series of writes so a failure halfway through does
        not leave the earlier files changed.
        """
        try:
            yield backups
        except OptimizerError:
            if backups:
                logger.error("Write sequence failed; restoring %d file(s)", len(backups))
                self.restore_all(backups)
            raise


@dataclass
class ApplyTarget:
    """How to activate a written config and how to tell it worked."""

    name: str
    service: str | None = None  # systemd unit that is restarted and checked
    command: str | None = None  # run instead of a restart, e.g. "sysctl -e -p"
    verify: Callable[[], str | None] | None = None  # returns a problem, or None
    timeout: float | None = None
    skip_if_inactive: bool = False


class ApplyAction:
    """Restart, check, and roll back on failure.

    Safety measures:
    1. The service must be active after the restart
    2. An optional read-back must agree with what was written
    3. On failure every backup is restored and the restart retried once
    """

    CONTRACT = ActionContract(
        read_only=False,
        requires_backup=True,
        rollback_support=True,
        prerequisites=["config written through ConfigWriter"],
    )

    def __init__(self, connector: Connector, services: ServiceManager, writer: ConfigWriter) -> None:
        self.connector = connector
        self.services = services
        self.writer = writer

    def _activate(self, target: ApplyTarget) -> tuple[bool, str]:
        if target.command:
            result = self.connector.run(target.command, timeout=target.timeout)
            if not result.success:
                return False, f"'{target.command}' failed: {result.stderr.strip() or result.stdout.strip()}"
            output = result.stdout
        else:
            output = ""
        if target.service:
            if not target.command:
                result = self.services.restart(target.service, timeout=target.timeout)
                if not result.success:
                    return False, f"restart of {target.service} failed: {result.stderr.strip()}"
            if not self.services.is_active(target.service):
                return False, f"{target.service} is not active after restart"
        return True, output

    def apply(self, target: ApplyTarget, backups: list[BackupRecord]) -> ApplyResult:
        """Activate the new configuration, rolling back if it does not hold."""
        if target.skip_if_inactive and target.service and not self.services.is_active(target.service):
            logger.warning("%s is not running; restart skipped", target.service)
            return ApplyResult(
                status=ApplyStatus.DEGRADED,
                detail=f"{target.service} is not running; start it to apply the configuration",
            )

        ok, output = self._activate(target)
        problem = None if ok else output
        if ok and target.verify:
            problem = target.verify()
        if ok and problem is None:
            logger.info("%s applied", target.name)
            return ApplyResult(status=ApplyStatus.OK, output=output)

        logger.error("%s failed verification: %s", target.name, problem)
        return self.rollback(target, backups, problem or "verification failed")

    def rollback(self, target: ApplyTarget, backups: list[BackupRecord], reason: str) -> ApplyResult:
        restored = self.writer.restore_all(backups)

        retry_ok, retry_output = self._activate(target)
        if retry_ok:
            logger.warning("%s is back up with the previous configuration", target.name)
            return ApplyResult(
                status=ApplyStatus.DEGRADED,
                detail=f"{reason}; previous configuration restored",
                rolled_back=True,
                restored=restored,
            )
        logger.error("%s did not come up after restore: %s", target.name, retry_output)
        return ApplyResult(
            status=ApplyStatus.FAILED,
            detail=f"{reason}; restore {'succeeded' if restored else 'failed'} but {retry_output}",
            rolled_back=True,
            restored=restored,
        )

"""Server model dataclasses - Core data structures for a tuning run."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterator, Mapping

# Upper bound (GB) of each RAM size category, smallest first.
# Category 8 and above is open-ended (> 96GB).
RAM_BUCKETS_GB = (2, 4, 8, 16, 32, 64, 96)


class ServerTier(Enum):
    """Shared (VPS) or dedicated hardware."""

    VPS = "VPS"
    DEDICATED = "DSCPU"


class ServerClass(Enum):
    """Named server tier with the nominal resources it stands for."""

    VPS1 = ("VPS1", 2, 1)
    VPS2 = ("VPS2", 4, 2)
    VPS3 = ("VPS3", 8, 4)
    VPS4 = ("VPS4", 16, 6)
    VPS5 = ("VPS5", 32, 8)
    VPS6 = ("VPS6", 64, 16)
    VPS7 = ("VPS7", 96, 20)
    VPS8 = ("VPS8", 128, 24)
    DSCPU1 = ("DSCPU1", 4, 2)
    DSCPU2 = ("DSCPU2", 8, 4)
    DSCPU3 = ("DSCPU3", 16, 8)
    DSCPU4 = ("DSCPU4", 32, 16)
    DSCPU5 = ("DSCPU5", 64, 32)
    DSCPU6 = ("DSCPU6", 96, 48)
    DSCPU7 = ("DSCPU7", 128, 50)
    DSCPU8 = ("DSCPU8", 256, 56)
    DSCPU9 = ("DSCPU9", 512, 64)

    def __init__(self, label: str, nominal_ram_gb: int, nominal_cpu_cores: int) -> None:
        self.label = label
        self.nominal_ram_gb = nominal_ram_gb
        self.nominal_cpu_cores = nominal_cpu_cores

    def __str__(self) -> str:
        return self.label

    @property
    def tier(self) -> ServerTier:
        if self.label.startswith(ServerTier.DEDICATED.value):
            return ServerTier.DEDICATED
        return ServerTier.VPS

    @property
    def size_category(self) -> int:
        """Numeric suffix: 1 for VPS1/DSCPU1, 9 for DSCPU9."""
        return int(self.label[len(self.tier.value):])

    @property
    def ram_bucket_gb(self) -> tuple[int, int | None]:
        """(exclusive lower, inclusive upper) RAM bound of the size category.

        The upper bound is None for the open-ended top category.
        """
        index = self.size_category - 1
        if index >= len(RAM_BUCKETS_GB):
            return RAM_BUCKETS_GB[-1], None
        lower = RAM_BUCKETS_GB[index - 1] if index > 0 else 0
        return lower, RAM_BUCKETS_GB[index]

    @classmethod
    def parse(cls, name: str) -> "ServerClass":
        """Look up a class by its label (case-insensitive)."""
        try:
            return cls[name.strip().upper()]
        except KeyError:
            valid = ", ".join(member.label for member in cls)
            raise ValueError(f"Invalid server type: {name}. Valid options are: {valid}") from None

    @classmethod
    def from_parts(cls, tier: ServerTier, size_category: int) -> "ServerClass":
        return cls.parse(f"{tier.value}{size_category}")


@dataclass(frozen=True)
class ResourceFacts:
    """Measured host resources, captured once per run."""

    cpu_cores: int
    total_ram_mb: int
    total_disk_gb: int = 0
    available_disk_gb: int = 0

    @property
    def ram_gb(self) -> int:
        """Whole gigabytes of RAM, rounded down like ``free -g``."""
        return self.total_ram_mb // 1024


@dataclass(frozen=True)
class ParameterSet:
    """Named settings for one subsystem, ready to render into a config file."""

    subsystem: str
    server_class: ServerClass | None
    values: Mapping[str, Any]
    corrections: tuple[str, ...] = ()

    def __getitem__(self, key: str) -> Any:
        return self.values[key]

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def as_dict(self) -> dict[str, Any]:
        return dict(self.values)

    def with_values(self, **changes: Any) -> "ParameterSet":
        merged = dict(self.values)
        merged.update(changes)
        return replace(self, values=merged)

    def with_corrections(self, *notes: str) -> "ParameterSet":
        return replace(self, corrections=self.corrections + tuple(notes))


Renderer = Callable[[ParameterSet, "str | None"], str]


@dataclass(frozen=True)
class ConfigArtifact:
    """A config file on the server and how to render it."""

    path: str
    renderer: Renderer
    mode: str | None = None  # chmod octal string, e.g. "644"
    owner: str | None = None  # chown owner, e.g. "root:root"


@dataclass(frozen=True)
class BackupRecord:
    """Exact location of the copy taken before a file was overwritten."""

    original_path: str
    backup_path: str | None  # None when there was no file to back up
    timestamp: datetime

    @property
    def had_original(self) -> bool:
        return self.backup_path is not None


class ApplyStatus(Enum):
    """Outcome of restarting a service after a config write."""

    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class ApplyResult:
    """Result of Apply & Verify."""

    status: ApplyStatus
    detail: str = ""
    rolled_back: bool = False
    restored: bool = False  # backups were copied back into place
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not ApplyStatus.FAILED and not self.rolled_back


@dataclass
class ModuleResult:
    """What a module reports back to the orchestrator."""

    name: str
    success: bool
    reason: str = ""
    warnings: list[str] = field(default_factory=list)
    parameters: list[ParameterSet] = field(default_factory=list)
    backups: list[BackupRecord] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

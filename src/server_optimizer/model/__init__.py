"""Model package - Core data structures."""

from server_optimizer.model.server import (
    ApplyResult,
    ApplyStatus,
    BackupRecord,
    ConfigArtifact,
    ModuleResult,
    ParameterSet,
    ResourceFacts,
    ServerClass,
    ServerTier,
)

__all__ = [
    "ApplyResult",
    "ApplyStatus",
    "BackupRecord",
    "ConfigArtifact",
    "ModuleResult",
    "ParameterSet",
    "ResourceFacts",
    "ServerClass",
    "ServerTier",
]

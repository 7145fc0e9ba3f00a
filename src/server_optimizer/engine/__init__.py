"""Engine package - Resolve, size and validate parameter sets."""

from server_optimizer.engine.bounds import bounds_for
from server_optimizer.engine.resolver import ServerProfileResolver, classify, drift_warnings
from server_optimizer.engine.scaler import scale
from server_optimizer.engine.tables import lookup
from server_optimizer.engine.validator import Bounds, Derivation, FieldBound, Invariant, SoftHardPair, validate

__all__ = [
    "Bounds",
    "Derivation",
    "FieldBound",
    "Invariant",
    "ServerProfileResolver",
    "SoftHardPair",
    "bounds_for",
    "classify",
    "drift_warnings",
    "lookup",
    "scale",
    "validate",
]

"""Server Profile Resolver - Which class is this host?"""

import logging

from server_optimizer.model.server import RAM_BUCKETS_GB, ResourceFacts, ServerClass, ServerTier
from server_optimizer.scanner.resources import ResourceScanner

logger = logging.getLogger(__name__)

DEDICATED_MIN_CORES = 8  # more than this is dedicated hardware
DEDICATED_MIN_RAM_GB = 32
DRIFT_TOLERANCE_PERCENT = 25


def classify(facts: ResourceFacts) -> ServerClass:
    """Pick the class whose RAM bucket holds the measured RAM."""
    ram_gb = facts.ram_gb
    if facts.cpu_cores > DEDICATED_MIN_CORES or ram_gb > DEDICATED_MIN_RAM_GB:
        tier = ServerTier.DEDICATED
    else:
        tier = ServerTier.VPS

    category = len(RAM_BUCKETS_GB) + 1
    for index, upper in enumerate(RAM_BUCKETS_GB, start=1):
        if ram_gb <= upper:
            category = index
            break
    return ServerClass.from_parts(tier, category)


def drift_warnings(server_class: ServerClass, facts: ResourceFacts) -> list[str]:
    """Differences beyond ±25% between measured and nominal resources."""
    warnings = []
    checks = (
        ("RAM", facts.total_ram_mb / 1024, server_class.nominal_ram_gb, "GB"),
        ("CPU", facts.cpu_cores, server_class.nominal_cpu_cores, " cores"),
    )
    for label, measured, nominal, unit in checks:
        low = nominal * (100 - DRIFT_TOLERANCE_PERCENT) / 100
        high = nominal * (100 + DRIFT_TOLERANCE_PERCENT) / 100
        if not low <= measured <= high:
            warnings.append(
                f"Measured {label} {measured:g}{unit} is outside ±{DRIFT_TOLERANCE_PERCENT}% "
                f"of {server_class} nominal {nominal}{unit}"
            )
    return warnings


class ServerProfileResolver:
    """Produces the (ServerClass, ResourceFacts) pair for a run."""

    def __init__(self, scanner: ResourceScanner) -> None:
        self.scanner = scanner
        self.warnings: list[str] = []

    def resolve(self, explicit_override: ServerClass | None = None) -> tuple[ServerClass, ResourceFacts]:
        """Measure the host and settle on a server class.

        An explicit class is used as given; drift from its nominal
        resources is reported as warnings only.

        Raises:
            ResourceDetectionError: From the scanner.
        """
        facts = self.scanner.scan()
        if explicit_override is not None:
            self.warnings = drift_warnings(explicit_override, facts)
            for warning in self.warnings:
                logger.warning(warning)
            return explicit_override, facts

        self.warnings = []
        server_class = classify(facts)
        logger.info("Auto-detected server class %s", server_class)
        return server_class, facts

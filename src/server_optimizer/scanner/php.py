"""PHP Memory Scanner - memory_limit per hosted domain.

Walks the main and addon domains, asks the domain's PHP binary for its
``memory_limit`` and applies overrides found in the docroot's ``php.ini``
and ``.user.ini``.
"""

import logging
import re
import shlex
from dataclasses import dataclass, field

from server_optimizer.connector.base import Connector
from server_optimizer.connector.whm import WhmApi
from server_optimizer.errors import ExternalToolError

logger = logging.getLogger(__name__)

UNLIMITED_MB = 512  # stands in for memory_limit = -1
FALLBACK_MB = 128
MIN_SANE_MB = 32
OVERHEAD_PERCENT = 20
MIN_PROFILE_MB = 256

_LIMIT_RE = re.compile(r"^(\d+)\s*([KMG])?B?$", re.IGNORECASE)
_INI_RE = re.compile(r"^\s*memory_limit\s*=\s*['\"]?([^'\"\s;]+)", re.MULTILINE)


def parse_memory_limit(value: str | None) -> int:
    """Convert a PHP shorthand byte value to MB.

    ``-1`` counts as 512MB; unparsable values fall back to 128MB.
    """
    if value is None:
        return FALLBACK_MB
    value = value.strip()
    if value == "-1":
        return UNLIMITED_MB
    match = _LIMIT_RE.match(value)
    if not match:
        return FALLBACK_MB
    number = int(match.group(1))
    unit = (match.group(2) or "").upper()
    if unit == "G":
        return number * 1024
    if unit == "M":
        return number
    if unit == "K":
        return number // 1024
    return number // (1024 * 1024)


def ini_memory_limit(content: str) -> str | None:
    match = _INI_RE.search(content)
    return match.group(1) if match else None


@dataclass
class DomainMemory:
    """memory_limit resolved for one domain."""

    domain: str
    user: str
    docroot: str
    php_version: str
    base_mb: int
    php_ini_mb: int | None = None
    user_ini_mb: int | None = None
    final_mb: int = 0


@dataclass
class PHPMemoryProfile:
    """Aggregate of all analyzed domains."""

    domains: list[DomainMemory] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def average_mb(self) -> int:
        if not self.domains:
            return 0
        return sum(d.final_mb for d in self.domains) // len(self.domains)

    @property
    def max_mb(self) -> int:
        return max((d.final_mb for d in self.domains), default=0)

    @property
    def recommended_mb(self) -> int:
        """Average plus overhead, never below 256MB."""
        return max(MIN_PROFILE_MB, self.average_mb * (100 + OVERHEAD_PERCENT) // 100)

    def to_rows(self) -> list[list[str]]:
        rows = [["domain", "user", "php_version", "base_mb", "php_ini_mb", "user_ini_mb", "final_mb"]]
        for d in self.domains:
            rows.append([
                d.domain, d.user, d.php_version, str(d.base_mb),
                "" if d.php_ini_mb is None else str(d.php_ini_mb),
                "" if d.user_ini_mb is None else str(d.user_ini_mb),
                str(d.final_mb),
            ])
        return rows


class PHPMemoryScanner:
    """Collects memory_limit for every main and addon domain."""

    def __init__(self, connector: Connector, whm: WhmApi) -> None:
        self.connector = connector
        self.whm = whm

    def scan(self) -> PHPMemoryProfile:
        profile = PHPMemoryProfile()
        for info in self.whm.list_domains():
            try:
                entry = self._scan_domain(info.domain)
            except ExternalToolError as e:
                logger.warning("Skipping %s: %s", info.domain, e)
                profile.skipped.append(info.domain)
                continue
            if entry is None:
                profile.skipped.append(info.domain)
                continue
            profile.domains.append(entry)
        logger.info(
            "Analyzed PHP memory for %d domains (%d skipped), average %dMB",
            len(profile.domains), len(profile.skipped), profile.average_mb,
        )
        return profile

    def _scan_domain(self, domain: str) -> DomainMemory | None:
        userdata = self.whm.domain_user_data(domain)
        docroot = userdata.get("documentroot")
        php_version = userdata.get("phpversion")
        user = userdata.get("user", "")
        if not docroot or not php_version:
            logger.debug("No docroot or PHP version for %s", domain)
            return None
        if not self.connector.dir_exists(docroot):
            logger.debug("Docroot %s for %s does not exist", docroot, domain)
            return None

        php_bin = f"/opt/cpanel/{php_version}/root/usr/bin/php"
        if not self.connector.run(f"test -x {shlex.quote(php_bin)}").success:
            logger.debug("PHP binary %s missing for %s", php_bin, domain)
            return None

        result = self.connector.run(f"{shlex.quote(php_bin)} -r 'echo ini_get(\"memory_limit\");'")
        base_mb = parse_memory_limit(result.stdout if result.success else None)
        entry = DomainMemory(domain=domain, user=user, docroot=docroot, php_version=php_version, base_mb=base_mb)

        final = base_mb
        for filename, attr in (("php.ini", "php_ini_mb"), (".user.ini", "user_ini_mb")):
            content = self.connector.read_file(f"{docroot}/{filename}")
            if content is None:
                continue
            raw = ini_memory_limit(content)
            if raw is None:
                continue
            override = parse_memory_limit(raw)
            setattr(entry, attr, override)
            final = max(final, override)

        entry.final_mb = final if final >= MIN_SANE_MB else FALLBACK_MB
        return entry

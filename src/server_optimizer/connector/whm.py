"""WHM API client over the ``whmapi1`` command line tool.

Responses are requested as JSON and deserialized into typed results.
"""

import json
import logging
import shlex
from dataclasses import dataclass
from typing import Any

from server_optimizer.connector.base import Connector
from server_optimizer.errors import ExternalToolError

logger = logging.getLogger(__name__)


@dataclass
class TweakResult:
    """Outcome of a ``set_tweaksetting`` call."""

    key: str
    value: str
    success: bool
    reason: str = ""


@dataclass
class DomainInfo:
    """A domain hosted on the server."""

    domain: str
    domain_type: str  # main, addon, sub, parked
    user: str | None = None
    docroot: str | None = None
    php_version: str | None = None


class WhmApi:
    """Typed access to the handful of WHM API calls the optimizer needs."""

    def __init__(self, connector: Connector) -> None:
        self.connector = connector

    def available(self) -> bool:
        return self.connector.command_exists("whmapi1")

    def call(self, function: str, **params: Any) -> dict[str, Any]:
        """Run a WHM API 1 function and return the decoded JSON document."""
        args = " ".join(f"{shlex.quote(k)}={shlex.quote(str(v))}" for k, v in params.items())
        command = f"whmapi1 --output=json {function} {args}".strip()
        result = self.connector.run(command)
        if not result.success:
            raise ExternalToolError(command, result.exit_code, result.stderr)
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ExternalToolError(command, result.exit_code, f"invalid JSON response: {e}") from e
        if not isinstance(data, dict):
            raise ExternalToolError(command, result.exit_code, "unexpected response shape")
        return data

    @staticmethod
    def _metadata(data: dict[str, Any]) -> tuple[bool, str]:
        metadata = data.get("metadata") or {}
        return str(metadata.get("result", "0")) == "1", str(metadata.get("reason", ""))

    def set_tweak_setting(self, key: str, value: str) -> TweakResult:
        try:
            data = self.call("set_tweaksetting", key=key, value=value)
        except ExternalToolError as e:
            return TweakResult(key=key, value=value, success=False, reason=e.stderr.strip() or str(e))
        success, reason = self._metadata(data)
        return TweakResult(key=key, value=value, success=success, reason=reason)

    def list_domains(self, types: tuple[str, ...] = ("main", "addon")) -> list[DomainInfo]:
        """Domains of the given types from ``get_domain_info``."""
        data = self.call("get_domain_info")
        success, reason = self._metadata(data)
        if not success:
            raise ExternalToolError("whmapi1 get_domain_info", 1, reason)

        domains = []
        for entry in (data.get("data") or {}).get("domains") or []:
            domain_type = entry.get("domain_type", "")
            if domain_type not in types or not entry.get("domain"):
                continue
            domains.append(DomainInfo(
                domain=entry["domain"],
                domain_type=domain_type,
                user=entry.get("user"),
                docroot=entry.get("docroot"),
                php_version=entry.get("php_version"),
            ))
        return domains

    def domain_user_data(self, domain: str) -> dict[str, Any]:
        """The ``userdata`` block of ``domainuserdata`` for one domain."""
        data = self.call("domainuserdata", domain=domain)
        success, reason = self._metadata(data)
        if not success:
            raise ExternalToolError(f"whmapi1 domainuserdata domain={domain}", 1, reason)
        return (data.get("data") or {}).get("userdata") or {}

    def installed_php_versions(self) -> list[str]:
        """EA-PHP package names such as ``ea-php81``."""
        data = self.call("php_get_installed_versions")
        return [v for v in (data.get("data") or {}).get("versions") or [] if str(v).startswith("ea-php")]

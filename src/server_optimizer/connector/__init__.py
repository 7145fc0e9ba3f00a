"""Connector package - How the optimizer talks to a server and its tools."""

from server_optimizer.connector.base import CommandResult, Connector
from server_optimizer.connector.local import LocalConnector
from server_optimizer.connector.services import ServiceManager
from server_optimizer.connector.ssh import SSHConfig, SSHConnector
from server_optimizer.connector.whm import DomainInfo, TweakResult, WhmApi
from server_optimizer.connector.wpcli import WpCli

__all__ = [
    "CommandResult",
    "Connector",
    "DomainInfo",
    "LocalConnector",
    "SSHConfig",
    "SSHConnector",
    "ServiceManager",
    "TweakResult",
    "WhmApi",
    "WpCli",
]

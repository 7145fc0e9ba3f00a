"""Actions package - Things that write to the server or the terminal."""

from server_optimizer.actions.apply import ApplyAction, ApplyTarget, ConfigWriter
from server_optimizer.actions.report import ActionContract, ReportAction

__all__ = ["ActionContract", "ApplyAction", "ApplyTarget", "ConfigWriter", "ReportAction"]

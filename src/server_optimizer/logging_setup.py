"""Logging setup: rich console handler plus a plain log file."""

import logging

from rich.console import Console
from rich.logging import RichHandler

FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str, log_file: str | None, console: Console | None = None) -> str | None:
    """Attach handlers to the ``server_optimizer`` logger.

    Returns the log file actually in use, or None when it could not be
    opened and output goes to the console only.
    """
    root = logging.getLogger("server_optimizer")
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = False

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    console_handler.setLevel(level)
    root.addHandler(console_handler)

    if not log_file:
        return None
    try:
        file_handler = logging.FileHandler(log_file)
    except OSError as e:
        root.warning("Cannot open log file %s (%s); logging to console only", log_file, e)
        return None
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
    file_handler.setLevel(level)
    root.addHandler(file_handler)
    return log_file

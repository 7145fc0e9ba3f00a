"""server-optimizer: resource-scaled configuration for cPanel servers."""

__version__ = "1.0.0"

"""
LaraHarbor: multi-site local Laravel environments

Creates, starts, stops, backs up and deletes isolated container-backed
Laravel sites behind one shared HTTPS reverse proxy.
"""

__version__ = "0.1.0"
__author__ = "LaraHarbor Contributors"

from .config import HarborConfig
from .logging_config import setup_logging

__all__ = [
    "HarborConfig",
    "setup_logging",
]

"""
Logging module for ServerKeeper.
This module provides the logging setup shared by the supervisor and firewall packages.
"""

from .setup import setup_logging

__all__ = ["setup_logging"]

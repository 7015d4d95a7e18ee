"""
Logging handlers for ServerKeeper.
"""

from .loki import LokiHandler

__all__ = ["LokiHandler"]

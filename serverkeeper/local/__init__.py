"""
Local package for ServerKeeper.

Holds the merged configuration and the two OS-facing subsystems: the
game-server supervisor and the firewall rule reconciler.
"""

from .config import effective_settings

__all__ = ["effective_settings"]

"""
ServerKeeper: runs a game-server executable and keeps its firewall rules in place.
"""
from serverkeeper.errors import ServerKeeperError
from serverkeeper.local.firewall import DesiredRuleSpec, RuleReconciler
from serverkeeper.local.supervisor import ProcessSupervisor

__version__ = "0.1.0"

__all__ = ["DesiredRuleSpec", "ProcessSupervisor", "RuleReconciler", "ServerKeeperError"]

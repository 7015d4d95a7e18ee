"""
The Firewall package.
Keeps host firewall rules in line with a declared rule.

RuleReconciler drives the OS firewall through a FirewallBackend and uses the
pure functions in `matcher` to decide whether a rule has to be rebuilt.
"""
from .backend import FirewallBackend, PowerShellFirewallBackend
from .models import Action, DesiredRuleSpec, Direction, DirectionResult, EffectiveRule, ExistingRule, Profile, Protocol
from .reconciler import RuleReconciler

__all__ = [
    'Action', 'DesiredRuleSpec', 'Direction', 'DirectionResult', 'EffectiveRule', 'ExistingRule',
    'FirewallBackend', 'PowerShellFirewallBackend', 'Profile', 'Protocol', 'RuleReconciler',
]

import logging
from typing import List, Optional

from serverkeeper.errors import FirewallError, PartialReconciliationFailure, ReconciliationError
from . import matcher
from .backend import FirewallBackend, PowerShellFirewallBackend
from .models import DesiredRuleSpec, Direction, DirectionResult

log = logging.getLogger(__name__)


class RuleReconciler:
    """
    Brings the firewall in line with a DesiredRuleSpec.

    Each direction is handled on its own: list the rules with the same display
    name, keep the ones with the same protocol, and stop if any of them already
    matches exactly. Otherwise every one of them is deleted and a single new
    rule is created. Non-matching rules that sit next to an exact match are
    left alone.
    """

    def __init__(self, backend: Optional[FirewallBackend] = None) -> None:
        self.backend = backend or PowerShellFirewallBackend()

    def apply(self, desired: DesiredRuleSpec, raise_on_error: bool = True) -> List[DirectionResult]:
        """
        Reconciles every direction implied by `desired.direction`, in order.

        A failure in one direction does not stop the next one.

        :param desired: The declared rule.
        :param raise_on_error: If False, failed directions are only reported in
            their DirectionResult.error instead of raising.
        :return: One DirectionResult per direction.
        :raises ReconciliationError: If any direction failed and raise_on_error is set.
        """
        results = [self._reconcile_direction(desired, direction) for direction in desired.directions]

        if raise_on_error and any(not r.ok for r in results):
            raise ReconciliationError(desired.display_name, results)
        return results

    def _reconcile_direction(self, desired: DesiredRuleSpec, direction: Direction) -> DirectionResult:
        result = DirectionResult(direction=direction, effective=desired.effective_rule(direction))
        label = f"'{desired.display_name}' ({direction.value}/{desired.protocol.value})"

        try:
            existing = self.backend.query_rules(desired.display_name, direction)
        except FirewallError as e:
            log.error(f"Could not list firewall rules for {label}: {e}")
            result.error = e
            return result

        same_proto = [r for r in existing if r.protocol.upper() == desired.protocol.value]

        exact = matcher.find_exact_match(same_proto, desired, direction)
        if exact is not None:
            log.info(f"Firewall rule {label} already matches (rule {exact.name}). Skipping.")
            result.skipped = True
            return result

        stage = "delete"
        try:
            for rule in same_proto:
                log.info(f"Removing outdated firewall rule {label}: {rule.name}")
                self.backend.delete_rule(rule.name)
                result.deleted.append(rule.name)
            stage = "create"
            self.backend.create_rule(result.effective)
        except FirewallError as e:
            if result.deleted:
                result.error = PartialReconciliationFailure(direction.value, result.deleted, e, stage=stage)
                log.critical(f"Firewall rule {label} is now missing: {result.error}")
            else:
                result.error = e
                log.error(f"Failed to update firewall rule {label}: {e}")
            return result

        log.info(f"Firewall rule {label} created (ports={','.join(desired.ports) or 'any'}, action={desired.action.value}).")
        result.recreated = True
        return result

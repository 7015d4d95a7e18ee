"""
Pure comparison between a desired rule and the rules the backend reports.
Nothing here talks to the OS.
"""
from typing import Iterable, List, Optional, Union

from .models import DesiredRuleSpec, Direction, ExistingRule, split_port_tokens


def normalize_ports(ports: Union[str, Iterable[str], None]) -> List[str]:
    """
    Splits comma-joined tokens, trims, drops empties, deduplicates and sorts
    lexicographically.
    """
    return sorted(set(split_port_tokens(ports)))


def ports_equal(existing: Union[str, Iterable[str], None], desired: Union[str, Iterable[str], None]) -> bool:
    return normalize_ports(existing) == normalize_ports(desired)


def program_matches(existing_program: Optional[str], desired_program: Optional[str]) -> bool:
    """An unset desired program is a don't-care."""
    if not desired_program:
        return True
    return existing_program == desired_program


def profile_matches(existing_mask: int, desired_mask: int) -> bool:
    """A desired mask of 0 (all profiles) accepts any existing mask."""
    return desired_mask == 0 or existing_mask == desired_mask


def matches(existing: ExistingRule, desired: DesiredRuleSpec, direction: Direction) -> bool:
    """
    True if `existing` exactly satisfies `desired` for one direction: same
    direction and protocol, and ports, program, action and profile all match.
    """
    if existing.direction.lower() != direction.value.lower():
        return False
    if existing.protocol.upper() != desired.protocol.value:
        return False
    return (
        ports_equal(existing.ports, desired.ports)
        and program_matches(existing.program, desired.program_path)
        and existing.action == desired.action.value
        and profile_matches(existing.profile_mask, desired.profile_mask)
    )


def find_exact_match(existing_rules: Iterable[ExistingRule], desired: DesiredRuleSpec, direction: Direction) -> Optional[ExistingRule]:
    """Returns the first exact match, if any. Other rules are not inspected further."""
    for rule in existing_rules:
        if matches(rule, desired, direction):
            return rule
    return None

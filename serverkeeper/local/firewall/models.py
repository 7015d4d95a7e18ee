import re
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from serverkeeper.errors import BackendQueryFailure, FirewallError, InvalidRuleError

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_PORT_TOKEN = re.compile(r"^(\d+)(?:-(\d+))?$")


class Action(str, enum.Enum):
    ALLOW = "Allow"
    BLOCK = "Block"


class Direction(str, enum.Enum):
    INBOUND = "Inbound"
    OUTBOUND = "Outbound"
    BOTH = "Both"


class Protocol(str, enum.Enum):
    TCP = "TCP"
    UDP = "UDP"


class Profile(enum.IntFlag):
    """Network profile bits as understood by the Windows firewall."""
    DOMAIN = 1
    PRIVATE = 2
    PUBLIC = 4


ALL_PROFILES = frozenset(p.name.capitalize() for p in Profile)


def _coerce_enum(enum_cls, value, field_name: str):
    """Accepts an enum member or a case-insensitive value/name string."""
    if isinstance(value, enum_cls):
        return value
    text = str(value).strip()
    for member in enum_cls:
        if text.lower() in (member.value.lower(), member.name.lower()):
            return member
    choices = ", ".join(m.value for m in enum_cls)
    raise InvalidRuleError(f"Invalid {field_name} '{value}'. Expected one of: {choices}")


def _reject_control_chars(value: str, field_name: str) -> None:
    if _CONTROL_CHARS.search(value):
        raise InvalidRuleError(f"{field_name} must not contain control characters: {value!r}")


def split_port_tokens(ports: Union[str, Iterable[str], None]) -> List[str]:
    """
    Splits "80,443, 5000-6000" (or a list of such strings) into trimmed tokens,
    keeping order and dropping empties.
    """
    if ports is None:
        return []
    if isinstance(ports, (str, int)):
        ports = [ports]
    tokens = []
    for item in ports:
        for tok in str(item).split(","):
            tok = tok.strip()
            if tok:
                tokens.append(tok)
    return tokens


def _validate_port_token(token: str) -> None:
    match = _PORT_TOKEN.match(token)
    if not match:
        raise InvalidRuleError(f"Invalid port token '{token}'. Use a port number or a 'low-high' range.")
    low = int(match.group(1))
    high = int(match.group(2)) if match.group(2) else low
    if not (1 <= low <= 65535 and 1 <= high <= 65535) or low > high:
        raise InvalidRuleError(f"Port token '{token}' is outside 1-65535 or is an inverted range.")


@dataclass(frozen=True)
class DesiredRuleSpec:
    """
    The declared state of one firewall rule.

    `display_name` is the identity used to find existing rules. An empty
    profile set, or all three profiles, means the rule applies to any profile.
    """
    display_name: str
    program_path: Optional[str] = None
    action: Action = Action.ALLOW
    direction: Direction = Direction.BOTH
    protocol: Protocol = Protocol.TCP
    ports: Tuple[str, ...] = ()
    profiles: FrozenSet[str] = ALL_PROFILES

    def __post_init__(self) -> None:
        name = str(self.display_name or "")
        if not name.strip():
            raise InvalidRuleError("display_name must not be empty")
        if name != name.strip():
            raise InvalidRuleError(f"display_name must not start or end with whitespace: {name!r}")
        _reject_control_chars(name, "display_name")
        object.__setattr__(self, "display_name", name)

        program = self.program_path or None
        if program is not None:
            program = str(program)
            _reject_control_chars(program, "program_path")
        object.__setattr__(self, "program_path", program)

        object.__setattr__(self, "action", _coerce_enum(Action, self.action, "action"))
        object.__setattr__(self, "direction", _coerce_enum(Direction, self.direction, "direction"))
        object.__setattr__(self, "protocol", _coerce_enum(Protocol, self.protocol, "protocol"))

        tokens = split_port_tokens(self.ports)
        for tok in tokens:
            _validate_port_token(tok)
        object.__setattr__(self, "ports", tuple(tokens))

        profiles = self.profiles
        if isinstance(profiles, str):
            profiles = [profiles]
        names = set()
        for p in profiles or ():
            member = p if isinstance(p, Profile) else Profile.__members__.get(str(p).strip().upper())
            if member is None:
                raise InvalidRuleError(f"Unknown network profile '{p}'. Expected Domain, Private or Public.")
            names.add(member.name.capitalize())
        object.__setattr__(self, "profiles", frozenset(names))

    @property
    def directions(self) -> Tuple[Direction, ...]:
        """`Both` expands into two independent reconciliation units."""
        if self.direction is Direction.BOTH:
            return (Direction.INBOUND, Direction.OUTBOUND)
        return (self.direction,)

    @property
    def profile_mask(self) -> int:
        """Domain=1, Private=2, Public=4 OR-ed together; 0 means all profiles."""
        if self.profiles == ALL_PROFILES:
            return 0
        mask = 0
        for name in self.profiles:
            mask |= Profile[name.upper()]
        return int(mask)

    def effective_rule(self, direction: Direction) -> "EffectiveRule":
        return EffectiveRule(
            display_name=self.display_name,
            direction=direction,
            protocol=self.protocol,
            local_ports=list(self.ports),
            action=self.action,
            profile_mask=self.profile_mask,
            program=self.program_path,
        )


@dataclass(frozen=True)
class ExistingRule:
    """A rule as reported by the firewall backend. Never cached."""
    name: str
    display_name: str
    direction: str
    protocol: str
    ports: Tuple[str, ...] = ()
    program: Optional[str] = None
    action: str = Action.ALLOW.value
    profile_mask: int = 0

    @classmethod
    def from_backend(cls, data: Dict[str, Any]) -> "ExistingRule":
        """
        Builds a rule from one backend record.

        The backend reports "Any" for rules without a port or program filter;
        both are mapped to "no filter".

        :raises BackendQueryFailure: If the record is malformed.
        """
        if not isinstance(data, dict) or not data.get("Name"):
            raise BackendQueryFailure(f"Firewall rule record has no 'Name': {data!r}")

        raw_ports = data.get("LocalPort")
        ports = [] if raw_ports is None else split_port_tokens(raw_ports)
        if [p.lower() for p in ports] == ["any"]:
            ports = []

        program = data.get("Program") or None
        if program is not None and str(program).lower() == "any":
            program = None

        try:
            profile_mask = int(data.get("Profile") or 0)
        except (TypeError, ValueError):
            raise BackendQueryFailure(f"Firewall rule '{data['Name']}' has a malformed profile: {data.get('Profile')!r}")

        return cls(
            name=str(data["Name"]),
            display_name=str(data.get("DisplayName") or ""),
            direction=str(data.get("Direction") or ""),
            protocol=str(data.get("Protocol") or "").upper(),
            ports=tuple(ports),
            program=program,
            action=str(data.get("Action") or ""),
            profile_mask=profile_mask,
        )


@dataclass
class EffectiveRule:
    """The rule a reconciliation pass asserts for one direction."""
    display_name: str
    direction: Direction
    protocol: Protocol
    local_ports: List[str]
    action: Action
    profile_mask: int = 0
    program: Optional[str] = None
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "DisplayName": self.display_name,
            "Direction": self.direction.value,
            "Protocol": self.protocol.value,
            "LocalPorts": list(self.local_ports),
            "Action": self.action.value,
            "Enabled": self.enabled,
            "ProfileMask": self.profile_mask,
            "Program": self.program,
        }


@dataclass
class DirectionResult:
    """Outcome of reconciling one direction."""
    direction: Direction
    effective: EffectiveRule
    recreated: bool = False
    skipped: bool = False
    error: Optional[FirewallError] = None
    deleted: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data = self.effective.to_dict()
        data.update({
            "Recreated": self.recreated,
            "SkippedBecauseAlreadyMatches": self.skipped,
            "Error": str(self.error) if self.error else None,
        })
        return data

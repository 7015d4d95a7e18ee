import pytest

from serverkeeper.local.firewall import matcher
from serverkeeper.local.firewall.models import DesiredRuleSpec, Direction, ExistingRule


def _existing(**overrides):
    data = dict(
        name="{rule-1}",
        display_name="Srv",
        direction="Inbound",
        protocol="TCP",
        ports=("443", "80"),
        program=None,
        action="Allow",
        profile_mask=0,
    )
    data.update(overrides)
    return ExistingRule(**data)


@pytest.mark.parametrize("existing, desired", [
    (["80,443"], ["443", "80"]),
    (["443", "80", "80"], "80,443"),
    ([" 80 , 443 ", ""], ["443,80"]),
    (["5000-6000", "8080"], "8080, 5000-6000"),
    ([], ""),
])
def test_ports_equal_ignores_grouping_order_and_whitespace(existing, desired):
    assert matcher.ports_equal(existing, desired)


@pytest.mark.parametrize("existing, desired", [
    (["80"], ["80", "443"]),
    (["80", "443"], ["80", "444"]),
    (["Any"], []),
])
def test_ports_not_equal(existing, desired):
    assert not matcher.ports_equal(existing, desired)


def test_normalize_ports_sorts_lexicographically():
    assert matcher.normalize_ports(["8080", "443,80", "443"]) == ["443", "80", "8080"]


def test_unset_program_matches_any_existing_program():
    desired = DesiredRuleSpec("Srv", direction="Inbound", ports="80,443")
    assert matcher.matches(_existing(program=r"C:\other.exe"), desired, Direction.INBOUND)
    assert matcher.matches(_existing(program=None), desired, Direction.INBOUND)


def test_set_program_requires_identical_path():
    desired = DesiredRuleSpec("Srv", direction="Inbound", ports="80,443", program_path=r"C:\srv\server.exe")
    assert matcher.matches(_existing(program=r"C:\srv\server.exe"), desired, Direction.INBOUND)
    assert not matcher.matches(_existing(program=r"C:\srv\other.exe"), desired, Direction.INBOUND)
    assert not matcher.matches(_existing(program=None), desired, Direction.INBOUND)


def test_profile_mask_zero_matches_any_existing_mask():
    desired = DesiredRuleSpec("Srv", direction="Inbound", ports="80,443")
    assert desired.profile_mask == 0
    for mask in (0, 1, 2, 4, 7):
        assert matcher.matches(_existing(profile_mask=mask), desired, Direction.INBOUND)


def test_nonzero_profile_mask_requires_identical_mask():
    desired = DesiredRuleSpec("Srv", direction="Inbound", ports="80,443", profiles=["Private", "Public"])
    assert desired.profile_mask == 6
    assert matcher.matches(_existing(profile_mask=6), desired, Direction.INBOUND)
    assert not matcher.matches(_existing(profile_mask=0), desired, Direction.INBOUND)
    assert not matcher.matches(_existing(profile_mask=2), desired, Direction.INBOUND)


def test_action_must_match():
    desired = DesiredRuleSpec("Srv", direction="Inbound", ports="80,443", action="Block")
    assert not matcher.matches(_existing(action="Allow"), desired, Direction.INBOUND)
    assert matcher.matches(_existing(action="Block"), desired, Direction.INBOUND)


def test_direction_and_protocol_must_match():
    desired = DesiredRuleSpec("Srv", ports="80,443")
    assert not matcher.matches(_existing(direction="Outbound"), desired, Direction.INBOUND)
    assert not matcher.matches(_existing(protocol="UDP"), desired, Direction.INBOUND)


def test_find_exact_match_returns_first_match_among_near_duplicates():
    desired = DesiredRuleSpec("Srv", direction="Inbound", ports="80,443")
    rules = [
        _existing(name="{a}", ports=("80",)),
        _existing(name="{b}"),
        _existing(name="{c}"),
    ]
    assert matcher.find_exact_match(rules, desired, Direction.INBOUND).name == "{b}"
    assert matcher.find_exact_match(rules[:1], desired, Direction.INBOUND) is None

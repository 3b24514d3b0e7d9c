"""Tests for the rule catalog: loading, validation and operators."""

import pytest

from posture_audit.catalog import (
    OPERATORS,
    Condition,
    Polarity,
    Severity,
    list_rules,
    load_catalog,
    resolve_property,
)
from posture_audit.errors import CatalogError, RecordEvaluationError

VALID_RULES = """
rules:
  - id: first
    domain: nsg
    severity: high
    message: First
    check:
      - {property: access, operator: equals, value: Allow}
  - id: second
    domain: storage
    severity: Low
    polarity: secure
    points: 2
    message: Second
    check: {property: minimum_tls_version, operator: in, value: [TLS1_2]}
  - id: third
    domain: nsg
    severity: Medium
    message: Third
    check:
      - {property: destination_port_range, operator: covers_port, value: 22}
"""


def test_packaged_catalog_keeps_file_order():
    """NSG rules come back in the order they are declared."""
    ids = [rule.id for rule in list_rules("nsg")]
    assert ids == [
        "nsg-allow-all-inbound",
        "nsg-exposed-ssh",
        "nsg-exposed-rdp",
        "nsg-inbound-all-ports",
    ]


def test_packaged_catalog_covers_every_domain():
    domains = {rule.domain for rule in load_catalog()}
    assert domains == {"nsg", "storage", "vm", "rbac"}


def test_list_rules_filters_by_domain(write_rules):
    path = write_rules(VALID_RULES)
    rules = list_rules("nsg", path)
    assert [rule.id for rule in rules] == ["first", "third"]
    assert all(rule.domain == "nsg" for rule in rules)


def test_unknown_domain_has_no_rules(write_rules):
    assert list_rules("dns", write_rules(VALID_RULES)) == ()


def test_rule_fields_are_parsed(write_rules):
    first, second, third = load_catalog(write_rules(VALID_RULES))
    assert first.severity is Severity.HIGH
    assert first.polarity is Polarity.RISK
    assert first.points == 1
    assert second.polarity is Polarity.SECURE
    assert second.points == 2
    assert second.conditions[0].value == ("TLS1_2",)
    assert third.conditions[0].operator == "covers_port"


def test_list_rules_is_repeatable(write_rules):
    path = write_rules(VALID_RULES)
    assert list_rules("nsg", path) == list_rules("nsg", path)


@pytest.mark.parametrize(
    "body, fragment",
    [
        ("severity: High\n    message: m\n    check: [{property: a, operator: bogus, value: 1}]",
         "unknown operator"),
        ("severity: Severe\n    message: m\n    check: [{property: a, operator: equals, value: 1}]",
         "Unknown severity"),
        ("severity: High\n    message: m\n    check: [{property: a, operator: in, value: x}]",
         "needs a list"),
        ("severity: High\n    message: m\n    check: [{property: a, operator: matches, value: '('}]",
         "invalid pattern"),
        ("severity: High\n    message: m\n    polarity: sideways\n    check: [{property: a, operator: equals, value: 1}]",
         "unknown polarity"),
        ("severity: High\n    check: [{property: a, operator: equals, value: 1}]",
         "missing 'message'"),
    ],
)
def test_invalid_rule_is_rejected(write_rules, body, fragment):
    path = write_rules(f"rules:\n  - id: broken\n    domain: nsg\n    {body}\n")
    with pytest.raises(CatalogError, match=fragment):
        load_catalog(path)


def test_duplicate_rule_ids_are_rejected(write_rules):
    rule = "  - {id: dup, domain: nsg, severity: Low, message: m, check: [{property: a, operator: equals, value: 1}]}\n"
    with pytest.raises(CatalogError, match="Duplicate rule id"):
        load_catalog(write_rules("rules:\n" + rule + rule))


def test_missing_rule_file(tmp_path):
    with pytest.raises(CatalogError, match="not found"):
        load_catalog(tmp_path / "nope.yaml")


def test_rules_must_be_a_list(write_rules):
    with pytest.raises(CatalogError, match="'rules' list"):
        load_catalog(write_rules("rules: {id: x}\n"))


@pytest.mark.parametrize(
    "ports, port, expected",
    [
        ("22", 22, True),
        ("*", 3389, True),
        ("Any", 22, True),
        ("20-25", 22, True),
        ("80,443,3000-3400", 3389, True),
        ("80,443", 22, False),
        (("22", "443"), 22, True),
        (("80", "1000-2000"), 3389, False),
        ("2222", 22, False),
        (None, 22, False),
    ],
)
def test_covers_port(ports, port, expected):
    assert OPERATORS["covers_port"](ports, port) is expected


def test_in_matches_any_member_of_a_list_value():
    assert OPERATORS["in"](("10.0.0.0/8", "internet"), ("*", "Internet"))
    assert not OPERATORS["in"](("10.0.0.0/8",), ("*", "Internet"))
    assert OPERATORS["not_in"](("10.0.0.0/8", "VirtualNetwork"), ("*", "Internet"))


def test_string_comparison_ignores_case():
    assert OPERATORS["equals"]("allow", "Allow")
    assert OPERATORS["in"]("internet", ("*", "Internet"))
    assert OPERATORS["contains"]("Standard_D4s_v3", "d4s")


def test_booleans_compare_by_identity():
    assert OPERATORS["equals"](True, True)
    assert not OPERATORS["equals"](1, True)
    assert not OPERATORS["equals"](None, False)


def test_ordering_operators_ignore_none():
    assert not OPERATORS["less_than"](None, 10)
    assert not OPERATORS["greater_than"](None, 10)
    assert OPERATORS["less_than"](3.5, 10)


def test_missing_property_raises():
    condition = Condition(property="access", operator="equals", value="Allow")
    with pytest.raises(RecordEvaluationError) as excinfo:
        condition.holds({"name": "rule-1"})
    assert excinfo.value.field == "access"
    assert excinfo.value.subject_id == "rule-1"


def test_none_is_a_valid_property_value():
    assert resolve_property({"a": {"b": None}}, "a.b") is None


def test_severity_rank_orders_high_first():
    assert Severity.HIGH.rank > Severity.MEDIUM.rank > Severity.LOW.rank
    assert Severity.parse(" medium ") is Severity.MEDIUM

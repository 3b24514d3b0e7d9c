"""
Rule Catalog

Loads the ordered rule table from YAML and turns each entry into an
immutable Rule whose predicate is a pure function of a record's fields.

Rule file format:

    rules:
      - id: nsg-allow-all-inbound
        domain: nsg
        severity: High            # High | Medium | Low
        polarity: risk            # risk (default) | secure
        points: 1                 # only meaningful for secure rules
        message: Allow-all inbound
        check:
          - {property: access, operator: equals, value: Allow}

Every condition of a check must hold for the predicate to be true. The file
is read once per path; rules are never mutated after loading.
"""

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

import yaml

from .errors import CatalogError, RecordEvaluationError
from .settings import RULES_PATH


class Severity(Enum):
    """Risk tier attached to a finding. High > Medium > Low."""

    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        for member in cls:
            if isinstance(value, str) and value.strip().lower() == member.value.lower():
                return member
        raise CatalogError(f"Unknown severity: {value!r}")


_SEVERITY_RANK = {Severity.HIGH: 3, Severity.MEDIUM: 2, Severity.LOW: 1}

# Display order, highest first
SEVERITY_ORDER = (Severity.HIGH, Severity.MEDIUM, Severity.LOW)


class Polarity(Enum):
    """What a satisfied predicate means for the record."""

    RISK = "risk"        # predicate true -> finding
    SECURE = "secure"    # predicate true -> points, false -> finding


# =============================================================================
# OPERATORS
# =============================================================================

def _norm(value: Any) -> Any:
    return value.casefold() if isinstance(value, str) else value


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return actual is expected
    return _norm(actual) == _norm(expected)


def _in(actual: Any, expected: Any) -> bool:
    # A list-valued property is in the set when any of its members is
    if isinstance(actual, (list, tuple)):
        return any(_in(item, expected) for item in actual)
    return any(_equals(actual, item) for item in expected)


def _contains(actual: Any, expected: Any) -> bool:
    if actual is None:
        return False
    if isinstance(actual, str):
        return _norm(str(expected)) in _norm(actual)
    return any(_equals(item, expected) for item in actual)


def _greater_than(actual: Any, expected: Any) -> bool:
    return actual is not None and float(actual) > float(expected)


def _less_than(actual: Any, expected: Any) -> bool:
    return actual is not None and float(actual) < float(expected)


def _covers_port(actual: Any, expected: Any) -> bool:
    """
    True when an NSG port specification includes the given port.

    Handles "*", single ports ("22"), ranges ("20-25") and comma-separated
    combinations ("80,443,1000-2000").
    """
    if actual is None:
        return False
    port = int(expected)
    pieces = actual if isinstance(actual, (list, tuple)) else str(actual).split(',')
    for piece in pieces:
        piece = str(piece).strip()
        if not piece:
            continue
        if piece in ('*', 'Any'):
            return True
        if '-' in piece:
            low, _, high = piece.partition('-')
            if low.strip().isdigit() and high.strip().isdigit():
                if int(low) <= port <= int(high):
                    return True
        elif piece.isdigit() and int(piece) == port:
            return True
    return False


def _matches(actual: Any, expected: Any) -> bool:
    return actual is not None and re.fullmatch(expected, str(actual), re.IGNORECASE) is not None


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    'equals': _equals,
    'not_equals': lambda actual, expected: not _equals(actual, expected),
    'in': _in,
    'not_in': lambda actual, expected: not _in(actual, expected),
    'contains': _contains,
    'not_contains': lambda actual, expected: not _contains(actual, expected),
    'greater_than': _greater_than,
    'less_than': _less_than,
    'covers_port': _covers_port,
    'matches': _matches,
}

_LIST_OPERATORS = ('in', 'not_in')


# =============================================================================
# RULES
# =============================================================================

_MISSING = object()


def resolve_property(record: Any, property_path: str) -> Any:
    """
    Navigate a dotted property path over attributes or mapping keys.

    Returns:
        The value at the path; None is a legitimate value

    Raises:
        RecordEvaluationError: If any segment of the path does not exist
    """
    current = record
    for part in property_path.split('.'):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        else:
            current = getattr(current, part, _MISSING)
        if current is _MISSING:
            raise RecordEvaluationError(subject_of(record), property_path)
    return current


def subject_of(record: Any) -> str:
    """Best-effort identifier of a record, for findings and warnings."""
    subject = getattr(record, 'subject_id', None)
    if subject:
        return subject
    if isinstance(record, Mapping):
        for key in ('subject_id', 'name', 'id'):
            if record.get(key):
                return str(record[key])
    return "<unknown>"


@dataclass(frozen=True)
class Condition:
    """One property/operator/value test."""

    property: str
    operator: str
    value: Any

    def holds(self, record: Any) -> bool:
        actual = resolve_property(record, self.property)
        try:
            return OPERATORS[self.operator](actual, self.value)
        except (TypeError, ValueError) as e:
            raise RecordEvaluationError(
                subject_of(record), self.property,
                reason=f"cannot apply '{self.operator}' ({e}) to"
            ) from e


@dataclass(frozen=True)
class Rule:
    """A catalog entry: predicate, severity, message template and polarity."""

    id: str
    domain: str
    severity: Severity
    message: str
    conditions: Tuple[Condition, ...]
    polarity: Polarity = Polarity.RISK
    points: int = 1

    def predicate(self, record: Any) -> bool:
        return all(condition.holds(record) for condition in self.conditions)


def _parse_condition(rule_id: str, data: Any) -> Condition:
    if not isinstance(data, Mapping):
        raise CatalogError(f"Rule '{rule_id}': each check entry must be a mapping")
    for key in ('property', 'operator'):
        if not data.get(key):
            raise CatalogError(f"Rule '{rule_id}': check entry lacks '{key}'")
    operator = data['operator']
    if operator not in OPERATORS:
        raise CatalogError(f"Rule '{rule_id}': unknown operator '{operator}'")
    value = data.get('value')
    if operator in _LIST_OPERATORS:
        if not isinstance(value, (list, tuple)):
            raise CatalogError(f"Rule '{rule_id}': operator '{operator}' needs a list value")
        value = tuple(value)
    if operator == 'matches':
        try:
            re.compile(value)
        except (re.error, TypeError) as e:
            raise CatalogError(f"Rule '{rule_id}': invalid pattern {value!r}: {e}") from e
    if operator == 'covers_port' and not str(value).isdigit():
        raise CatalogError(f"Rule '{rule_id}': covers_port needs a port number")
    return Condition(property=data['property'], operator=operator, value=value)


def parse_rule(data: Any) -> Rule:
    """
    Validate one rule entry from the rule file.

    Raises:
        CatalogError: If a required key is missing or a value is invalid
    """
    if not isinstance(data, Mapping):
        raise CatalogError(f"Rule entries must be mappings, got {type(data).__name__}")
    rule_id = data.get('id')
    if not rule_id:
        raise CatalogError("Rule without 'id'")
    for key in ('domain', 'severity', 'message', 'check'):
        if not data.get(key):
            raise CatalogError(f"Rule '{rule_id}': missing '{key}'")

    check = data['check']
    if isinstance(check, Mapping):
        check = [check]
    conditions = tuple(_parse_condition(rule_id, entry) for entry in check)

    try:
        polarity = Polarity(str(data.get('polarity', 'risk')).lower())
    except ValueError:
        raise CatalogError(f"Rule '{rule_id}': unknown polarity {data.get('polarity')!r}") from None

    points = data.get('points', 1)
    if not isinstance(points, int) or isinstance(points, bool) or points < 0:
        raise CatalogError(f"Rule '{rule_id}': points must be a non-negative integer")

    return Rule(
        id=str(rule_id),
        domain=str(data['domain']),
        severity=Severity.parse(data['severity']),
        message=str(data['message']),
        conditions=conditions,
        polarity=polarity,
        points=points,
    )


@lru_cache(maxsize=None)
def _load_catalog(path: str) -> Tuple[Rule, ...]:
    rules_file = Path(path)
    if not rules_file.exists():
        raise CatalogError(
            f"Rules file not found: {path}\n"
            f"Expected location: {rules_file.absolute()}"
        )
    try:
        with open(rules_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise CatalogError(f"Failed to parse rules file: {e}") from e

    entries = data.get('rules', []) if isinstance(data, Mapping) else None
    if not isinstance(entries, list):
        raise CatalogError(f"Rules file {path} must contain a 'rules' list")

    rules = tuple(parse_rule(entry) for entry in entries)
    seen = set()
    for rule in rules:
        if rule.id in seen:
            raise CatalogError(f"Duplicate rule id: {rule.id}")
        seen.add(rule.id)
    return rules


def load_catalog(rules_path: Optional[Union[str, Path]] = None) -> Tuple[Rule, ...]:
    """All rules of a rule file, in file order."""
    return _load_catalog(str(rules_path or RULES_PATH))


def list_rules(domain: str, rules_path: Optional[Union[str, Path]] = None) -> Tuple[Rule, ...]:
    """
    Ordered rules for one audit domain.

    Args:
        domain: nsg, storage, vm or rbac
        rules_path: Alternative rule file (defaults to the packaged catalog)

    Returns:
        Tuple of rules in catalog order; empty for a domain with no rules
    """
    return tuple(rule for rule in load_catalog(rules_path) if rule.domain == domain)

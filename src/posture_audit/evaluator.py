"""
Evaluator

Applies an ordered rule list to a single record. Risk rules emit a finding
when their predicate holds; secure rules earn points when it holds and emit
a finding when it does not. Both kinds can be mixed in one rule list.
"""

from dataclasses import dataclass, field
from string import Formatter
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .catalog import Polarity, Rule, Severity, subject_of
from .errors import RecordEvaluationError


@dataclass(frozen=True)
class Finding:
    """One flagged condition on one record."""

    rule_id: str
    severity: Severity
    message: str
    subject_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rule_id': self.rule_id,
            'severity': self.severity.value,
            'message': self.message,
            'subject_id': self.subject_id,
        }


@dataclass(frozen=True)
class SubjectResult:
    """
    Evaluation outcome for one record (ScoreSummary).

    points_possible is zero when the rule list has no secure rules; the
    percentage is then None rather than a misleading 0 or 100.
    record is the evaluated record itself; it is not part of the serialized
    result and two results compare equal regardless of it.
    """

    subject_id: str
    points_earned: int = 0
    points_possible: int = 0
    findings: List[Finding] = field(default_factory=list)
    category: Optional[str] = None
    record: Any = field(default=None, compare=False, repr=False)

    @property
    def percentage(self) -> Optional[float]:
        if self.points_possible == 0:
            return None
        return round(self.points_earned / self.points_possible * 100, 1)

    @property
    def scored(self) -> bool:
        return self.points_possible > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'subject_id': self.subject_id,
            'category': self.category,
            'points_earned': self.points_earned,
            'points_possible': self.points_possible,
            'percentage': self.percentage,
            'findings': [finding.to_dict() for finding in self.findings],
        }


def _record_fields(record: Any) -> Mapping[str, Any]:
    if isinstance(record, Mapping):
        return record
    if hasattr(record, 'as_dict'):
        return record.as_dict()
    return vars(record)


def format_message(rule: Rule, record: Any) -> str:
    """
    Render a rule's message template with the record's fields.

    Raises:
        RecordEvaluationError: If the template names a field the record lacks
            or the value cannot be formatted
    """
    values = _record_fields(record)
    try:
        return Formatter().vformat(rule.message, (), values)
    except KeyError as e:
        raise RecordEvaluationError(subject_of(record), str(e.args[0])) from e
    except (TypeError, ValueError) as e:
        raise RecordEvaluationError(
            subject_of(record), rule.id, reason=f"cannot format message ({e}) for rule"
        ) from e


def evaluate_record(record: Any, rules: Sequence[Rule]) -> SubjectResult:
    """
    Evaluate every rule against one record, in catalog order.

    Args:
        record: Audit record (or mapping) exposing the fields the rules test
        rules: Ordered rules, typically list_rules(domain)

    Returns:
        SubjectResult with findings in rule order and the score

    Raises:
        RecordEvaluationError: If the record lacks a field a rule needs
    """
    subject_id = subject_of(record)
    findings: List[Finding] = []
    earned = 0
    possible = 0

    for rule in rules:
        satisfied = rule.predicate(record)

        if rule.polarity is Polarity.SECURE:
            possible += rule.points
            if satisfied:
                earned += rule.points
                continue
        elif not satisfied:
            continue

        findings.append(Finding(
            rule_id=rule.id,
            severity=rule.severity,
            message=format_message(rule, record),
            subject_id=subject_id,
        ))

    return SubjectResult(
        subject_id=subject_id,
        points_earned=earned,
        points_possible=possible,
        findings=findings,
        category=getattr(record, 'category', None),
        record=record,
    )


def evaluate(record: Any, rules: Sequence[Rule]) -> List[Finding]:
    """Findings for one record; an empty list when nothing fires."""
    return evaluate_record(record, rules).findings

"""
Aggregator

Runs the Evaluator over a collection of records and produces the AuditReport:
per-subject results in input order plus summary counters.

A record that cannot be evaluated is skipped with a warning. A failure of the
record source itself (FetchError raised while iterating) aborts the whole
aggregation.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .catalog import SEVERITY_ORDER, Rule
from .errors import FetchError, RecordEvaluationError
from .eventlog import EventLog
from .evaluator import SubjectResult, evaluate_record
from .records import RECORD_TYPES


@dataclass(frozen=True)
class AuditReport:
    """Final, write-once output of one aggregation."""

    domain: str
    subjects: Tuple[SubjectResult, ...]
    totals: Dict[str, Any]
    warnings: Tuple[str, ...] = ()
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def findings(self):
        """All findings, subject by subject, each in rule order."""
        return [finding for subject in self.subjects for finding in subject.findings]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'generated_at': self.generated_at.isoformat(),
            'domain': self.domain,
            'totals': self.totals,
            'warnings': list(self.warnings),
            'subjects': [subject.to_dict() for subject in self.subjects],
        }


def _ingest(item: Any, record_type) -> Any:
    # Mappings come from exports or tests; SDK-built records are already typed
    if isinstance(item, Mapping) and record_type is not None:
        return record_type.from_mapping(item)
    return item


def summarize(subjects: Sequence[SubjectResult], skipped: int = 0) -> Dict[str, Any]:
    """
    Summary counters for a list of subject results.

    Returns:
        Dictionary with subjects, skipped, findings, by_severity, by_category,
        points_earned, points_possible and percentage (0.0 when nothing
        was scored)
    """
    by_severity = {severity.value: 0 for severity in SEVERITY_ORDER}
    by_category: Counter = Counter()
    earned = 0
    possible = 0

    for subject in subjects:
        for finding in subject.findings:
            by_severity[finding.severity.value] += 1
        if subject.category is not None:
            by_category[subject.category] += 1
        earned += subject.points_earned
        possible += subject.points_possible

    return {
        'subjects': len(subjects),
        'skipped': skipped,
        'findings': sum(by_severity.values()),
        'by_severity': by_severity,
        'by_category': dict(by_category),
        'points_earned': earned,
        'points_possible': possible,
        'percentage': round(earned / possible * 100, 1) if possible else 0.0,
    }


def aggregate(records: Iterable[Any], rules: Sequence[Rule],
              record_type=None, domain: Optional[str] = None,
              event_log: Optional[EventLog] = None) -> AuditReport:
    """
    Evaluate every record and build the AuditReport.

    Args:
        records: Records (typed or plain mappings); may be a lazy iterable
            backed by a record source
        rules: Ordered rules for the domain
        record_type: Record class used to validate mappings (inferred from
            the domain when omitted)
        domain: Audit domain (inferred from the rules when omitted)
        event_log: Optional audit trail for skipped records and aborts

    Returns:
        AuditReport preserving input order (skipped records omitted)

    Raises:
        FetchError: If iterating the records fails at the source
    """
    if domain is None:
        domain = rules[0].domain if rules else getattr(record_type, 'DOMAIN', '')
    if record_type is None:
        record_type = RECORD_TYPES.get(domain)

    results: List[SubjectResult] = []
    warnings: List[str] = []

    try:
        for index, item in enumerate(records):
            try:
                record = _ingest(item, record_type)
                results.append(evaluate_record(record, rules))
            except RecordEvaluationError as e:
                warning = f"Skipped record #{index}: {e}"
                warnings.append(warning)
                print(f"  ⚠ {warning}")
                if event_log is not None:
                    event_log.log("RECORD_SKIPPED", {
                        'domain': domain,
                        'index': index,
                        'subject_id': e.subject_id,
                        'field': e.field,
                        'reason': e.reason,
                    })
    except FetchError as e:
        print(f"  ✗ Aggregation aborted: {e}")
        if event_log is not None:
            event_log.log("AGGREGATION_ABORTED", {
                'domain': domain,
                'scope': e.scope,
                'error': str(e),
                'evaluated_before_failure': len(results),
            })
        raise

    report = AuditReport(
        domain=domain,
        subjects=tuple(results),
        totals=summarize(results, skipped=len(warnings)),
        warnings=tuple(warnings),
    )

    if event_log is not None:
        event_log.log("AGGREGATION_COMPLETED", {
            'domain': domain,
            'subjects': report.totals['subjects'],
            'skipped': report.totals['skipped'],
            'findings': report.totals['findings'],
        })

    return report

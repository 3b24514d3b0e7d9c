"""
Posture Agent - Workflow Orchestrator

Ties the pieces together for each menu action:

    audit:       fetch records -> select rules -> aggregate -> render
    sizing:      VM records (fetched or reused) -> recommend sizes -> table + CSV
    remediation: pick remediable findings -> confirm each -> apply change

The agent keeps the records and report of the last audit so a remediation
run can follow without re-fetching. Every step is written to the run's
event log.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .aggregator import AuditReport, aggregate
from .catalog import list_rules, subject_of
from .errors import FetchError, RecordEvaluationError, RenderError
from .eventlog import EventLog
from .prompts import AutoApprovePrompter, ConsolePrompter, Prompter
from .records import VMRecord, record_type_for
from .remediator import has_remediation
from .reporter import render, write_artifact, write_csv_rows
from .settings import (
    DEFAULT_REPORT_FORMATS,
    REPORT_DATE_FORMAT,
    REPORTS_DIR,
    REQUIRE_CONFIRMATION,
    SIZING_BASENAME,
    get_sizing_config,
)
from .sizing import SizingRecommendation, recommend_size

SIZING_COLUMNS = ['vm_name', 'current_size', 'recommended_size', 'action', 'reason']

# First option of every scope selection
WHOLE_SUBSCRIPTION = "Whole subscription"


class PostureAgent:
    """
    Runs audits, sizing advice and remediations against one record source.

    Args:
        source: Object with fetch_records(domain, scope) and
            list_scopes(domain) (AzureRecordSource)
        remediator: Object with apply_change(finding, record); remediation
            is unavailable without one
        prompter: Asks for confirmation before each change (console by
            default, auto-approve when confirmation is switched off)
        event_log: Audit trail (a new one per agent by default)
        output_dir: Where report artifacts are written
        rules_path: Alternative rule file
    """

    def __init__(self, source: Any, remediator: Any = None,
                 prompter: Optional[Prompter] = None,
                 event_log: Optional[EventLog] = None,
                 output_dir: Union[str, Path] = REPORTS_DIR,
                 rules_path: Optional[Union[str, Path]] = None):
        self.source = source
        self.remediator = remediator
        if prompter is None:
            prompter = ConsolePrompter() if REQUIRE_CONFIRMATION else AutoApprovePrompter()
        self.prompter = prompter
        self.event_log = event_log or EventLog()
        self.output_dir = Path(output_dir)
        self.rules_path = rules_path

        self.last_report: Optional[AuditReport] = None
        self.last_records: List[Any] = []

        self.event_log.log("INITIALIZED", {'run_id': self.event_log.run_id})

    # =========================================================================
    # SCOPE SELECTION
    # =========================================================================

    def select_scope(self, domain: str) -> Tuple[bool, Optional[str]]:
        """
        Let the prompter pick the scope of an audit.

        The options are the whole subscription followed by the scopes the
        source offers for the domain (resource groups, or role scopes for
        rbac).

        Returns:
            Tuple of (chosen, scope): chosen is False when the selection was
            cancelled; scope is None for the whole subscription

        Raises:
            FetchError: If the source cannot list its scopes
        """
        options = [WHOLE_SUBSCRIPTION] + list(self.source.list_scopes(domain))
        title = "Select role scope" if domain == 'rbac' else "Select resource group"
        choice = self.prompter.choose_one(options, title)
        if choice is None:
            return (False, None)
        scope = None if choice == WHOLE_SUBSCRIPTION else choice
        self.event_log.log("SCOPE_SELECTED", {'domain': domain, 'scope': scope})
        return (True, scope)

    # =========================================================================
    # AUDIT
    # =========================================================================

    def run_audit(self, domain: str, scope: Optional[str] = None,
                  formats: Iterable[str] = DEFAULT_REPORT_FORMATS) -> AuditReport:
        """
        Audit one domain and render the report.

        Args:
            domain: nsg, storage, vm or rbac
            scope: Resource group (or role scope for rbac); None for the
                whole subscription
            formats: Report formats to emit

        Returns:
            The AuditReport (also kept as last_report)

        Raises:
            FetchError: If the records could not be fetched
        """
        print(f"\n{'='*70}")
        print(f"AUDIT: {domain.upper()}" + (f" ({scope})" if scope else ""))
        print(f"{'='*70}")

        self.event_log.state = "AUDITING"
        self.event_log.log("AUDIT_STARTED", {'domain': domain, 'scope': scope})

        try:
            records = list(self.source.fetch_records(domain, scope))
        except FetchError as e:
            self.event_log.state = "FAILED"
            self.event_log.log("AUDIT_FAILED", {'domain': domain, 'scope': scope, 'error': str(e)})
            raise

        rules = list_rules(domain, self.rules_path)
        if not rules:
            print(f"  ⚠ No rules defined for domain '{domain}'")

        report = aggregate(records, rules, domain=domain, event_log=self.event_log)
        self.last_records = records
        self.last_report = report

        self.event_log.state = "REPORTING"
        result = render(report, formats, output_dir=self.output_dir)
        self.event_log.log("REPORT_RENDERED", {
            'domain': domain,
            'written': {fmt: str(path) for fmt, path in result.written.items()},
            'errors': [str(e) for e in result.errors],
        })

        self.event_log.state = "COMPLETE"
        self.event_log.log("AUDIT_COMPLETED", {
            'domain': domain,
            'findings': report.totals['findings'],
            'by_severity': report.totals['by_severity'],
        })
        return report

    # =========================================================================
    # VM SIZING
    # =========================================================================

    def advise_vm_sizes(self, scope: Optional[str] = None,
                        records: Optional[Sequence[VMRecord]] = None) -> List[SizingRecommendation]:
        """
        Right-sizing advice for every VM in scope, printed and saved as CSV.

        Args:
            scope: Resource group; None for the whole subscription
            records: VM records already fetched (by a VM audit of the same
                scope); fetched from the source when omitted
        """
        self.event_log.state = "SIZING"
        self.event_log.log("SIZING_STARTED", {'scope': scope, 'reused_records': records is not None})

        if records is None:
            records = self.source.fetch_records('vm', scope)
        thresholds = get_sizing_config()
        recommendations = [
            recommend_size(record, thresholds['low_cpu'], thresholds['high_cpu'],
                           thresholds['low_memory'])
            for record in records
        ]

        print(f"\n{'='*70}")
        print(f"VM SIZING ADVICE")
        print(f"{'='*70}")
        if not recommendations:
            print("  No virtual machines found")
        for rec in recommendations:
            target = rec.recommended_size or "-"
            print(f"  {rec.vm_name:24s} {rec.current_size:18s} {rec.action:9s} {target:18s} {rec.reason}")

        stamp = datetime.now(timezone.utc).strftime(REPORT_DATE_FORMAT)
        path = self.output_dir / f"{SIZING_BASENAME}_{stamp}.csv"
        try:
            write_artifact(path, lambda p: write_csv_rows(
                p, SIZING_COLUMNS, [rec.to_dict() for rec in recommendations]))
            print(f"\n✓ Sizing CSV saved to: {path}")
        except RenderError as e:
            print(f"\n✗ {e}")

        self.event_log.log("SIZING_COMPLETED", {
            'vms': len(recommendations),
            'actions': {action: sum(1 for r in recommendations if r.action == action)
                        for action in ('downsize', 'upsize', 'keep', 'unknown')},
        })
        return recommendations

    # =========================================================================
    # REMEDIATION
    # =========================================================================

    def remediate(self, report: Optional[AuditReport] = None,
                  records: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """
        Offer a fix for every remediable finding, one confirmation at a time.

        Each finding is fixed on the record it was raised on. Records are
        only looked up by subject ID for a report whose results do not carry
        them; a subject ID shared by several records (same-named NSGs in
        different resource groups) is then refused rather than guessed.

        Args:
            report: Audit report (defaults to the last audit)
            records: Records the report was built from, for reports without
                records attached (defaults to the last audit's records)

        Returns:
            One result dictionary per remediable finding, with 'success',
            'skipped' and 'message'
        """
        report = report or self.last_report
        records = self.last_records if records is None else records
        if report is None:
            print("\n⚠ No audit report to remediate - run an audit first")
            return []
        if self.remediator is None:
            print("\n⚠ No remediator configured")
            return []

        by_subject = _records_by_subject(report.domain, records)
        candidates = [
            (finding, subject.record)
            for subject in report.subjects
            for finding in subject.findings
            if has_remediation(finding.rule_id)
        ]
        print(f"\n{len(candidates)} of {len(report.findings)} finding(s) can be remediated")

        self.event_log.state = "REMEDIATING"
        self.event_log.log("REMEDIATION_STARTED", {
            'domain': report.domain,
            'candidates': len(candidates),
        })

        results = []
        for i, (finding, record) in enumerate(candidates, 1):
            result = {
                'index': i,
                'rule_id': finding.rule_id,
                'subject_id': finding.subject_id,
                'severity': finding.severity.value,
                'timestamp': datetime.now(timezone.utc).isoformat(),
                'success': False,
                'skipped': False,
                'message': '',
            }

            matches = [record] if record is not None else by_subject.get(finding.subject_id, [])
            prompt = f"[{i}/{len(candidates)}] [{finding.severity.value}] {finding.message} on {finding.subject_id}. Apply fix?"
            if len(matches) != 1:
                if matches:
                    result['message'] = f"{len(matches)} records match {finding.subject_id}"
                else:
                    result['message'] = f"No record found for {finding.subject_id}"
                print(f"  ✗ {result['message']}")
                self.event_log.log("REMEDIATION_FAILED", result)
            elif not self.prompter.confirm(prompt):
                result['skipped'] = True
                result['message'] = "Declined by user"
                print(f"  ○ Skipped")
                self.event_log.log("REMEDIATION_DECLINED", result)
            else:
                success, message = self.remediator.apply_change(finding, matches[0])
                result['success'] = success
                result['message'] = message
                if success:
                    print(f"  ✓ Success: {message}")
                    self.event_log.log("REMEDIATION_SUCCESS", result)
                else:
                    print(f"  ✗ Failed: {message}")
                    self.event_log.log("REMEDIATION_FAILED", result)
            results.append(result)

        successes = sum(1 for r in results if r['success'])
        skipped = sum(1 for r in results if r['skipped'])
        failures = len(results) - successes - skipped
        print(f"\n✓ Remediation complete: {successes} succeeded, {failures} failed, {skipped} skipped")

        self.event_log.state = "COMPLETE"
        self.event_log.log("REMEDIATION_COMPLETED", {
            'total': len(results),
            'successes': successes,
            'failures': failures,
            'skipped': skipped,
        })
        return results


def _records_by_subject(domain: str, records: Iterable[Any]) -> Dict[str, List[Any]]:
    record_type = record_type_for(domain)
    by_subject: Dict[str, List[Any]] = {}
    for record in records:
        if isinstance(record, Mapping):
            try:
                record = record_type.from_mapping(record)
            except RecordEvaluationError:
                continue
        by_subject.setdefault(subject_of(record), []).append(record)
    return by_subject

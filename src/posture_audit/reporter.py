"""
Reporter

Renders an AuditReport to the console and to file artifacts (CSV, JSON,
delimited plain text and an Excel workbook).

Console output always comes first. Each file artifact is written once,
overwriting any artifact of the same name; a failed write is reported as a
RenderError in the result and does not stop the remaining artifacts.

Artifact names carry a date-only stamp:
    <basename>_<domain>_<YYYYMMDD>.<ext>
"""

import csv
import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from .aggregator import AuditReport
from .catalog import SEVERITY_ORDER
from .errors import RenderError
from .settings import (
    MAX_FINDINGS_PER_SEVERITY,
    REPORT_BASENAME,
    REPORT_DATE_FORMAT,
    REPORTS_DIR,
)


class ReportFormat(Enum):
    CONSOLE = "console"
    CSV = "csv"
    JSON = "json"
    TEXT = "text"
    EXCEL = "excel"


EXTENSIONS = {
    ReportFormat.CSV: "csv",
    ReportFormat.JSON: "json",
    ReportFormat.TEXT: "txt",
    ReportFormat.EXCEL: "xlsx",
}

# File formats in the order they are written
FILE_FORMATS = (ReportFormat.CSV, ReportFormat.JSON, ReportFormat.TEXT, ReportFormat.EXCEL)

CSV_COLUMNS = [
    'subject_id', 'category', 'rule_id', 'severity', 'message',
    'points_earned', 'points_possible', 'percentage',
]

SEVERITY_SYMBOLS = {'High': "🔴", 'Medium': "🟡", 'Low': "⚪"}


@dataclass
class RenderResult:
    """Paths written and errors raised by one render() call."""

    written: Dict[str, Path] = field(default_factory=dict)
    errors: List[RenderError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def parse_formats(values: Iterable[Union[str, ReportFormat]]) -> List[ReportFormat]:
    """
    Normalise format names ('csv', 'JSON', ReportFormat.TEXT, ...).

    Raises:
        ValueError: For an unknown format name
    """
    formats = []
    for value in values:
        fmt = value if isinstance(value, ReportFormat) else ReportFormat(str(value).strip().lower())
        if fmt not in formats:
            formats.append(fmt)
    return formats


def artifact_path(report: AuditReport, fmt: ReportFormat,
                  output_dir: Union[str, Path] = REPORTS_DIR,
                  basename: str = REPORT_BASENAME) -> Path:
    """Where an artifact of the given format is written for this report."""
    stamp = report.generated_at.strftime(REPORT_DATE_FORMAT)
    return Path(output_dir) / f"{basename}_{report.domain}_{stamp}.{EXTENSIONS[fmt]}"


def write_artifact(path: Path, writer: Callable[[Path], None]) -> Path:
    """
    Create the parent directory and run a writer for one artifact.

    Raises:
        RenderError: If the directory or the file cannot be written
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        writer(path)
    except (OSError, ValueError) as e:
        raise RenderError(str(path), e) from e
    return path


def write_csv_rows(path: Path, columns: Sequence[str], rows: Iterable[Dict[str, Any]]) -> None:
    with open(path, 'w', encoding='utf-8', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=list(columns))
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def write_json(path: Path, data: Any) -> None:
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, default=str)


# =============================================================================
# CONSOLE
# =============================================================================

def render_console(report: AuditReport) -> None:
    """Print the report, findings grouped by severity, highest first."""
    totals = report.totals

    print(f"\n{'='*70}")
    print(f"AUDIT REPORT: {report.domain.upper()}")
    print(f"Generated: {report.generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    print(f"{'='*70}")
    print(f"Subjects evaluated: {totals['subjects']}")
    if totals['skipped']:
        print(f"Subjects skipped:   {totals['skipped']}")
    print(f"Total findings:     {totals['findings']}")
    for severity in SEVERITY_ORDER:
        print(f"  {severity.value:8s}: {totals['by_severity'][severity.value]}")
    if totals['by_category']:
        breakdown = ", ".join(f"{name}={count}" for name, count in sorted(totals['by_category'].items()))
        print(f"By category: {breakdown}")

    if totals['points_possible']:
        print(f"\nSecurity score: {totals['points_earned']}/{totals['points_possible']} "
              f"({totals['percentage']:.1f}%)")
        for subject in report.subjects:
            print(f"  {subject.subject_id}: {subject.points_earned}/{subject.points_possible} "
                  f"({subject.percentage:.1f}%)")

    findings = report.findings
    for severity in SEVERITY_ORDER:
        group = [f for f in findings if f.severity is severity]
        if not group:
            continue
        symbol = SEVERITY_SYMBOLS[severity.value]
        print(f"\n{symbol} {severity.value.upper()} ({len(group)})")
        print("-"*70)
        for finding in group[:MAX_FINDINGS_PER_SEVERITY]:
            print(f"  [{severity.value}] {finding.subject_id}: {finding.message}")
        if len(group) > MAX_FINDINGS_PER_SEVERITY:
            print(f"  ... and {len(group) - MAX_FINDINGS_PER_SEVERITY} more")

    if not findings:
        print("\n✓ No findings")

    if report.warnings:
        print(f"\n⚠ {len(report.warnings)} record(s) skipped:")
        for warning in report.warnings:
            print(f"  - {warning}")

    print(f"{'='*70}\n")


# =============================================================================
# FILE ARTIFACTS
# =============================================================================

def report_rows(report: AuditReport) -> List[Dict[str, Any]]:
    """Flat CSV rows: one per finding, or one per subject without findings."""
    rows = []
    for subject in report.subjects:
        base = {
            'subject_id': subject.subject_id,
            'category': subject.category or '',
            'points_earned': subject.points_earned,
            'points_possible': subject.points_possible,
            'percentage': '' if subject.percentage is None else subject.percentage,
        }
        if not subject.findings:
            rows.append({**base, 'rule_id': '', 'severity': '', 'message': ''})
        for finding in subject.findings:
            rows.append({
                **base,
                'rule_id': finding.rule_id,
                'severity': finding.severity.value,
                'message': finding.message,
            })
    return rows


def _write_csv(report: AuditReport, path: Path) -> None:
    write_csv_rows(path, CSV_COLUMNS, report_rows(report))


def _write_json(report: AuditReport, path: Path) -> None:
    write_json(path, report.to_dict())


def _write_text(report: AuditReport, path: Path) -> None:
    totals = report.totals
    stamp = report.generated_at.isoformat()
    lines = [
        "="*80,
        f"POSTURE AUDIT REPORT: {report.domain.upper()}",
        "="*80,
        f"Generated: {stamp}",
        "",
        "SUMMARY",
        "-"*80,
        f"Subjects: {totals['subjects']}",
        f"Skipped: {totals['skipped']}",
        f"Findings: {totals['findings']}",
    ]
    for severity in SEVERITY_ORDER:
        lines.append(f"  {severity.value}: {totals['by_severity'][severity.value]}")
    if totals['points_possible']:
        lines.append(f"Score: {totals['points_earned']}/{totals['points_possible']} "
                     f"({totals['percentage']:.1f}%)")

    lines += ["", "="*80, f"FINDINGS [{stamp}]", "="*80]
    findings = report.findings
    for severity in SEVERITY_ORDER:
        group = [f for f in findings if f.severity is severity]
        if not group:
            continue
        lines.append(f"\n{severity.value.upper()}")
        lines.append("-"*80)
        for i, finding in enumerate(group, 1):
            lines.append(f"{i}. {finding.message}")
            lines.append(f"   Subject: {finding.subject_id}")
            lines.append(f"   Rule ID: {finding.rule_id}")
    if not findings:
        lines.append("No findings")

    if report.warnings:
        lines += ["", "="*80, f"SKIPPED RECORDS [{stamp}]", "="*80]
        lines += [f"- {warning}" for warning in report.warnings]

    with open(path, 'w', encoding='utf-8') as f:
        f.write("\n".join(lines) + "\n")


def _write_excel(report: AuditReport, path: Path) -> None:
    wb = Workbook()
    wb.remove(wb.active)
    _create_summary_sheet(wb, report)
    _create_findings_sheet(wb, report)
    wb.save(path)


def _create_summary_sheet(wb: Workbook, report: AuditReport) -> None:
    """Summary sheet: report metadata and the severity breakdown."""
    ws = wb.create_sheet("Summary", 0)
    totals = report.totals

    header_fill = PatternFill(start_color="1F4788", end_color="1F4788", fill_type="solid")
    severity_fills = {
        'High': PatternFill(start_color="FF6600", end_color="FF6600", fill_type="solid"),
        'Medium': PatternFill(start_color="FFC000", end_color="FFC000", fill_type="solid"),
        'Low': PatternFill(start_color="92D050", end_color="92D050", fill_type="solid"),
    }
    white_font = Font(color="FFFFFF", bold=True, size=12)
    header_font = Font(bold=True, size=11)

    ws['A1'] = f"POSTURE AUDIT REPORT: {report.domain.upper()}"
    ws['A1'].font = Font(bold=True, size=16)
    ws.merge_cells('A1:C1')

    ws['A3'] = "Report Date:"
    ws['B3'] = report.generated_at.strftime("%Y-%m-%d %H:%M:%S UTC")
    ws['A4'] = "Subjects:"
    ws['B4'] = totals['subjects']
    ws['A5'] = "Total Findings:"
    ws['B5'] = totals['findings']
    ws['A6'] = "Score:"
    ws['B6'] = (f"{totals['points_earned']}/{totals['points_possible']} ({totals['percentage']:.1f}%)"
                if totals['points_possible'] else "N/A")
    for row in range(3, 7):
        ws[f'A{row}'].font = header_font

    ws['A8'] = "Severity"
    ws['B8'] = "Count"
    ws['C8'] = "Percentage"
    for col in ['A', 'B', 'C']:
        ws[f'{col}8'].fill = header_fill
        ws[f'{col}8'].font = white_font
        ws[f'{col}8'].alignment = Alignment(horizontal='center')

    row = 9
    for severity in SEVERITY_ORDER:
        count = totals['by_severity'][severity.value]
        percentage = (count / totals['findings'] * 100) if totals['findings'] else 0
        ws[f'A{row}'] = severity.value
        ws[f'B{row}'] = count
        ws[f'C{row}'] = f"{percentage:.1f}%"
        for col in ['A', 'B', 'C']:
            ws[f'{col}{row}'].fill = severity_fills[severity.value]
            ws[f'{col}{row}'].font = Font(color="FFFFFF", bold=True)
            ws[f'{col}{row}'].alignment = Alignment(horizontal='center')
        row += 1

    ws.column_dimensions['A'].width = 18
    ws.column_dimensions['B'].width = 30
    ws.column_dimensions['C'].width = 15


def _create_findings_sheet(wb: Workbook, report: AuditReport) -> None:
    """Findings sheet: one row per CSV row, severity-coloured."""
    ws = wb.create_sheet("Findings", 1)

    header_fill = PatternFill(start_color="1F4788", end_color="1F4788", fill_type="solid")
    white_font = Font(color="FFFFFF", bold=True, size=11)
    border = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin')
    )
    row_fills = {
        'High': PatternFill(start_color="FFE6CC", end_color="FFE6CC", fill_type="solid"),
        'Medium': PatternFill(start_color="FFF2CC", end_color="FFF2CC", fill_type="solid"),
        'Low': PatternFill(start_color="E6F4EA", end_color="E6F4EA", fill_type="solid"),
    }

    for col_num, header in enumerate(CSV_COLUMNS, 1):
        cell = ws.cell(row=1, column=col_num)
        cell.value = header.replace('_', ' ').title()
        cell.fill = header_fill
        cell.font = white_font
        cell.alignment = Alignment(horizontal='center', wrap_text=True)
        cell.border = border

    for row_num, row in enumerate(report_rows(report), 2):
        fill = row_fills.get(row['severity'])
        for col_num, column in enumerate(CSV_COLUMNS, 1):
            cell = ws.cell(row=row_num, column=col_num)
            cell.value = row[column]
            cell.border = border
            cell.alignment = Alignment(wrap_text=True, vertical='top')
            if fill is not None:
                cell.fill = fill

    column_widths = [40, 15, 32, 10, 60, 8, 8, 10]
    for i, width in enumerate(column_widths, 1):
        ws.column_dimensions[get_column_letter(i)].width = width

    ws.freeze_panes = 'A2'
    ws.auto_filter.ref = ws.dimensions


_FILE_WRITERS = {
    ReportFormat.CSV: _write_csv,
    ReportFormat.JSON: _write_json,
    ReportFormat.TEXT: _write_text,
    ReportFormat.EXCEL: _write_excel,
}


def render(report: AuditReport, formats: Iterable[Union[str, ReportFormat]],
           output_dir: Optional[Union[str, Path]] = None,
           basename: Optional[str] = None) -> RenderResult:
    """
    Emit every requested artifact for a report.

    Args:
        report: Aggregated audit report
        formats: Any of console, csv, json, text, excel
        output_dir: Directory for file artifacts (defaults to REPORTS_DIR)
        basename: Artifact name prefix (defaults to REPORT_BASENAME)

    Returns:
        RenderResult with the paths written and any RenderErrors
    """
    requested = parse_formats(formats)
    result = RenderResult()

    if ReportFormat.CONSOLE in requested:
        render_console(report)

    for fmt in FILE_FORMATS:
        if fmt not in requested:
            continue
        path = artifact_path(report, fmt, output_dir or REPORTS_DIR, basename or REPORT_BASENAME)
        try:
            write_artifact(path, lambda p, w=_FILE_WRITERS[fmt]: w(report, p))
        except RenderError as e:
            print(f"✗ {e}")
            result.errors.append(e)
            continue
        print(f"✓ {fmt.value.upper()} report saved to: {path}")
        result.written[fmt.value] = path

    return result

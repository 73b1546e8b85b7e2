# contract_scanner/report.py
"""
Report assembly and markdown rendering.

- Findings are ordered by severity (descending), start line, then rule id.
- to_markdown() is a pure function of a Report; it never reads anything else.
"""

import re
from typing import List, Sequence

from models import Category, Finding, Report, ScanMetadata, Severity
from contract_scanner.aggregator import aggregate

_BACKTICK_RUN_RE = re.compile(r"`+")


def sort_key(finding: Finding):
    return (-finding.severity.rank, finding.start_line, finding.rule_id, finding.start_offset, finding.end_offset)


def sort_findings(findings: Sequence[Finding]) -> List[Finding]:
    return sorted(findings, key=sort_key)


def build_report(findings: Sequence[Finding], metadata: ScanMetadata) -> Report:
    """Order findings, aggregate them and wrap everything in a Report."""
    ordered = sort_findings(findings)
    summary = aggregate(ordered)
    return Report(
        findings=tuple(ordered),
        score=summary.score,
        risk_label=summary.risk_label,
        category_counts=summary.category_counts,
        severity_counts=summary.severity_counts,
        metadata=metadata,
    )


def _fence(snippet: str) -> str:
    longest = max((len(run) for run in _BACKTICK_RUN_RE.findall(snippet)), default=0)
    return "`" * max(3, longest + 1)


def _finding_section(index: int, finding: Finding) -> List[str]:
    fence = _fence(finding.snippet)
    lines = [
        f"### Finding {index}: {finding.title}",
        "",
        f"- **Rule:** `{finding.rule_id}`",
        f"- **Category:** {finding.category.value}",
        f"- **Severity:** {finding.severity.label}",
        f"- **Gas impact:** {finding.gas_impact.value}",
    ]
    if finding.swc:
        lines.append(f"- **SWC:** {finding.swc}")
    lines += [
        f"- **Location:** {finding.location} to line {finding.end_line}, column {finding.end_column}",
        "",
        f"{fence}solidity",
        finding.snippet,
        fence,
        "",
    ]
    if finding.evidence:
        lines += [f"**Evidence:** {finding.evidence}", ""]
    lines += [
        f"**Description:** {finding.description}",
        "",
        f"**Remediation:** {finding.remediation}",
        "",
    ]
    return lines


def _notes(metadata: ScanMetadata) -> List[str]:
    notes: List[str] = []
    if metadata.cancelled:
        notes.append(f"- Scan was cancelled after {metadata.rules_evaluated} of {metadata.rules_total} rules; results are partial.")
    if metadata.budget_exceeded:
        notes.append(
            f"- Evaluation budget exhausted after {metadata.rules_evaluated} of {metadata.rules_total} rules; results are partial."
        )
    for error in metadata.rule_errors:
        notes.append(f"- Rule `{error.rule_id}` failed and was skipped: {error.message}")
    for block in metadata.unparsable_blocks:
        notes.append(f"- Could not structure {block.kind} `{block.name}` at line {block.line} ({block.reason}).")
    for warning in metadata.warnings:
        notes.append(f"- Source warning: {warning}")
    return notes


def to_markdown(report: Report) -> str:
    """Render a Report as markdown."""
    lines = [
        "# Smart Contract Security Report",
        "",
        f"**Overall risk:** {report.risk_label}",
        "",
        f"**Score:** {report.score}",
        "",
        f"**Findings:** {len(report.findings)}",
        "",
        "## Summary by Category",
        "",
        "| Category | Findings |",
        "| --- | ---: |",
    ]
    for category in Category:
        lines.append(f"| {category.value} | {report.category_counts.get(category.value, 0)} |")
    lines += ["", "## Summary by Severity", "", "| Severity | Findings |", "| --- | ---: |"]
    for severity in Severity:
        lines.append(f"| {severity.label} | {report.severity_counts.get(severity.value, 0)} |")
    lines.append("")

    notes = _notes(report.metadata)
    if notes:
        lines += ["## Scan Notes", ""] + notes + [""]

    lines += ["## Findings", ""]
    if not report.findings:
        lines += ["No issues detected.", ""]
    for index, finding in enumerate(report.findings, start=1):
        lines += _finding_section(index, finding)
    return "\n".join(lines).rstrip() + "\n"

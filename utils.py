# utils.py
"""
Utility helpers: source loading, report files, and console output.

- Uses Rich for colorful, wrapped tables in the terminal.
- Saves JSON, CSV, HTML and Markdown reports.
"""

from datetime import datetime, timezone
from html import escape
from typing import Dict, List, Optional
import csv
import json
import os

from rich.console import Console
from rich.table import Table
from rich.text import Text

from models import Finding, Report, Rule
from contract_scanner.report import to_markdown

_console = Console()

_SEVERITY_STYLES = {
    "critical": "bold red",
    "high": "bold yellow",
    "medium": "yellow",
    "low": "green",
}

CSV_FIELDS = [
    "rule_id", "title", "category", "severity", "gas_impact",
    "start_line", "start_column", "end_line", "end_column", "swc", "evidence", "snippet",
]


def load_source_file(path: str) -> str:
    """
    Read a contract source file as text.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Source file not found: {path}.")
    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as fh:
            return fh.read()
    except UnicodeDecodeError as e:
        raise ValueError(f"Source file {path} is not valid UTF-8: {e.reason} (byte {e.start})") from e


def ensure_reports_dir(path: str = "reports") -> str:
    os.makedirs(path, exist_ok=True)
    return path


def findings_to_table_rows(findings: List[Finding]) -> List[List[str]]:
    rows: List[List[str]] = []
    for f in findings:
        rows.append([
            f.severity.value,
            f.rule_id,
            f.category.value,
            f"{f.start_line}:{f.start_column}",
            str(f.evidence or f.title),
        ])
    return rows


def _report_base_name(source_name: str, now: str) -> str:
    stem = os.path.splitext(os.path.basename(source_name))[0] or "source"
    return f"scan-{now.replace(':', '-')}-{stem}"


def _html_report(report: Report, source_name: str, now: str) -> str:
    html_rows: List[str] = []
    html_rows.append("<!doctype html>")
    html_rows.append("<html><head><meta charset='utf-8'><title>Smart Contract Scan Report</title>")
    html_rows.append("<style>body{font-family:Arial,Helvetica,sans-serif;margin:20px}table{border-collapse:collapse;width:100%}th,td{border:1px solid #ddd;padding:8px}th{background:#f2f2f2;text-align:left}tr:nth-child(even){background:#fafafa}pre{white-space:pre-wrap;word-wrap:break-word}</style>")
    html_rows.append("</head><body>")
    html_rows.append(f"<h2>Scan Report - {escape(now)} - {escape(source_name)}</h2>")
    html_rows.append(f"<p>Overall risk: <strong id='risk-label'>{escape(report.risk_label)}</strong> (score {report.score})</p>")
    html_rows.append(f"<p>Total findings: {len(report.findings)}</p>")
    html_rows.append("<div><strong>Categories:</strong><ul>")
    for name, count in report.category_counts.items():
        html_rows.append(f"<li>{escape(name)}: {count}</li>")
    html_rows.append("</ul></div>")
    html_rows.append("<table><thead><tr><th>Severity</th><th>Rule</th><th>Category</th><th>Location</th><th>Snippet</th><th>Remediation</th></tr></thead><tbody>")
    for f in report.findings:
        html_rows.append(
            f"<tr><td>{escape(f.severity.label)}</td><td>{escape(f.rule_id)}</td><td>{escape(f.category.value)}</td>"
            f"<td>{f.start_line}:{f.start_column}</td><td><pre>{escape(f.snippet)}</pre></td><td>{escape(f.remediation)}</td></tr>"
        )
    html_rows.append("</tbody></table></body></html>")
    return "\n".join(html_rows)


def save_report(report: Report, source_name: str, out_dir: str = "reports") -> Dict[str, str]:
    """
    Save JSON, CSV, HTML and Markdown reports and return their paths.
    """
    out_dir = ensure_reports_dir(out_dir)
    now = datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
    base = os.path.join(out_dir, _report_base_name(source_name, now))
    paths = {kind: f"{base}.{kind}" for kind in ("json", "csv", "html")}
    paths["markdown"] = f"{base}.md"

    # JSON
    payload = {"scan_time": now, "source_file": source_name}
    payload.update(report.to_dict())
    with open(paths["json"], "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)

    # CSV
    with open(paths["csv"], "w", encoding="utf-8", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for f in report.findings:
            row = f.to_dict()
            writer.writerow({k: row.get(k, "") for k in CSV_FIELDS})

    # HTML
    with open(paths["html"], "w", encoding="utf-8") as fh:
        fh.write(_html_report(report, source_name, now))

    # Markdown
    with open(paths["markdown"], "w", encoding="utf-8") as fh:
        fh.write(to_markdown(report))

    return paths


# --- Console printing with color/wrapping ---

def _rich_severity_text(severity: str) -> Text:
    """
    Return a Rich Text object styled by severity.
    """
    return Text(severity.capitalize(), style=_SEVERITY_STYLES.get(severity, ""))


def print_summary_and_report_path(
    report: Report,
    report_paths: Optional[Dict[str, str]] = None,
    show_top: int = 5,
    print_full_table: bool = False,
):
    """
    Print a compact summary and a colorful table of findings.
    """
    findings = list(report.findings)
    total = len(findings)
    print("\nScan summary:")
    print(f"- Overall risk: {report.risk_label} (score {report.score})")
    print(f"- Total findings: {total}")
    if report.metadata.partial:
        print("- Results are partial (scan cancelled or evaluation budget exhausted)")
    if total:
        rows = findings_to_table_rows(findings)
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Severity")
        table.add_column("Rule", style="magenta")
        table.add_column("Category", style="cyan")
        table.add_column("Line:Col", justify="right")
        table.add_column("Details", overflow="fold")
        for r in (rows if print_full_table else rows[:show_top]):
            table.add_row(_rich_severity_text(r[0]), r[1], r[2], r[3], r[4])
        _console.print(table)
    if report_paths:
        print("\nSaved reports:")
        print(f"- JSON:     {report_paths.get('json')}")
        print(f"- CSV:      {report_paths.get('csv')}")
        print(f"- HTML:     {report_paths.get('html')}")
        print(f"- Markdown: {report_paths.get('markdown')}\n")


def print_rule_catalog(rules: List[Rule]):
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Id", style="magenta")
    table.add_column("Severity")
    table.add_column("Category", style="cyan")
    table.add_column("Gas")
    table.add_column("SWC")
    table.add_column("Title", overflow="fold")
    for rule in rules:
        table.add_row(
            rule.id,
            _rich_severity_text(rule.severity.value),
            rule.category.value,
            rule.gas_impact.value,
            rule.swc or "",
            rule.title,
        )
    _console.print(table)

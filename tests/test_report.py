# tests/test_report.py
"""
Aggregation and report tests.

- Risk labels follow the first-match order; score is the weight sum.
- Adding a Critical finding never lowers score or label.
- Findings are ordered by severity, line, rule id.
- Markdown has exactly one section per finding and survives backticks in snippets.
"""

import json
import re
from dataclasses import replace

import pytest

from models import Category, Finding, GasImpact, ScanMetadata, Severity
from contract_scanner import scan, to_markdown
from contract_scanner.aggregator import RISK_LABELS, aggregate, risk_rank
from contract_scanner.report import build_report, sort_findings

_SECTION_RE = re.compile(r"^### Finding \d+:", re.M)


def make_finding(severity, line=1, rule_id="rule", category=Category.OTHER, snippet="x = 1;"):
    return Finding(
        rule_id=rule_id,
        title=rule_id,
        category=category,
        severity=severity,
        gas_impact=GasImpact.NONE,
        start_offset=line * 10,
        end_offset=line * 10 + len(snippet),
        start_line=line,
        start_column=1,
        end_line=line,
        end_column=1 + len(snippet),
        snippet=snippet,
        description="desc",
        remediation="fix",
    )


def empty_metadata():
    return ScanMetadata(
        input_length=0, unit_count=0, contract_count=0, rules_total=0,
        rules_evaluated=0, budget_limit=0, budget_used=0,
    )


@pytest.mark.parametrize("severities, label", [
    ([], "No Issues Detected"),
    ([Severity.LOW], "Low Risk"),
    ([Severity.MEDIUM] * 4, "Low Risk"),
    ([Severity.MEDIUM] * 5, "Medium Risk"),
    ([Severity.HIGH], "Medium Risk"),
    ([Severity.HIGH] * 3, "High Risk"),
    ([Severity.HIGH] * 3 + [Severity.CRITICAL], "Critical Risk"),
])
def test_risk_label_thresholds(severities, label):
    assert aggregate([make_finding(s) for s in severities]).risk_label == label


def test_score_and_breakdown():
    summary = aggregate([
        make_finding(Severity.CRITICAL, category=Category.REENTRANCY),
        make_finding(Severity.HIGH),
        make_finding(Severity.MEDIUM),
        make_finding(Severity.LOW),
    ])
    assert summary.score == 18
    assert set(summary.category_counts) == {c.value for c in Category}
    assert summary.category_counts["Reentrancy"] == 1
    assert summary.category_counts["Other"] == 3
    assert summary.category_counts["MEV"] == 0
    assert summary.severity_counts == {"critical": 1, "high": 1, "medium": 1, "low": 1}


def test_adding_a_critical_never_lowers_risk(sample_contract):
    findings = list(scan(sample_contract).findings)
    before = aggregate(findings)
    after = aggregate(findings + [make_finding(Severity.CRITICAL, line=999)])
    assert after.score > before.score
    assert risk_rank(after.risk_label) >= risk_rank(before.risk_label)
    assert after.risk_label == RISK_LABELS[-1]


def test_sort_order():
    findings = [
        make_finding(Severity.LOW, line=1, rule_id="a"),
        make_finding(Severity.HIGH, line=9, rule_id="b"),
        make_finding(Severity.HIGH, line=3, rule_id="z"),
        make_finding(Severity.HIGH, line=3, rule_id="c"),
        make_finding(Severity.CRITICAL, line=50, rule_id="d"),
    ]
    ordered = [(f.severity, f.start_line, f.rule_id) for f in sort_findings(findings)]
    assert ordered == [
        (Severity.CRITICAL, 50, "d"),
        (Severity.HIGH, 3, "c"),
        (Severity.HIGH, 3, "z"),
        (Severity.HIGH, 9, "b"),
        (Severity.LOW, 1, "a"),
    ]


def test_scanned_findings_are_ordered(sample_contract):
    findings = scan(sample_contract).findings
    for a, b in zip(findings, findings[1:]):
        assert a.severity.rank >= b.severity.rank
        if a.severity is b.severity:
            assert a.start_line <= b.start_line


def test_markdown_has_one_section_per_finding(sample_contract):
    report = scan(sample_contract)
    md = to_markdown(report)
    assert len(_SECTION_RE.findall(md)) == len(report.findings)
    assert f"**Overall risk:** {report.risk_label}" in md
    assert f"**Score:** {report.score}" in md
    for category in Category:
        assert f"| {category.value} | {report.category_counts[category.value]} |" in md


def test_markdown_is_pure_and_fences_backticks():
    finding = make_finding(Severity.HIGH, snippet="x = ```tick```;")
    report = build_report([finding], empty_metadata())
    md = to_markdown(report)
    assert md == to_markdown(report)
    assert "````solidity" in md
    assert "No issues detected." not in md


def test_markdown_for_clean_report_and_notes():
    metadata = replace(empty_metadata(), cancelled=True, warnings=("unterminatedLiteral",))
    md = to_markdown(build_report([], metadata))
    assert "No issues detected." in md
    assert "cancelled" in md
    assert "unterminatedLiteral" in md
    assert not _SECTION_RE.search(md)


def test_report_dict_round_trips_through_json(vulnerable_vault):
    report = scan(vulnerable_vault)
    data = json.loads(report.to_json())
    assert data["risk_label"] == report.risk_label
    assert data["score"] == report.score
    assert data["summary"]["findings_count"] == len(report.findings)
    assert [f["rule_id"] for f in data["findings"]] == [f.rule_id for f in report.findings]
    assert data["metadata"]["input_length"] == len(vulnerable_vault)
    assert data["metadata"]["rules_total"] == data["metadata"]["rules_evaluated"]

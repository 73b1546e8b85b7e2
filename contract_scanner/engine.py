# contract_scanner/engine.py
"""
Detection engine and the scan() entry point.

- Runs every catalog rule once against the whole SourceUnit / CodeBlock set.
- A predicate that raises, or yields something other than a Match, is recorded
  as a RuleEvaluationError; the scan goes on. Errors are reported by rule id.
- A work-unit budget bounds total evaluation; when it runs out the remaining
  rules are skipped and the report is flagged partial.
- Cancellation is cooperative and only checked between rules.
- Same-rule matches with overlapping ranges collapse to the widest one.
"""

import logging
import threading
from bisect import bisect_left
from typing import Dict, List, Optional, Sequence, Tuple

from config import TEXT_COST_UNIT
from models import (
    CodeBlock,
    Finding,
    Match,
    Report,
    Rule,
    RuleEvaluationError,
    ScanMetadata,
    ScanOptions,
    SourceUnit,
    Structure,
    UnparsableBlock,
)
from contract_scanner.catalog import RuleCatalog, default_catalog
from contract_scanner.normalizer import normalize
from contract_scanner.report import build_report
from contract_scanner.structurer import structure

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation handle; safe to trigger from another thread."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def rule_cost(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> int:
    """Work units charged for evaluating one rule over this input."""
    statements = sum(len(b.statements) for b in blocks if not b.unparsable)
    return 1 + statements + len(unit.text) // TEXT_COST_UNIT


def _span(match: Match) -> Tuple[int, int]:
    return match.start, max(match.end, match.start + 1)


def _width_first(match: Match):
    start, end = _span(match)
    return start - end, match.start, match.end


def deduplicate(matches: Sequence[Match]) -> List[Match]:
    """
    Drop same-rule matches whose range overlaps a wider kept match.

    The widest range wins; on equal width the earliest start wins. Empty
    ranges count as one character wide. Kept ranges are disjoint, so the
    overlap test is a bisect against the nearest kept start.
    """
    by_rule: Dict[str, List[Match]] = {}
    for match in matches:
        by_rule.setdefault(match.rule_id, []).append(match)

    kept: List[Match] = []
    for rule_matches in by_rule.values():
        starts: List[int] = []
        ends: List[int] = []
        chosen: List[Match] = []
        for candidate in sorted(rule_matches, key=_width_first):
            start, end = _span(candidate)
            before = bisect_left(starts, end) - 1
            if before >= 0 and ends[before] > start:
                continue
            slot = bisect_left(starts, start)
            starts.insert(slot, start)
            ends.insert(slot, end)
            chosen.insert(slot, candidate)
        kept.extend(chosen)
    return kept


def to_finding(rule: Rule, match: Match, unit: SourceUnit) -> Finding:
    start = max(0, min(match.start, len(unit.raw)))
    end = max(start, min(match.end, len(unit.raw)))
    start_line, start_column = unit.location(start)
    end_line, end_column = unit.location(end)
    return Finding(
        rule_id=rule.id,
        title=rule.title,
        category=rule.category,
        severity=rule.severity,
        gas_impact=rule.gas_impact,
        start_offset=start,
        end_offset=end,
        start_line=start_line,
        start_column=start_column,
        end_line=end_line,
        end_column=end_column,
        snippet=unit.snippet(start, end),
        description=rule.description,
        remediation=rule.remediation,
        evidence=match.evidence,
        swc=rule.swc,
    )


def _unparsable_records(unit: SourceUnit, parsed: Structure) -> List[UnparsableBlock]:
    return [
        UnparsableBlock(name=b.display_name, kind=b.kind.value, line=unit.line_of(b.start), reason=b.reason)
        for b in parsed.unparsable_blocks
    ]


def scan(
    source_text: str,
    options: Optional[ScanOptions] = None,
    cancel_token: Optional[CancelToken] = None,
    catalog: Optional[RuleCatalog] = None,
) -> Report:
    """
    Scan source text and return a Report.

    Raises InputTooLarge before doing any work when the text exceeds the
    configured ceiling. Every other problem ends up in the report metadata.
    """
    options = options or ScanOptions()
    catalog = catalog if catalog is not None else default_catalog()

    unit = normalize(source_text, options.max_input_size)
    parsed = structure(unit)
    blocks = parsed.blocks

    budget_limit = options.resolved_budget(len(source_text))
    cost = rule_cost(unit, blocks)
    budget_used = 0
    budget_exceeded = False
    cancelled = False
    evaluated = 0
    errors: List[RuleEvaluationError] = []
    findings: List[Finding] = []

    rules = catalog.rules()
    for rule in rules:
        if cancel_token is not None and cancel_token.cancelled:
            logger.info("Scan cancelled after %d of %d rules", evaluated, len(rules))
            cancelled = True
            break
        if budget_used + cost > budget_limit:
            logger.warning(
                "Evaluation budget exhausted (%d of %d used); skipping %d rules",
                budget_used, budget_limit, len(rules) - evaluated,
            )
            budget_exceeded = True
            break
        budget_used += cost
        evaluated += 1

        logger.debug("Evaluating rule %s", rule.id)
        try:
            matches = list(rule.predicate(unit, blocks))
            for m in matches:
                if not isinstance(m, Match):
                    raise TypeError(f"predicate returned {type(m).__name__}, expected Match")
        except Exception as exc:
            logger.warning("Rule %s failed: %s", rule.id, exc)
            errors.append(RuleEvaluationError(rule_id=rule.id, message=f"{type(exc).__name__}: {exc}"))
            continue
        matches = [Match(rule.id, m.start, m.end, m.evidence) for m in matches]
        findings.extend(to_finding(rule, m, unit) for m in deduplicate(matches))

    metadata = ScanMetadata(
        input_length=len(source_text),
        unit_count=len(blocks),
        contract_count=len(parsed.contracts),
        rules_total=len(rules),
        rules_evaluated=evaluated,
        budget_limit=budget_limit,
        budget_used=budget_used,
        budget_exceeded=budget_exceeded,
        cancelled=cancelled,
        rule_errors=tuple(sorted(errors, key=lambda e: e.rule_id)),
        unparsable_blocks=tuple(_unparsable_records(unit, parsed)),
        warnings=tuple(sorted(unit.warnings)),
    )
    return build_report(findings, metadata)

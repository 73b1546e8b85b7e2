# models.py
"""
Data models used by the scanner.

- Keep simple, serializable dataclasses for source units, code blocks, rules and findings.
- Everything a scan produces is immutable once built (frozen dataclasses, tuples).
- Records that end up inside a Report expose to_dict() for JSON/CSV/HTML export.
"""

import json
from bisect import bisect_right
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from config import BUDGET_BASE, BUDGET_PER_CHAR, DEFAULT_MAX_INPUT_SIZE


class Severity(Enum):
    """Finding severity levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Numeric rank for sorting (higher = more severe)."""
        return _SEVERITY_RANK[self]

    @property
    def label(self) -> str:
        return self.value.capitalize()


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class Category(Enum):
    """Vulnerability categories used for the report breakdown."""
    ACCESS_CONTROL = "AccessControl"
    REENTRANCY = "Reentrancy"
    MEV = "MEV"
    RANDOMNESS = "Randomness"
    ARITHMETIC_SAFETY = "ArithmeticSafety"
    EXTERNAL_CALLS = "ExternalCalls"
    TIMESTAMP = "Timestamp"
    AVAILABILITY = "Availability"
    CENTRALIZATION = "Centralization"
    OTHER = "Other"


class GasImpact(Enum):
    NONE = "None"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class StatementKind(Enum):
    """Coarse statement tags used by sequence-sensitive rules."""
    EXTERNAL_CALL = "external-call"
    STATE_WRITE = "state-write"
    CONTROL_FLOW = "control-flow"
    EVENT_EMIT = "event-emit"
    OTHER = "other"


class BlockKind(Enum):
    FUNCTION = "function"
    MODIFIER = "modifier"
    CONSTRUCTOR = "constructor"
    FALLBACK = "fallback"
    RECEIVE = "receive"


@dataclass(frozen=True)
class SourceUnit:
    """
    Normalized source plus an offset index.

    Fields:
    - raw: the text exactly as submitted
    - text: same length as raw; comment and literal contents replaced by filler
    - line_starts: offset of the first character of every line (starts with 0)
    - warnings: tolerated problems, e.g. "unterminatedLiteral"
    """
    raw: str
    text: str
    line_starts: Tuple[int, ...]
    warnings: FrozenSet[str] = frozenset()

    def location(self, offset: int) -> Tuple[int, int]:
        """Resolve an offset to a 1-based (line, column) pair."""
        offset = max(0, min(offset, len(self.raw)))
        index = bisect_right(self.line_starts, offset) - 1
        return index + 1, offset - self.line_starts[index] + 1

    def offset_of(self, line: int, column: int) -> int:
        """Inverse of location()."""
        return self.line_starts[line - 1] + column - 1

    def line_of(self, offset: int) -> int:
        return self.location(offset)[0]

    def snippet(self, start: int, end: int) -> str:
        return self.raw[start:end]


@dataclass(frozen=True)
class StatementSpan:
    """One statement (or control-flow header) inside a body, in source order."""
    kind: StatementKind
    start: int
    end: int
    text: str
    loop_depth: int = 0
    target: Optional[str] = None  # written identifier for state writes


@dataclass(frozen=True)
class ContractUnit:
    """A contract, interface or library declaration and its state variables."""
    name: str
    kind: str
    start: int
    end: int
    bases: Tuple[str, ...] = ()
    state_vars: Tuple[Tuple[str, str], ...] = ()  # (name, declared type)
    unparsable: bool = False

    @property
    def state_var_names(self) -> FrozenSet[str]:
        return frozenset(name for name, _ in self.state_vars)


@dataclass(frozen=True)
class CodeBlock:
    """
    A function, modifier, constructor, fallback or receive body.

    Unparsable blocks keep their header and span but have no statements; rules
    treat them as absent and only text rules see their region.
    """
    kind: BlockKind
    name: str
    start: int
    end: int
    contract: Optional[ContractUnit] = None
    modifiers: Tuple[str, ...] = ()
    visibility: str = ""
    mutability: Tuple[str, ...] = ()
    params: Tuple[Tuple[str, str], ...] = ()  # (type, name)
    body_start: int = -1
    body_end: int = -1
    statements: Tuple[StatementSpan, ...] = ()
    unparsable: bool = False
    reason: str = ""

    @property
    def contract_name(self) -> str:
        return self.contract.name if self.contract else ""

    @property
    def display_name(self) -> str:
        name = self.name or self.kind.value
        return f"{self.contract_name}.{name}" if self.contract_name else name

    @property
    def param_names(self) -> Tuple[str, ...]:
        return tuple(name for _, name in self.params if name)

    @property
    def is_view(self) -> bool:
        return "view" in self.mutability or "pure" in self.mutability

    @property
    def is_entry_point(self) -> bool:
        """Callable from outside the contract (implicit visibility counts as public)."""
        if self.kind in (BlockKind.FALLBACK, BlockKind.RECEIVE):
            return True
        if self.kind is not BlockKind.FUNCTION:
            return False
        return self.visibility in ("", "public", "external")


@dataclass(frozen=True)
class Structure:
    """Output of the lexical structurer."""
    contracts: Tuple[ContractUnit, ...] = ()
    blocks: Tuple[CodeBlock, ...] = ()

    @property
    def unparsable_blocks(self) -> Tuple[CodeBlock, ...]:
        return tuple(b for b in self.blocks if b.unparsable)


@dataclass(frozen=True)
class Match:
    """Raw predicate output: offsets into the source, plus optional evidence."""
    rule_id: str
    start: int
    end: int
    evidence: Optional[str] = None


Predicate = Callable[[SourceUnit, Sequence[CodeBlock]], List[Match]]


@dataclass(frozen=True)
class Rule:
    """Immutable catalog entry."""
    id: str
    title: str
    category: Category
    severity: Severity
    gas_impact: GasImpact
    description: str
    remediation: str
    predicate: Predicate = field(compare=False, repr=False)
    swc: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category.value,
            "severity": self.severity.value,
            "gas_impact": self.gas_impact.value,
            "description": self.description,
            "remediation": self.remediation,
            "swc": self.swc,
        }


@dataclass(frozen=True)
class Finding:
    """A Match enriched with rule metadata and a resolved (line, column) range."""
    rule_id: str
    title: str
    category: Category
    severity: Severity
    gas_impact: GasImpact
    start_offset: int
    end_offset: int
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    snippet: str
    description: str
    remediation: str
    evidence: Optional[str] = None
    swc: Optional[str] = None

    @property
    def location(self) -> str:
        return f"line {self.start_line}, column {self.start_column}"

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "title": self.title,
            "category": self.category.value,
            "severity": self.severity.value,
            "gas_impact": self.gas_impact.value,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "start_line": self.start_line,
            "start_column": self.start_column,
            "end_line": self.end_line,
            "end_column": self.end_column,
            "snippet": self.snippet,
            "evidence": self.evidence,
            "description": self.description,
            "remediation": self.remediation,
            "swc": self.swc,
        }


@dataclass(frozen=True)
class RuleEvaluationError:
    """Recorded when a rule predicate raised; the scan carried on without it."""
    rule_id: str
    message: str

    def to_dict(self) -> dict:
        return {"rule_id": self.rule_id, "message": self.message}


@dataclass(frozen=True)
class UnparsableBlock:
    """Recorded when a code unit could not be structured."""
    name: str
    kind: str
    line: int
    reason: str

    def to_dict(self) -> dict:
        return {"name": self.name, "kind": self.kind, "line": self.line, "reason": self.reason}


@dataclass
class ScanOptions:
    """Per-scan overrides; None means the config default."""
    max_input_size: Optional[int] = None
    evaluation_budget: Optional[int] = None

    def resolved_max_input_size(self) -> int:
        if self.max_input_size is None:
            return DEFAULT_MAX_INPUT_SIZE
        return self.max_input_size

    def resolved_budget(self, input_length: int) -> int:
        if self.evaluation_budget is None:
            return BUDGET_BASE + BUDGET_PER_CHAR * input_length
        return self.evaluation_budget


@dataclass(frozen=True)
class ScanMetadata:
    input_length: int
    unit_count: int
    contract_count: int
    rules_total: int
    rules_evaluated: int
    budget_limit: int
    budget_used: int
    budget_exceeded: bool = False
    cancelled: bool = False
    rule_errors: Tuple[RuleEvaluationError, ...] = ()
    unparsable_blocks: Tuple[UnparsableBlock, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def partial(self) -> bool:
        return self.budget_exceeded or self.cancelled

    def to_dict(self) -> dict:
        return {
            "input_length": self.input_length,
            "unit_count": self.unit_count,
            "contract_count": self.contract_count,
            "rules_total": self.rules_total,
            "rules_evaluated": self.rules_evaluated,
            "budget_limit": self.budget_limit,
            "budget_used": self.budget_used,
            "budget_exceeded": self.budget_exceeded,
            "cancelled": self.cancelled,
            "rule_errors": [e.to_dict() for e in self.rule_errors],
            "unparsable_blocks": [b.to_dict() for b in self.unparsable_blocks],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class Report:
    """
    Result of one scan.

    Fields:
    - findings: ordered by severity, then start line, then rule id
    - score: sum of severity weights
    - risk_label: overall label, e.g. "Critical Risk"
    - category_counts / severity_counts: every category and severity present, zero included
    - metadata: scan bookkeeping, recovered errors and partial-result flags
    """
    findings: Tuple[Finding, ...]
    score: int
    risk_label: str
    category_counts: Dict[str, int]
    severity_counts: Dict[str, int]
    metadata: ScanMetadata

    @property
    def cancelled(self) -> bool:
        return self.metadata.cancelled

    def to_dict(self) -> dict:
        return {
            "risk_label": self.risk_label,
            "score": self.score,
            "summary": {
                "findings_count": len(self.findings),
                "categories": dict(self.category_counts),
                "severities": dict(self.severity_counts),
            },
            "findings": [f.to_dict() for f in self.findings],
            "metadata": self.metadata.to_dict(),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

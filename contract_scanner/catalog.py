# contract_scanner/catalog.py
"""
Rule registry.

- Maps rule id -> immutable Rule, plus registration order for deterministic iteration.
- Registering a duplicate id raises DuplicateRuleId.
- The default catalog is filled once at import time and only read afterwards,
  so concurrent scans can share it without locking.
"""

from typing import Dict, Iterator, List, Optional, Tuple

from models import Rule
from contract_scanner.errors import DuplicateRuleId
from contract_scanner.rules import BUILTIN_RULES


class RuleCatalog:
    """Ordered, append-only collection of rules."""

    def __init__(self, rules: Optional[List[Rule]] = None):
        self._by_id: Dict[str, Rule] = {}
        self._order: List[str] = []
        for rule in rules or []:
            self.register(rule)

    def register(self, rule: Rule) -> None:
        if rule.id in self._by_id:
            raise DuplicateRuleId(rule.id)
        self._by_id[rule.id] = rule
        self._order.append(rule.id)

    def get(self, rule_id: str) -> Rule:
        return self._by_id[rule_id]

    def rules(self) -> Tuple[Rule, ...]:
        return tuple(self._by_id[rule_id] for rule_id in self._order)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._by_id

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules())

    def __len__(self) -> int:
        return len(self._order)


_DEFAULT_CATALOG = RuleCatalog(BUILTIN_RULES)


def default_catalog() -> RuleCatalog:
    """Return the process-wide catalog holding the built-in rules."""
    return _DEFAULT_CATALOG


def register_rule(rule: Rule, catalog: Optional[RuleCatalog] = None) -> None:
    """Add a rule to the given catalog (the default one if omitted)."""
    (catalog if catalog is not None else default_catalog()).register(rule)

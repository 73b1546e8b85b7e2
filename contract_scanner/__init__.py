# contract_scanner/__init__.py
"""Rule-based smart contract vulnerability scanner."""

from contract_scanner.catalog import RuleCatalog, default_catalog, register_rule
from contract_scanner.engine import CancelToken, scan
from contract_scanner.errors import DuplicateRuleId, InputTooLarge, ScannerError
from contract_scanner.report import to_markdown

__all__ = [
    "CancelToken",
    "DuplicateRuleId",
    "InputTooLarge",
    "RuleCatalog",
    "ScannerError",
    "default_catalog",
    "register_rule",
    "scan",
    "to_markdown",
]

# contract_scanner/errors.py
"""Errors surfaced to callers. Everything else is recorded in the Report."""


class ScannerError(Exception):
    """Base class for hard scanner failures."""


class InputTooLarge(ScannerError):
    """Source text exceeds the configured size ceiling; nothing was scanned."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Input of {size} characters exceeds the limit of {limit}")
        self.size = size
        self.limit = limit


class DuplicateRuleId(ScannerError):
    """A rule with the same id is already registered."""

    def __init__(self, rule_id: str):
        super().__init__(f"Rule id already registered: {rule_id}")
        self.rule_id = rule_id

"""
Central configuration and tunable constants.

- Input size ceiling and evaluation budget defaults can be overridden per scan
  (ScanOptions) or from the CLI / environment variables.
- Severity weights and risk-label thresholds are centralized for easy tuning.
"""

# Input ceiling (characters). Larger inputs are refused before any work.
DEFAULT_MAX_INPUT_SIZE = 200_000

# Evaluation budget: BUDGET_BASE + BUDGET_PER_CHAR * len(source) work units.
# One rule evaluation costs 1 + statements + len(text) // TEXT_COST_UNIT.
BUDGET_BASE = 10_000
BUDGET_PER_CHAR = 64
TEXT_COST_UNIT = 64

# Neutral character written over comment and literal contents.
FILLER_CHAR = " "

# Bounded lookahead when reading a declaration header up to its body.
MAX_HEADER_LOOKAHEAD = 4_096

# Severity weights for the aggregate score.
SEVERITY_WEIGHTS = {
    "critical": 10,
    "high": 5,
    "medium": 2,
    "low": 1,
}

# Risk label thresholds (first match wins, see aggregator).
HIGH_RISK_MIN_HIGH = 3
MEDIUM_RISK_MIN_HIGH = 1
MEDIUM_RISK_MIN_MEDIUM = 5

# Modifier names treated as reentrancy guards (matched case-insensitively).
REENTRANCY_GUARD_PATTERN = r"nonreentrant|noreentran|reentrancyguard|^lock$|^mutex$|^locked$"

# Modifier names treated as access control (matched case-insensitively).
ACCESS_MODIFIER_PATTERN = r"^only|auth|^restricted$|^admin|owner|governance|^initializer$|^reinitializer$"

# State variable names that hold privileged roles or upgrade targets.
PRIVILEGED_NAME_PATTERN = r"owner|admin|governor|governance|operator|implementation|minter|guardian|controller|authority|treasury|oracle"

# Environment variables read by the CLI (CLI flag -> env -> default).
ENV_MAX_INPUT_SIZE = "CONTRACT_SCANNER_MAX_INPUT_SIZE"
ENV_BUDGET = "CONTRACT_SCANNER_BUDGET"

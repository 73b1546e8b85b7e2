# contract_scanner/rules.py
"""
Built-in vulnerability rules.

- Each predicate is a pure function of (SourceUnit, CodeBlocks) returning Matches.
- Predicates only look at parsed blocks; an unparsable block counts as absent.
  Pure text rules read the normalized text directly and so still cover regions
  that could not be structured.
- Sequence-sensitive checks walk a block's ordered statements as small state machines.
"""

import re
from typing import Dict, List, Optional, Sequence, Set, Tuple

from config import ACCESS_MODIFIER_PATTERN, PRIVILEGED_NAME_PATTERN, REENTRANCY_GUARD_PATTERN
from models import (
    BlockKind,
    Category,
    CodeBlock,
    ContractUnit,
    GasImpact,
    Match,
    Rule,
    Severity,
    SourceUnit,
    StatementKind,
    StatementSpan,
)
from contract_scanner.structurer import declared_local, match_pairs

# --- Shared patterns -------------------------------------------------------

_GUARD_RE = re.compile(REENTRANCY_GUARD_PATTERN, re.I)
_ACCESS_RE = re.compile(ACCESS_MODIFIER_PATTERN, re.I)
_PRIVILEGED_RE = re.compile(PRIVILEGED_NAME_PATTERN, re.I)
_SENDER_CHECK_RE = re.compile(
    r"msg\.sender\s*[!=]=|[!=]=\s*msg\.sender|tx\.origin\s*[!=]=|[!=]=\s*tx\.origin"
    r"|\b(?:hasRole|_checkOwner|_checkRole|_onlyOwner|isOwner|_isAuthorized|_authorize\w*|requiresAuth)\s*\("
)
# Also matches the pre-0.7 `x.call.value(v).gas(g)(...)` chains.
_LOW_LEVEL_RE = re.compile(r"\.\s*(call|delegatecall|staticcall)\s*(?:\.\s*(?:value|gas)\s*\([^()]*\)\s*)*[({]")
_ETHER_SEND_RE = re.compile(r"\.\s*(transfer|send)\s*\(")
_WRAPPED_RE = re.compile(r"(?:require|assert|if|return|while)\b")
_CAPTURE_RE = re.compile(r"\(\s*bool\s+(\w+)|bool\s+(\w+)\s*=(?!=)|(\w+)\s*=(?!=)")
_VALUE_OUT_RE = re.compile(
    r"\.\s*call\s*\{\s*value|\.\s*call\s*\.\s*value\s*\(|\.\s*(?:transfer|send|transferFrom|safeTransfer|safeTransferFrom|sendValue)\s*\("
)
_SELFDESTRUCT_RE = re.compile(r"\b(?:selfdestruct|suicide)\s*\(")
_ARITH_RE = re.compile(r"[+\-*]=|\+\+|--|\w\s*[+*]\s*[\w(]|\w\s*-\s*[\w(]")
_COUNTER_STEP_RE = re.compile(r"\+\+\s*\w+|\w+\s*\+\+|--\s*\w+|\w+\s*--")
_PRAGMA_RE = re.compile(r"\bpragma\s+solidity\s+([^;]+);")
_WORD_RE = re.compile(r"\w+")
_ARG_DELIM_RE = re.compile(r"[,(\[\]]")


# --- Helpers -----------------------------------------------------------------


def _parsed(blocks: Sequence[CodeBlock]) -> List[CodeBlock]:
    return [b for b in blocks if not b.unparsable]


def _entry_points(blocks: Sequence[CodeBlock]) -> List[CodeBlock]:
    return [b for b in _parsed(blocks) if b.is_entry_point and not b.is_view]


def _has_access_control(block: CodeBlock) -> bool:
    if any(_ACCESS_RE.search(m) for m in block.modifiers):
        return True
    return any(_SENDER_CHECK_RE.search(s.text) for s in block.statements)


def _is_guarded(block: CodeBlock) -> bool:
    return any(_GUARD_RE.search(m) for m in block.modifiers)


def _writes_privileged(block: CodeBlock) -> List[StatementSpan]:
    return [s for s in block.statements if s.target and _PRIVILEGED_RE.search(s.target)]


def _is_wrapped(text: str) -> bool:
    return bool(_WRAPPED_RE.match(text))


def _is_captured(text: str) -> bool:
    return bool(_CAPTURE_RE.match(text))


def _at(rule_id: str, stmt: StatementSpan, evidence: Optional[str] = None) -> Match:
    return Match(rule_id, stmt.start, stmt.end, evidence)


def _header(rule_id: str, unit: SourceUnit, block: CodeBlock, evidence: Optional[str] = None) -> Match:
    end = block.body_start - 1 if block.body_start > block.start else block.end
    header = unit.text[block.start:end].rstrip()
    return Match(rule_id, block.start, block.start + len(header), evidence)


def _call_args(text: str, open_idx: int, parens: Optional[Dict[int, int]] = None) -> Optional[List[str]]:
    """Split the argument list whose '(' sits at open_idx. Nested calls are skipped whole."""
    if parens is None:
        parens = match_pairs(text, "(", ")")
    close = parens.get(open_idx)
    if close is None:
        return None
    args: List[str] = []
    start = i = open_idx + 1
    brackets = 0
    while True:
        m = _ARG_DELIM_RE.search(text, i, close)
        if m is None:
            break
        ch = m.group()
        i = m.end()
        if ch == "(":
            i = parens[m.start()] + 1
        elif ch == "[":
            brackets += 1
        elif ch == "]":
            brackets -= 1
        elif brackets <= 0:
            args.append(text[start:m.start()])
            start = i
    args.append(text[start:close])
    return [a.strip() for a in args if a.strip()]


def _is_fixed_gas_send(text: str) -> bool:
    """True for `x.transfer(amount)` / `x.send(amount)` with a single argument."""
    parens = None
    for m in _ETHER_SEND_RE.finditer(text):
        if parens is None:
            parens = match_pairs(text, "(", ")")
        args = _call_args(text, m.end() - 1, parens)
        if args is not None and len(args) == 1:
            return True
    return False


class _ContractTextCheck:
    """Pattern search over a contract's text and bases, memoized per contract."""

    def __init__(self, unit: SourceUnit, pattern):
        self.unit = unit
        self.pattern = pattern
        self._seen: Dict[Tuple[int, int], bool] = {}

    def __call__(self, contract: ContractUnit) -> bool:
        key = (contract.start, contract.end)
        if key not in self._seen:
            text = self.unit.text[contract.start:contract.end]
            self._seen[key] = bool(self.pattern.search(text)) or any(self.pattern.search(b) for b in contract.bases)
        return self._seen[key]


def _line(unit: SourceUnit, stmt: StatementSpan) -> int:
    return unit.line_of(stmt.start)


# --- Reentrancy --------------------------------------------------------------

REENTRANCY = "reentrancy"


def detect_reentrancy(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    """Flag an external call followed by a storage write in an unguarded entry point."""
    matches: List[Match] = []
    for block in _entry_points(blocks):
        if _is_guarded(block):
            continue
        state = "seeking-call"
        call: Optional[StatementSpan] = None
        for stmt in block.statements:
            if state == "seeking-call":
                if stmt.kind is StatementKind.EXTERNAL_CALL and not (
                    _is_fixed_gas_send(stmt.text) and not _LOW_LEVEL_RE.search(stmt.text)
                ):
                    state = "call-seen"
                    call = stmt
            elif state == "call-seen" and stmt.target:
                matches.append(_at(
                    REENTRANCY, call,
                    f"external call in {block.display_name} precedes write to `{stmt.target}` at line {_line(unit, stmt)}",
                ))
                state = "write-after-call-flagged"
                break
    return matches


# --- Flash-loan style manipulation -------------------------------------------

FLASHLOAN_MANIPULATION = "flashloan-price-manipulation"
_SPOT_PRICE_RE = re.compile(r"\.\s*getReserves\s*\(|\.\s*slot0\s*\(")
_SELF_BALANCE_RE = re.compile(r"balanceOf\s*\(\s*address\s*\(\s*this\s*\)\s*\)")
_VOTE_NAME_RE = re.compile(r"vote|propos|delegate", re.I)
_SNAPSHOT_RE = re.compile(r"getPastVotes|getPriorVotes|balanceOfAt|snapshot|checkpoint|getVotes", re.I)


def detect_flashloan_manipulation(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _parsed(blocks):
        voting = bool(_VOTE_NAME_RE.search(block.name)) and not _SNAPSHOT_RE.search(unit.text[block.start:block.end])
        for stmt in block.statements:
            if _SPOT_PRICE_RE.search(stmt.text):
                matches.append(_at(FLASHLOAN_MANIPULATION, stmt, "price derived from instantaneous pool reserves"))
            elif _SELF_BALANCE_RE.search(stmt.text) and ("/" in stmt.text or "*" in stmt.text):
                matches.append(_at(FLASHLOAN_MANIPULATION, stmt, "ratio computed from the contract's own token balance"))
            elif voting and "balanceOf" in stmt.text:
                matches.append(_at(FLASHLOAN_MANIPULATION, stmt, f"voting power in {block.display_name} read from current balance"))
    return matches


# --- Delegatecall --------------------------------------------------------------

DELEGATECALL_UNTRUSTED = "delegatecall-untrusted"
_DELEGATECALL_RE = re.compile(r"\.\s*delegatecall\s*\(")
_CALLEE_RE = re.compile(r"([A-Za-z_][\w.]*)\s*(?:\[[^\]]*\]\s*)?$")
_CALLEE_WINDOW = 128


def detect_delegatecall_untrusted(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _parsed(blocks):
        for stmt in block.statements:
            m = _DELEGATECALL_RE.search(stmt.text)
            callee = m and _CALLEE_RE.search(stmt.text, max(0, m.start() - _CALLEE_WINDOW), m.start())
            if not callee:
                continue
            base = callee.group(1).split(".")[0]
            if base in block.param_names:
                matches.append(_at(DELEGATECALL_UNTRUSTED, stmt, f"delegatecall target `{base}` is supplied by the caller"))
            elif block.kind is BlockKind.FUNCTION and block.is_entry_point and not _has_access_control(block):
                matches.append(_at(DELEGATECALL_UNTRUSTED, stmt, f"{block.display_name} delegatecalls without access control"))
    return matches


# --- Access control ------------------------------------------------------------

UNPROTECTED_STATE_CHANGE = "unprotected-state-change"
UNPROTECTED_SELFDESTRUCT = "unprotected-selfdestruct"
TX_ORIGIN_AUTH = "tx-origin-auth"
MISSING_ACCESS_MODIFIER = "missing-access-modifier"
_TX_ORIGIN_CMP_RE = re.compile(r"tx\.origin\s*[!=]=\s*([\w.]+)|([\w.]+)\s*[!=]=\s*tx\.origin")
_ADMIN_NAME_RE = re.compile(
    r"^(?:set|update|change|configure|emergency|pause|unpause|mint|upgrade|grant|revoke|rescue|sweep|"
    r"withdrawAll|withdrawFees|kill|destroy|enable|disable)"
)


def detect_unprotected_state_change(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _entry_points(blocks):
        if block.kind is not BlockKind.FUNCTION or _has_access_control(block):
            continue
        for stmt in _writes_privileged(block):
            matches.append(_at(
                UNPROTECTED_STATE_CHANGE, stmt,
                f"anyone can call {block.display_name} and overwrite `{stmt.target}`",
            ))
    return matches


def detect_unprotected_selfdestruct(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _entry_points(blocks):
        if _has_access_control(block):
            continue
        for stmt in block.statements:
            if _SELFDESTRUCT_RE.search(stmt.text):
                matches.append(_at(UNPROTECTED_SELFDESTRUCT, stmt, f"anyone can destroy the contract via {block.display_name}"))
    return matches


def _tx_origin_matches(text: str, offset: int) -> List[Match]:
    found: List[Match] = []
    for m in _TX_ORIGIN_CMP_RE.finditer(text):
        other = m.group(1) or m.group(2)
        if other == "msg.sender":
            continue
        found.append(Match(TX_ORIGIN_AUTH, offset + m.start(), offset + m.end(), f"tx.origin compared with `{other}`"))
    return found


def detect_tx_origin_auth(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    """Flag tx.origin used for authorization; also covers unparsable regions by text."""
    matches: List[Match] = []
    for block in blocks:
        if block.unparsable:
            matches.extend(_tx_origin_matches(unit.text[block.start:block.end], block.start))
            continue
        for stmt in block.statements:
            for m in _tx_origin_matches(stmt.text, stmt.start):
                matches.append(Match(TX_ORIGIN_AUTH, stmt.start, stmt.end, m.evidence))
    return matches


def detect_missing_access_modifier(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    entry_points = _entry_points(blocks)
    protected: Dict[str, str] = {}
    for block in entry_points:
        for modifier in block.modifiers:
            if _ACCESS_RE.search(modifier):
                protected.setdefault(block.contract_name, modifier)
    for block in entry_points:
        if block.kind is not BlockKind.FUNCTION or not _ADMIN_NAME_RE.match(block.name):
            continue
        if _has_access_control(block) or _writes_privileged(block):
            continue
        if any(_SELFDESTRUCT_RE.search(s.text) for s in block.statements):
            continue
        if block.contract_name in protected:
            evidence = f"{block.display_name} lacks the `{protected[block.contract_name]}` modifier used elsewhere"
        else:
            evidence = f"{block.display_name} changes configuration with no access check"
        matches.append(_header(MISSING_ACCESS_MODIFIER, unit, block, evidence))
    return matches


# --- External calls ------------------------------------------------------------

UNCHECKED_CALL_RETURN = "unchecked-call-return"
UNCHECKED_LOW_LEVEL_CALL = "unchecked-low-level-call"
TRANSFER_FIXED_GAS = "transfer-fixed-gas"
_RETURNING_CALL_RE = re.compile(r"\.\s*(send|transfer|transferFrom|approve)\s*\(")


def detect_unchecked_call_return(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    """Flag send() and ERC-20 style calls whose boolean result is discarded."""
    matches: List[Match] = []
    for block in _parsed(blocks):
        for stmt in block.statements:
            if stmt.kind is not StatementKind.EXTERNAL_CALL:
                continue
            if _is_wrapped(stmt.text) or _is_captured(stmt.text) or stmt.text.startswith("("):
                continue
            m = _RETURNING_CALL_RE.search(stmt.text)
            if not m:
                continue
            method = m.group(1)
            args = _call_args(stmt.text, m.end() - 1) or []
            if method == "transfer" and len(args) < 2:
                continue
            matches.append(_at(UNCHECKED_CALL_RETURN, stmt, f"return value of {method}() is ignored"))
    return matches


def detect_unchecked_low_level_call(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    """Flag call/delegatecall/staticcall whose success flag is dropped or never read."""
    matches: List[Match] = []
    for block in _parsed(blocks):
        # Walk backwards so `read_later` holds every word of the statements after this one.
        read_later: Set[str] = set()
        found: List[Match] = []
        for stmt in reversed(block.statements):
            m = _LOW_LEVEL_RE.search(stmt.text)
            if m and not _is_wrapped(stmt.text):
                captured = _CAPTURE_RE.match(stmt.text)
                flag = captured and next((g for g in captured.groups() if g), None)
                if not flag:
                    found.append(_at(UNCHECKED_LOW_LEVEL_CALL, stmt, f"result of low-level {m.group(1)} is discarded"))
                elif flag not in read_later:
                    found.append(_at(UNCHECKED_LOW_LEVEL_CALL, stmt, f"success flag `{flag}` is never checked"))
            read_later.update(_WORD_RE.findall(stmt.text))
        matches.extend(reversed(found))
    return matches


def detect_transfer_fixed_gas(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _parsed(blocks):
        for stmt in block.statements:
            if stmt.kind is StatementKind.EXTERNAL_CALL and _is_fixed_gas_send(stmt.text):
                matches.append(_at(TRANSFER_FIXED_GAS, stmt, "forwards a fixed 2300 gas stipend"))
    return matches


# --- Arithmetic ----------------------------------------------------------------

UNCHECKED_ARITHMETIC = "unchecked-arithmetic"
_UNCHECKED_BLOCK_RE = re.compile(r"\bunchecked\s*\{")
_SAFEMATH_RE = re.compile(r"\busing\s+SafeMath\b|\bSafeMath\s*\.")


def legacy_compiler(text: str) -> bool:
    """True when the pragma admits a compiler older than 0.8 (no built-in overflow checks)."""
    m = _PRAGMA_RE.search(text)
    if not m:
        return False
    versions = re.findall(r"(\d+)\.(\d+)", m.group(1))
    if not versions:
        return False
    return min((int(major), int(minor)) for major, minor in versions) < (0, 8)


def detect_unchecked_arithmetic(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    legacy = legacy_compiler(unit.text) and not _SAFEMATH_RE.search(unit.text)
    braces = match_pairs(unit.text, "{", "}")
    for block in _parsed(blocks):
        if legacy:
            for stmt in block.statements:
                if stmt.target and _ARITH_RE.search(stmt.text):
                    matches.append(_at(UNCHECKED_ARITHMETIC, stmt, "arithmetic on storage under a pre-0.8 compiler without SafeMath"))
        covered = block.body_start
        for m in _UNCHECKED_BLOCK_RE.finditer(unit.text, block.body_start, block.body_end):
            # An unchecked block nested in one already scanned adds nothing.
            if m.start() < covered:
                continue
            close = min(braces.get(m.end() - 1, block.body_end - 1), block.body_end - 1)
            covered = close + 1
            inner = _COUNTER_STEP_RE.sub(" ", unit.text[m.end():close])
            if _ARITH_RE.search(inner):
                matches.append(Match(UNCHECKED_ARITHMETIC, m.start(), close + 1, "arithmetic inside an unchecked block"))
    return matches


# --- MEV -----------------------------------------------------------------------

FRONT_RUNNING = "front-running"
_SWAP_CALL_RE = re.compile(r"\.\s*(swap\w*)\s*\(")
_ZERO_MIN_OUT_RE = re.compile(r"amountOutMin\w*\s*:\s*0\b")
_HASH_CHECK_RE = re.compile(
    r"(?:keccak256|sha256)\s*\((?:[^()]|\([^()]*\))*\)\s*==|==\s*(?:keccak256|sha256)\s*\("
)
_ALLOWANCE_RE = re.compile(r"allow", re.I)


def detect_front_running(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _parsed(blocks):
        statements = block.statements
        pays_after = [False] * (len(statements) + 1)
        for index in range(len(statements) - 1, -1, -1):
            pays_after[index] = pays_after[index + 1] or bool(_VALUE_OUT_RE.search(statements[index].text))
        for index, stmt in enumerate(statements):
            if _ZERO_MIN_OUT_RE.search(stmt.text):
                matches.append(_at(FRONT_RUNNING, stmt, "swap accepts zero minimum output"))
                continue
            m = _SWAP_CALL_RE.search(stmt.text)
            if m and "0" in (_call_args(stmt.text, m.end() - 1) or [])[1:2]:
                matches.append(_at(FRONT_RUNNING, stmt, f"{m.group(1)}() called with zero minimum output"))
                continue
            if pays_after[index + 1] and _HASH_CHECK_RE.search(stmt.text):
                matches.append(_at(FRONT_RUNNING, stmt, "payout depends on a publicly submitted answer"))
        if block.name == "approve" and block.is_entry_point:
            if not any(re.search(r"[!=]=\s*0\b", s.text) for s in statements):
                for stmt in statements:
                    if stmt.target and _ALLOWANCE_RE.search(stmt.target):
                        matches.append(_at(FRONT_RUNNING, stmt, "allowance overwritten without requiring a reset to zero"))
                        break
    return matches


# --- Signatures ----------------------------------------------------------------

SIGNATURE_REPLAY = "signature-replay"
_RECOVER_RE = re.compile(r"\becrecover\s*\(|\.\s*(?:recover|tryRecover)\s*\(")
_NONCE_RE = re.compile(r"nonce|used|executed|consumed|claimed", re.I)
_DOMAIN_RE = re.compile(r"DOMAIN_SEPARATOR|domainSeparator|_hashTypedDataV4|EIP712|block\.chainid|chainid\s*\(")


def detect_signature_replay(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    has_domain = bool(_DOMAIN_RE.search(unit.text))
    for block in _parsed(blocks):
        has_nonce = bool(_NONCE_RE.search(unit.text[block.start:block.end]))
        if has_nonce and has_domain:
            continue
        missing = " and ".join(part for part, present in (("nonce", has_nonce), ("domain separator", has_domain)) if not present)
        for stmt in block.statements:
            if _RECOVER_RE.search(stmt.text):
                matches.append(_at(SIGNATURE_REPLAY, stmt, f"signature checked without a {missing}"))
                break
    return matches


# --- Randomness and time ---------------------------------------------------------

WEAK_RANDOMNESS = "weak-randomness"
TIMESTAMP_DEPENDENCE = "timestamp-dependence"
_BLOCK_ENTROPY_RE = re.compile(
    r"\bblock\s*\.\s*(?:timestamp|difficulty|prevrandao|number|coinbase|gaslimit)\b|\bblockhash\s*\(|\bnow\b"
)
_RANDOM_USE_RE = re.compile(r"\bkeccak256\s*\(|\bsha256\s*\(|%")
_RANDOM_NAME_RE = re.compile(r"random|seed|lucky|winner|dice|lottery", re.I)
_TIMESTAMP_RE = re.compile(r"\bblock\s*\.\s*timestamp\b|\bnow\b")
_COMPARISON_RE = re.compile(r"[<>]=?|[!=]=")
_CHECK_RE = re.compile(r"(?:require|assert)\s*\(|.*\?")


def _is_randomness(text: str) -> bool:
    return bool(_BLOCK_ENTROPY_RE.search(text)) and bool(_RANDOM_USE_RE.search(text) or _RANDOM_NAME_RE.search(text))


def detect_weak_randomness(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _parsed(blocks):
        for stmt in block.statements:
            if _is_randomness(stmt.text):
                matches.append(_at(WEAK_RANDOMNESS, stmt, "random value derived from block properties"))
    return matches


def detect_timestamp_dependence(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _parsed(blocks):
        for stmt in block.statements:
            branching = stmt.kind is StatementKind.CONTROL_FLOW or _CHECK_RE.match(stmt.text)
            if (
                branching
                and _TIMESTAMP_RE.search(stmt.text)
                and _COMPARISON_RE.search(stmt.text)
                and not _is_randomness(stmt.text)
            ):
                matches.append(_at(TIMESTAMP_DEPENDENCE, stmt, "control flow depends on block.timestamp"))
    return matches


# --- Validation ------------------------------------------------------------------

MISSING_ZERO_ADDRESS_CHECK = "missing-zero-address-check"
MISSING_AMOUNT_VALIDATION = "missing-amount-validation"
_ASSIGNED_PARAM_RE = re.compile(r"^[\w.\[\]\s]+=\s*(?:payable\s*\(\s*)?([A-Za-z_]\w*)\s*\)?\s*$")
_AMOUNT_NAME_RE = re.compile(r"amount|value|shares|qty|quantity|wad", re.I)
_ZERO_COMPARE_RE = re.compile(
    r"\b(\w+)\s*[!=]=\s*address\s*\(\s*0(?:x0+)?\s*\)|address\s*\(\s*0(?:x0+)?\s*\)\s*[!=]=\s*(\w+)\b"
)
_SUBTRACTED_RE = re.compile(r"-=?\s*(\w+)\b")
_ZERO_MODIFIER_RE = re.compile(r"zero|valid|nonnull", re.I)


def _zero_checked(block: CodeBlock) -> Set[str]:
    """Names compared against address(0) anywhere in the block."""
    names: Set[str] = set()
    for stmt in block.statements:
        for m in _ZERO_COMPARE_RE.finditer(stmt.text):
            names.add(m.group(1) or m.group(2))
    return names


def detect_missing_zero_address_check(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _parsed(blocks):
        if not (block.is_entry_point or block.kind is BlockKind.CONSTRUCTOR) or block.is_view:
            continue
        if any(_ZERO_MODIFIER_RE.search(m) for m in block.modifiers):
            continue
        addresses = {name for ptype, name in block.params if name and ptype.startswith("address")}
        if not addresses:
            continue
        checked = _zero_checked(block)
        for stmt in block.statements:
            if not stmt.target:
                continue
            m = _ASSIGNED_PARAM_RE.match(stmt.text)
            if m and m.group(1) in addresses and m.group(1) not in checked:
                matches.append(_at(MISSING_ZERO_ADDRESS_CHECK, stmt, f"`{m.group(1)}` stored without a zero-address check"))
    return matches


def detect_missing_amount_validation(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    """Flag the first use of an amount parameter that moves value before any comparison on it."""
    matches: List[Match] = []
    for block in _entry_points(blocks):
        pending = {name for ptype, name in block.params if name and ptype.startswith("uint") and _AMOUNT_NAME_RE.search(name)}
        for stmt in block.statements:
            if not pending:
                break
            used = pending.intersection(_WORD_RE.findall(stmt.text))
            if not used:
                continue
            is_check = (stmt.kind is StatementKind.CONTROL_FLOW or _CHECK_RE.match(stmt.text)) and _COMPARISON_RE.search(stmt.text)
            if is_check:
                pending -= used
                continue
            sends = stmt.kind is StatementKind.EXTERNAL_CALL and _VALUE_OUT_RE.search(stmt.text)
            subtracted = set(_SUBTRACTED_RE.findall(stmt.text)) if stmt.target else set()
            for name in sorted(used):
                if sends or name in subtracted:
                    matches.append(_at(MISSING_AMOUNT_VALIDATION, stmt, f"`{name}` is used before any balance or bounds check"))
                    pending.discard(name)
    return matches


# --- Availability ----------------------------------------------------------------

UNBOUNDED_LOOP_EXTERNAL_CALL = "unbounded-loop-external-call"
MISSING_PAUSE_GUARD = "missing-pause-guard"
_LOOP_HEADER_RE = re.compile(r"(?:for|while)\b")
_PAUSE_RE = re.compile(r"whenNotPaused|whenPaused|\bpaused\b|Pausable|_pause\b|circuitBreaker|emergencyStop|\bstopped\b", re.I)


def detect_unbounded_loop_external_call(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _parsed(blocks):
        if block.contract is None:
            continue
        arrays = [name for name, vtype in block.contract.state_vars if re.search(r"\[\s*\]$", vtype)]
        if not arrays:
            continue
        length_re = re.compile(r"\b(" + "|".join(map(re.escape, arrays)) + r")\s*\.\s*length\b")
        statements = block.statements
        # First external call at or after each index.
        next_call = [len(statements)] * (len(statements) + 1)
        for index in range(len(statements) - 1, -1, -1):
            is_call = statements[index].kind is StatementKind.EXTERNAL_CALL
            next_call[index] = index if is_call else next_call[index + 1]
        # Loop headers stay open until a statement at their own depth or shallower.
        open_loops: List[int] = []
        body_end: Dict[int, int] = {}
        for index, stmt in enumerate(statements):
            while open_loops and stmt.loop_depth <= statements[open_loops[-1]].loop_depth:
                body_end[open_loops.pop()] = index
            if stmt.kind is StatementKind.CONTROL_FLOW and _LOOP_HEADER_RE.match(stmt.text):
                open_loops.append(index)
        for index in open_loops:
            body_end[index] = len(statements)
        for index, end in sorted(body_end.items()):
            header = statements[index]
            call_index = next_call[index + 1]
            if call_index >= end:
                continue
            m = length_re.search(header.text)
            if m:
                matches.append(_at(
                    UNBOUNDED_LOOP_EXTERNAL_CALL, header,
                    f"loop over storage array `{m.group(1)}` makes an external call at line {_line(unit, statements[call_index])}",
                ))
    return matches


def detect_missing_pause_guard(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    pausable = _ContractTextCheck(unit, _PAUSE_RE)
    for block in _entry_points(blocks):
        if block.contract is None or pausable(block.contract):
            continue
        if any(_VALUE_OUT_RE.search(s.text) for s in block.statements):
            matches.append(_header(MISSING_PAUSE_GUARD, unit, block, f"{block.display_name} moves funds with no pause switch"))
    return matches


# --- Centralization --------------------------------------------------------------

SINGLE_OWNER_CRITICAL = "single-owner-critical"
_SINGLE_OWNER_RE = re.compile(r"^only(?:Owner|Admin|Operator|Governance|Governor|Manager|Dev|Deployer)$")
_TIMELOCK_RE = re.compile(r"timelock|delay|pendingOwner|acceptOwnership|Ownable2Step|multisig|Gnosis", re.I)
_CRITICAL_NAME_RE = re.compile(
    r"upgrade|withdraw|mint|pause|transferOwnership|kill|destroy|drain|rescue|sweep|emergency|implementation|fee|rate|price|oracle",
    re.I,
)


def detect_single_owner_critical(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    timelocked = _ContractTextCheck(unit, _TIMELOCK_RE)
    for block in _parsed(blocks):
        owner_modifier = next((m for m in block.modifiers if _SINGLE_OWNER_RE.match(m)), None)
        if owner_modifier is None or block.contract is None:
            continue
        if timelocked(block.contract):
            continue
        critical = _CRITICAL_NAME_RE.search(block.name) or any(
            _VALUE_OUT_RE.search(s.text) or _SELFDESTRUCT_RE.search(s.text) for s in block.statements
        )
        if critical:
            matches.append(_header(
                SINGLE_OWNER_CRITICAL, unit, block,
                f"`{owner_modifier}` alone controls {block.display_name}; no timelock or two-step handover",
            ))
    return matches


# --- Hygiene ---------------------------------------------------------------------

MISSING_EVENT_EMISSION = "missing-event-emission"
STATE_VARIABLE_SHADOWING = "state-variable-shadowing"
STRICT_BALANCE_EQUALITY = "strict-balance-equality"
FLOATING_PRAGMA = "floating-pragma"
ENCODE_PACKED_COLLISION = "encode-packed-collision"
_SETTER_NAME_RE = re.compile(
    r"^(?:set|update|change|configure|enable|disable|pause|unpause|transferOwnership|renounceOwnership|grant|revoke)"
)
_STRICT_BALANCE_RE = re.compile(
    r"(?:address\s*\(\s*this\s*\)\s*\.\s*balance|balanceOf\s*\(\s*address\s*\(\s*this\s*\)\s*\))\s*[!=]="
    r"|[!=]=\s*(?:address\s*\(\s*this\s*\)\s*\.\s*balance|[\w.()]*balanceOf\s*\(\s*address\s*\(\s*this\s*\)\s*\))"
)
_ENCODE_PACKED_RE = re.compile(r"\babi\s*\.\s*encodePacked\s*\(")


def detect_missing_event_emission(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _entry_points(blocks):
        if block.kind is not BlockKind.FUNCTION:
            continue
        writes = [s for s in block.statements if s.target]
        if not writes or any(s.kind is StatementKind.EVENT_EMIT for s in block.statements):
            continue
        if _SETTER_NAME_RE.match(block.name) or any(_PRIVILEGED_RE.search(s.target) for s in writes):
            matches.append(_header(
                MISSING_EVENT_EMISSION, unit, block,
                f"{block.display_name} updates `{writes[0].target}` without emitting an event",
            ))
    return matches


def detect_state_variable_shadowing(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _parsed(blocks):
        if block.contract is None:
            continue
        names = block.contract.state_var_names
        shadowed = [name for name in block.param_names if name in names]
        if shadowed:
            matches.append(_header(
                STATE_VARIABLE_SHADOWING, unit, block,
                f"parameter `{shadowed[0]}` shadows a state variable",
            ))
        for stmt in block.statements:
            local = declared_local(stmt.text)
            if local and local in names:
                matches.append(_at(STATE_VARIABLE_SHADOWING, stmt, f"local `{local}` shadows a state variable"))
    return matches


def detect_strict_balance_equality(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for block in _parsed(blocks):
        for stmt in block.statements:
            if _STRICT_BALANCE_RE.search(stmt.text):
                matches.append(_at(STRICT_BALANCE_EQUALITY, stmt, "strict equality on the contract's balance"))
    return matches


def detect_floating_pragma(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    for m in _PRAGMA_RE.finditer(unit.text):
        if re.search(r"[\^~>*]", m.group(1)) and "<" not in m.group(1):
            matches.append(Match(FLOATING_PRAGMA, m.start(), m.end(), f"compiler version `{m.group(1).strip()}` is not pinned"))
    return matches


def detect_encode_packed_collision(unit: SourceUnit, blocks: Sequence[CodeBlock]) -> List[Match]:
    matches: List[Match] = []
    parens = match_pairs(unit.text, "(", ")")
    for m in _ENCODE_PACKED_RE.finditer(unit.text):
        args = _call_args(unit.text, m.end() - 1, parens)
        if args is None or len(args) < 2:
            continue
        variables = [a for a in args if not re.fullmatch(r"\d+|\"\s*\"|'\s*'", a)]
        if len(variables) >= 2:
            matches.append(Match(ENCODE_PACKED_COLLISION, m.start(), m.end() - 1, f"{len(args)} values packed without padding"))
    return matches


# --- Catalog entries ---------------------------------------------------------------

BUILTIN_RULES: List[Rule] = [
    Rule(
        id=REENTRANCY,
        title="External call before state update",
        category=Category.REENTRANCY,
        severity=Severity.CRITICAL,
        gas_impact=GasImpact.MEDIUM,
        description="An external call is made before the function updates its own storage, and no reentrancy guard is present. "
                    "The callee can re-enter and act on stale state, e.g. withdraw the same balance repeatedly.",
        remediation="Apply checks-effects-interactions: update balances before the call, or add a nonReentrant guard.",
        predicate=detect_reentrancy,
        swc="SWC-107",
    ),
    Rule(
        id=FLASHLOAN_MANIPULATION,
        title="Flash-loan manipulable price or voting power",
        category=Category.MEV,
        severity=Severity.CRITICAL,
        gas_impact=GasImpact.NONE,
        description="A price, share ratio or voting weight is read from state that can be moved within a single transaction "
                    "(pool reserves, the contract's own balance, a live token balance).",
        remediation="Use a TWAP or an external oracle for prices, and snapshot balances (getPastVotes) for governance.",
        predicate=detect_flashloan_manipulation,
    ),
    Rule(
        id=DELEGATECALL_UNTRUSTED,
        title="Delegatecall to untrusted target",
        category=Category.EXTERNAL_CALLS,
        severity=Severity.CRITICAL,
        gas_impact=GasImpact.LOW,
        description="delegatecall runs foreign code against this contract's storage. The target is caller-controlled "
                    "or the function is reachable by anyone.",
        remediation="Delegate only to fixed, trusted implementations and restrict who can change or trigger them.",
        predicate=detect_delegatecall_untrusted,
        swc="SWC-112",
    ),
    Rule(
        id=UNPROTECTED_STATE_CHANGE,
        title="Unprotected privileged state change",
        category=Category.ACCESS_CONTROL,
        severity=Severity.CRITICAL,
        gas_impact=GasImpact.NONE,
        description="A public function without any access check writes a privileged variable such as the owner, "
                    "admin or implementation address.",
        remediation="Restrict the function with an access-control modifier (onlyOwner, onlyRole) or an explicit msg.sender check.",
        predicate=detect_unprotected_state_change,
        swc="SWC-105",
    ),
    Rule(
        id=UNPROTECTED_SELFDESTRUCT,
        title="Unprotected selfdestruct",
        category=Category.ACCESS_CONTROL,
        severity=Severity.CRITICAL,
        gas_impact=GasImpact.NONE,
        description="selfdestruct is reachable without an access check, letting anyone disable the contract and sweep its ether.",
        remediation="Remove selfdestruct or guard it behind a restricted, time-locked function.",
        predicate=detect_unprotected_selfdestruct,
        swc="SWC-106",
    ),
    Rule(
        id=TX_ORIGIN_AUTH,
        title="tx.origin used for authorization",
        category=Category.ACCESS_CONTROL,
        severity=Severity.HIGH,
        gas_impact=GasImpact.NONE,
        description="Authorization compares tx.origin. A malicious contract the owner interacts with can pass the check.",
        remediation="Use msg.sender for authorization.",
        predicate=detect_tx_origin_auth,
        swc="SWC-115",
    ),
    Rule(
        id=UNCHECKED_CALL_RETURN,
        title="Unchecked external call return value",
        category=Category.EXTERNAL_CALLS,
        severity=Severity.HIGH,
        gas_impact=GasImpact.NONE,
        description="send() or an ERC-20 transfer/transferFrom/approve returns false on failure, and the result is ignored.",
        remediation="Check the returned boolean or use SafeERC20 / Address.sendValue.",
        predicate=detect_unchecked_call_return,
        swc="SWC-104",
    ),
    Rule(
        id=UNCHECKED_LOW_LEVEL_CALL,
        title="Low-level call without success check",
        category=Category.EXTERNAL_CALLS,
        severity=Severity.HIGH,
        gas_impact=GasImpact.NONE,
        description="A low-level call, delegatecall or staticcall does not revert on failure, and its success flag "
                    "is dropped or never read.",
        remediation="Capture the success flag and require it, e.g. `(bool ok, ) = to.call{value: v}(\"\"); require(ok);`.",
        predicate=detect_unchecked_low_level_call,
        swc="SWC-104",
    ),
    Rule(
        id=UNCHECKED_ARITHMETIC,
        title="Arithmetic without overflow protection",
        category=Category.ARITHMETIC_SAFETY,
        severity=Severity.HIGH,
        gas_impact=GasImpact.LOW,
        description="Arithmetic runs without overflow checks, either under a pre-0.8 compiler without SafeMath "
                    "or inside an unchecked block.",
        remediation="Compile with Solidity >= 0.8, use SafeMath on older compilers, and keep unchecked blocks to proven-safe counters.",
        predicate=detect_unchecked_arithmetic,
        swc="SWC-101",
    ),
    Rule(
        id=FRONT_RUNNING,
        title="Front-running prone check-then-act",
        category=Category.MEV,
        severity=Severity.HIGH,
        gas_impact=GasImpact.NONE,
        description="The outcome depends on transaction ordering. Examples are a swap with no minimum output, a "
                    "payout for a publicly revealed answer, and an allowance overwrite.",
        remediation="Add slippage limits and deadlines, use commit-reveal, and require allowances to be reset to zero first.",
        predicate=detect_front_running,
        swc="SWC-114",
    ),
    Rule(
        id=SIGNATURE_REPLAY,
        title="Replayable signature verification",
        category=Category.ACCESS_CONTROL,
        severity=Severity.HIGH,
        gas_impact=GasImpact.NONE,
        description="A recovered signature is accepted without a nonce or domain separator, so it can be replayed.",
        remediation="Bind signatures to a per-signer nonce and an EIP-712 domain separator that includes chainid and the contract address.",
        predicate=detect_signature_replay,
        swc="SWC-121",
    ),
    Rule(
        id=WEAK_RANDOMNESS,
        title="Randomness from block properties",
        category=Category.RANDOMNESS,
        severity=Severity.HIGH,
        gas_impact=GasImpact.NONE,
        description="A random outcome is derived from block.timestamp, prevrandao, blockhash or similar values "
                    "that validators can influence and anyone can read.",
        remediation="Use a verifiable randomness source (e.g. Chainlink VRF) or a commit-reveal scheme.",
        predicate=detect_weak_randomness,
        swc="SWC-120",
    ),
    Rule(
        id=TIMESTAMP_DEPENDENCE,
        title="Timestamp-dependent branching",
        category=Category.TIMESTAMP,
        severity=Severity.MEDIUM,
        gas_impact=GasImpact.NONE,
        description="A condition depends on block.timestamp, which the block proposer can shift by several seconds.",
        remediation="Allow for timestamp drift in comparisons and avoid tight time windows for value-bearing decisions.",
        predicate=detect_timestamp_dependence,
        swc="SWC-116",
    ),
    Rule(
        id=MISSING_ZERO_ADDRESS_CHECK,
        title="Missing zero-address validation",
        category=Category.OTHER,
        severity=Severity.LOW,
        gas_impact=GasImpact.NONE,
        description="An address parameter is stored without rejecting address(0), which can brick roles or burn funds.",
        remediation="Add `require(addr != address(0))` before storing the address.",
        predicate=detect_missing_zero_address_check,
    ),
    Rule(
        id=MISSING_ACCESS_MODIFIER,
        title="Missing or inconsistent access-control modifier",
        category=Category.ACCESS_CONTROL,
        severity=Severity.MEDIUM,
        gas_impact=GasImpact.NONE,
        description="An administrative function has no access-control modifier. Often other functions in the same contract are protected.",
        remediation="Apply the contract's access-control modifier consistently to every administrative function.",
        predicate=detect_missing_access_modifier,
        swc="SWC-105",
    ),
    Rule(
        id=MISSING_AMOUNT_VALIDATION,
        title="Missing balance or amount validation",
        category=Category.OTHER,
        severity=Severity.MEDIUM,
        gas_impact=GasImpact.NONE,
        description="An amount parameter is subtracted from a balance or sent out before any bounds or balance check.",
        remediation="Validate amounts up front, e.g. `require(amount > 0 && balances[msg.sender] >= amount)`.",
        predicate=detect_missing_amount_validation,
    ),
    Rule(
        id=UNBOUNDED_LOOP_EXTERNAL_CALL,
        title="Unbounded loop with external calls",
        category=Category.AVAILABILITY,
        severity=Severity.MEDIUM,
        gas_impact=GasImpact.HIGH,
        description="A loop runs over a growing storage array and makes an external call on each iteration. "
                    "Gas exhaustion or one failing callee can block the function permanently.",
        remediation="Bound iterations, paginate, or switch to a pull-payment pattern.",
        predicate=detect_unbounded_loop_external_call,
        swc="SWC-128",
    ),
    Rule(
        id=SINGLE_OWNER_CRITICAL,
        title="Single-owner critical function",
        category=Category.CENTRALIZATION,
        severity=Severity.MEDIUM,
        gas_impact=GasImpact.NONE,
        description="A single privileged key controls a critical operation without a timelock, multisig or two-step handover.",
        remediation="Put critical operations behind a timelock or multisig and use two-step ownership transfer.",
        predicate=detect_single_owner_critical,
    ),
    Rule(
        id=MISSING_PAUSE_GUARD,
        title="No pause guard on fund-moving function",
        category=Category.AVAILABILITY,
        severity=Severity.LOW,
        gas_impact=GasImpact.LOW,
        description="Funds can leave the contract through this function, and the contract has no pause or circuit-breaker mechanism.",
        remediation="Inherit Pausable (or equivalent) and guard fund-moving functions with whenNotPaused.",
        predicate=detect_missing_pause_guard,
    ),
    Rule(
        id=MISSING_EVENT_EMISSION,
        title="State change without event",
        category=Category.OTHER,
        severity=Severity.LOW,
        gas_impact=GasImpact.LOW,
        description="A setter or privileged state change emits no event, so off-chain monitoring cannot track it.",
        remediation="Emit an event describing the change.",
        predicate=detect_missing_event_emission,
    ),
    Rule(
        id=STATE_VARIABLE_SHADOWING,
        title="Local variable shadows state variable",
        category=Category.OTHER,
        severity=Severity.LOW,
        gas_impact=GasImpact.NONE,
        description="A parameter or local variable has the same name as a state variable, hiding it inside the function.",
        remediation="Rename the local (e.g. prefix with an underscore).",
        predicate=detect_state_variable_shadowing,
        swc="SWC-119",
    ),
    Rule(
        id=STRICT_BALANCE_EQUALITY,
        title="Strict equality on contract balance",
        category=Category.OTHER,
        severity=Severity.MEDIUM,
        gas_impact=GasImpact.NONE,
        description="Logic depends on the contract balance being exactly a value. Forced ether or token donations break it.",
        remediation="Use >= / <= comparisons or track deposits in an internal accounting variable.",
        predicate=detect_strict_balance_equality,
        swc="SWC-132",
    ),
    Rule(
        id=TRANSFER_FIXED_GAS,
        title="transfer/send with fixed gas stipend",
        category=Category.EXTERNAL_CALLS,
        severity=Severity.LOW,
        gas_impact=GasImpact.LOW,
        description="transfer() and send() forward only 2300 gas. Smart-contract wallets can fail to receive, and gas repricing can break them.",
        remediation="Use a checked low-level call (or Address.sendValue) together with a reentrancy guard.",
        predicate=detect_transfer_fixed_gas,
        swc="SWC-134",
    ),
    Rule(
        id=FLOATING_PRAGMA,
        title="Floating compiler pragma",
        category=Category.OTHER,
        severity=Severity.LOW,
        gas_impact=GasImpact.NONE,
        description="The pragma accepts a range of compiler versions, so deployed bytecode may differ from the tested build.",
        remediation="Pin the exact compiler version used for testing and audit.",
        predicate=detect_floating_pragma,
        swc="SWC-103",
    ),
    Rule(
        id=ENCODE_PACKED_COLLISION,
        title="abi.encodePacked hash collision",
        category=Category.OTHER,
        severity=Severity.LOW,
        gas_impact=GasImpact.NONE,
        description="abi.encodePacked concatenates values without padding, so different dynamic inputs can hash identically.",
        remediation="Use abi.encode, or make sure at most one argument is dynamically sized.",
        predicate=detect_encode_packed_collision,
        swc="SWC-133",
    ),
]

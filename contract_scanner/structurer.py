# contract_scanner/structurer.py
"""
Lexical structuring of normalized source.

- Finds contract/interface/library declarations and their state variables.
- Finds function, modifier, constructor, fallback and receive declarations with
  balanced-brace bodies, their parameters, visibility, mutability and modifiers.
- Splits each body into ordered statements tagged external-call, state-write,
  control-flow, event-emit or other. Order is what sequence rules rely on.
- Works in a single forward pass over the text. Brace and paren pairs are
  matched once up front; header lookahead is bounded.
- A unit with unbalanced braces or a missing body is kept but marked unparsable.
"""

import logging
import re
from typing import Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from config import MAX_HEADER_LOOKAHEAD
from models import (
    BlockKind,
    CodeBlock,
    ContractUnit,
    SourceUnit,
    StatementKind,
    StatementSpan,
    Structure,
)

logger = logging.getLogger(__name__)

# --- Patterns --------------------------------------------------------------

_DECL_RE = re.compile(
    r"\b(?:(?P<ckind>(?:abstract\s+)?contract|interface|library)\s+(?P<cname>[A-Za-z_]\w*)"
    r"|(?P<member>function|modifier|constructor|fallback|receive)\b)"
)
_NESTED_DECL_RE = re.compile(
    r"\bfunction\s+[A-Za-z_]\w*\s*\(|\bmodifier\s+[A-Za-z_]\w*|\bconstructor\s*\("
    r"|\b(?:contract|interface|library)\s+[A-Za-z_]\w*\s*(?:is\b|\{)"
)
_TYPE_DECL_RE = re.compile(r"\b(?:struct|enum)\s+([A-Za-z_]\w*)|\btype\s+([A-Za-z_]\w*)\s+is\b")
_HEADER_DELIM_RE = re.compile(r"[({;}]")
_MEMBER_DELIM_RE = re.compile(r"[{};]")
_STMT_DELIM_RE = re.compile(r"[;{}(]")
_PAREN_GROUP_RE = re.compile(r"\([^()]*\)")
_IDENT_RE = re.compile(r"[A-Za-z_]\w*")
_WORD_RE = re.compile(r"[A-Za-z_][\w.]*")
_SPACE_RE = re.compile(r"\s*")
_CONTROL_RE = re.compile(r"(if|for|while|else|do)\b")
_CALL_OPTIONS_RE = re.compile(r"\{\s*(?:value|gas|salt)\s*:")
_ASSEMBLY_RE = re.compile(r"assembly\b")
_EMIT_RE = re.compile(r"emit\b")
_CATCH_RE = re.compile(r"catch\b")
_CONTRACT_TYPE_RE = re.compile(r"[A-Z]\w*")

_STATE_VAR_RE = re.compile(
    r"^(?P<type>mapping\s*\(.*\)|[A-Za-z_][\w.]*(?:\s+payable)?(?:\s*\[[^\]]*\])*)"
    r"(?:\s+(?:public|private|internal|constant|immutable|transient|override(?:\s*\([^)]*\))?))*"
    r"\s+(?P<name>[A-Za-z_]\w*)$",
    re.S,
)
_LOCAL_DECL_RE = re.compile(
    r"^(?P<type>mapping\s*\(.*?\)|[A-Za-z_][\w.]*(?:\s+payable)?(?:\s*\[[^\]]*\])*)\s+"
    r"(?:(?P<loc>memory|storage|calldata)\s+)?(?P<name>[A-Za-z_]\w*)\s*(?:=|$)",
    re.S,
)
_TUPLE_DECL_RE = re.compile(r"^\((?P<inner>[^()]*)\)\s*=(?!=)")
_ASSIGN_OP_RE = re.compile(r"\s*(?:[-+*/%|&^]|<<|>>)?=(?![=>])")
_INCDEC_OP_RE = re.compile(r"\s*(?:\+\+|--)")

_LOW_LEVEL_CALL_RE = re.compile(r"\.\s*(?:call|delegatecall|staticcall)\s*(?:\.\s*(?:value|gas)\s*\([^()]*\)\s*)*[({]")
_VALUE_TRANSFER_RE = re.compile(r"\.\s*(?:transfer|send)\s*\(")
_SAFE_CALL_RE = re.compile(
    r"\.\s*(?:safeTransfer|safeTransferFrom|safeApprove|safeIncreaseAllowance|sendValue|functionCall\w*)\s*\("
)
_INTERFACE_CAST_CALL_RE = re.compile(r"\b([A-Z]\w*)\s*\((?:[^()]|\([^()]*\))*\)\s*\.\s*[A-Za-z_]\w*\s*[({]")
_MEMBER_ACCESS_RE = re.compile(r"\.\s*([A-Za-z_]\w*)")
_MEMBER_CALL_RE = re.compile(r"\b([A-Za-z_]\w*)\s*(?:\[[^\]]*\]\s*)?\.\s*[A-Za-z_]\w*\s*[({]")
_YUL_CALL_RE = re.compile(r"\b(?:call|delegatecall|staticcall|callcode)\s*\(")
_YUL_WRITE_RE = re.compile(r"\bsstore\s*\(")

_VISIBILITY = frozenset({"public", "external", "internal", "private"})
_MUTABILITY = frozenset({"view", "pure", "payable", "nonpayable", "constant"})
_HEADER_SKIP = frozenset({"virtual", "override", "returns"})
_STATE_SKIP_PREFIX = re.compile(
    r"(?:using|event|error|pragma|import|function|modifier|constructor|fallback|receive|struct|enum|type)\b"
)
_NOT_A_TYPE = frozenset({
    "return", "emit", "delete", "revert", "require", "assert", "else", "new", "throw", "break", "continue",
})
_NON_STATE_NAMES = frozenset({
    "this", "msg", "tx", "block", "abi", "super", "type", "require", "assert", "revert",
    "return", "emit", "new", "delete", "payable", "address", "_",
})

# --- Pair matching ---------------------------------------------------------


def match_pairs(text: str, opener: str, closer: str) -> Dict[int, int]:
    """Map each opener offset to its matching closer. Unmatched openers are absent."""
    pairs: Dict[int, int] = {}
    stack: List[int] = []
    pattern = re.compile(f"[{re.escape(opener)}{re.escape(closer)}]")
    for m in pattern.finditer(text):
        if m.group() == opener:
            stack.append(m.start())
        elif stack:
            pairs[stack.pop()] = m.start()
    return pairs


def split_top_level(text: str, sep: str = ",") -> List[str]:
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for ch in text:
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        if ch == sep and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def _strip_paren_groups(text: str) -> str:
    previous = None
    while previous != text:
        previous, text = text, _PAREN_GROUP_RE.sub(" ", text)
    return text


def _type_base(type_text: str) -> str:
    m = _WORD_RE.match(type_text.strip())
    return m.group() if m else ""


def declared_local(stmt: str) -> Optional[str]:
    """Name introduced by a `Type [location] name [= ...]` statement, if any."""
    m = _LOCAL_DECL_RE.match(stmt)
    if m and _type_base(m.group("type")) not in _NOT_A_TYPE:
        return m.group("name")
    return None


# --- Contracts ---------------------------------------------------------------


def _parse_bases(header: str) -> Tuple[str, ...]:
    m = re.search(r"\bis\b(.*)$", header, re.S)
    if not m:
        return ()
    cleaned = _strip_paren_groups(m.group(1))
    return tuple(b.strip() for b in cleaned.split(",") if b.strip())


def _state_variables(text: str, body_start: int, body_end: int, braces: Dict[int, int]) -> Tuple[Tuple[str, str], ...]:
    """Collect `type name` declarations at the top level of a contract body."""
    found: List[Tuple[str, str]] = []
    segment_start = body_start
    i = body_start
    while i < body_end:
        m = _MEMBER_DELIM_RE.search(text, i, body_end)
        if m is None:
            break
        pos = m.start()
        if m.group() == "{":
            close = braces.get(pos)
            if close is None or close >= body_end:
                break
            i = segment_start = close + 1
            continue
        if m.group() == ";":
            segment = text[segment_start:pos].strip()
            if segment and len(segment) < 1_000 and not _STATE_SKIP_PREFIX.match(segment):
                declaration = re.split(r"(?<![=!<>])=(?![=>])", segment, maxsplit=1)[0].strip()
                vm = _STATE_VAR_RE.match(declaration)
                if vm and vm.group("type") not in _NOT_A_TYPE:
                    found.append((vm.group("name"), " ".join(vm.group("type").split())))
        i = segment_start = pos + 1
    return tuple(found)


# --- Headers -----------------------------------------------------------------


def _find_body_open(text: str, start: int, parens: Dict[int, int]) -> Tuple[Optional[int], str]:
    """Return (offset, delimiter) of the first top-level '{', ';' or '}' after start."""
    limit = min(len(text), start + MAX_HEADER_LOOKAHEAD)
    i = start
    while True:
        m = _HEADER_DELIM_RE.search(text, i, limit)
        if m is None:
            return None, ""
        pos = m.start()
        if m.group() == "(":
            close = parens.get(pos)
            if close is None or close >= limit:
                return None, ""
            i = close + 1
            continue
        return pos, m.group()


def _parse_params(param_text: str) -> Tuple[Tuple[str, str], ...]:
    params: List[Tuple[str, str]] = []
    for part in split_top_level(param_text):
        m = re.match(r"^(.+?)\s+([A-Za-z_]\w*)$", part, re.S)
        if m and m.group(2) not in ("memory", "storage", "calldata", "payable"):
            params.append((" ".join(m.group(1).split()), m.group(2)))
        else:
            params.append((" ".join(part.split()), ""))
    return tuple(params)


def _parse_header(header: str, keyword: str):
    """Return (kind, name, params, visibility, mutability, modifiers) for a member header."""
    kind = {
        "function": BlockKind.FUNCTION,
        "modifier": BlockKind.MODIFIER,
        "constructor": BlockKind.CONSTRUCTOR,
        "fallback": BlockKind.FALLBACK,
        "receive": BlockKind.RECEIVE,
    }[keyword]
    rest = header[len(keyword):]
    name = keyword if kind in (BlockKind.CONSTRUCTOR, BlockKind.FALLBACK, BlockKind.RECEIVE) else ""
    if kind in (BlockKind.FUNCTION, BlockKind.MODIFIER):
        m = re.match(r"\s+([A-Za-z_]\w*)", rest)
        if m:
            name = m.group(1)
            rest = rest[m.end():]
        elif kind is BlockKind.FUNCTION:
            kind = BlockKind.FALLBACK

    params: Tuple[Tuple[str, str], ...] = ()
    m = re.match(r"\s*\(", rest)
    if m:
        depth = 0
        for idx in range(m.end() - 1, len(rest)):
            if rest[idx] == "(":
                depth += 1
            elif rest[idx] == ")":
                depth -= 1
                if depth == 0:
                    params = _parse_params(rest[m.end():idx])
                    rest = rest[idx + 1:]
                    break

    visibility = ""
    mutability: List[str] = []
    modifiers: List[str] = []
    for token in _WORD_RE.findall(_strip_paren_groups(rest)):
        if token in _VISIBILITY:
            visibility = token
        elif token in _MUTABILITY:
            mutability.append("view" if token == "constant" else token)
        elif token in _HEADER_SKIP:
            continue
        elif token not in modifiers:
            modifiers.append(token)
    return kind, name, params, visibility, tuple(mutability), tuple(modifiers)


# --- Bodies ------------------------------------------------------------------


class _BodyScanner:
    """Splits one body into ordered, classified statements."""

    def __init__(
        self,
        text: str,
        braces: Dict[int, int],
        parens: Dict[int, int],
        value_types: FrozenSet[str],
        contract: Optional[ContractUnit],
        params: Sequence[Tuple[str, str]],
    ):
        self.text = text
        self.braces = braces
        self.parens = parens
        self.value_types = value_types
        self.locals: Set[str] = set()
        self.storage_locals: Set[str] = set()
        self.callables: Set[str] = set()
        if contract is not None:
            for var_name, var_type in contract.state_vars:
                if self._is_contract_type(var_type):
                    self.callables.add(var_name)
        for param_type, param_name in params:
            if param_name:
                self._declare(param_type, param_name, None)

    def _is_contract_type(self, type_text: str) -> bool:
        base = _type_base(type_text)
        return bool(_CONTRACT_TYPE_RE.fullmatch(base)) and base not in self.value_types

    def _declare(self, type_text: str, name: str, location: Optional[str]) -> None:
        if location == "storage" or "storage" in type_text.split():
            self.storage_locals.add(name)
        else:
            self.locals.add(name)
        if self._is_contract_type(type_text):
            self.callables.add(name)

    def _record_declaration(self, stmt: str) -> None:
        m = _LOCAL_DECL_RE.match(stmt)
        if m and _type_base(m.group("type")) not in _NOT_A_TYPE:
            self._declare(m.group("type"), m.group("name"), m.group("loc"))
            return
        m = _TUPLE_DECL_RE.match(stmt)
        if m:
            for part in split_top_level(m.group("inner")):
                pm = re.match(r"^(.+?)\s+(?:(memory|storage|calldata)\s+)?([A-Za-z_]\w*)$", part, re.S)
                if pm:
                    self._declare(pm.group(1), pm.group(3), pm.group(2))

    def _is_storage(self, name: str) -> bool:
        if name in _NON_STATE_NAMES:
            return False
        return name in self.storage_locals or name not in self.locals

    def write_target(self, stmt: str) -> Optional[str]:
        """Return the storage identifier a statement writes to, if any."""
        s = stmt.lstrip()
        m = re.match(r"delete\s+([A-Za-z_]\w*)", s)
        if m:
            return m.group(1) if self._is_storage(m.group(1)) else None
        prefix = re.match(r"(?:\+\+|--)\s*", s)
        if prefix:
            s = s[prefix.end():]
        m = _IDENT_RE.match(s)
        if not m:
            return None
        base = m.group()
        pos = m.end()
        member = ""
        while pos < len(s):
            ws = _SPACE_RE.match(s, pos).end()
            if ws < len(s) and s[ws] == "[":
                depth = 0
                for idx in range(ws, len(s)):
                    if s[idx] == "[":
                        depth += 1
                    elif s[idx] == "]":
                        depth -= 1
                        if depth == 0:
                            pos = idx + 1
                            break
                else:
                    return None
                member = ""
                continue
            dm = _MEMBER_ACCESS_RE.match(s, ws)
            if dm:
                member = dm.group(1)
                pos = dm.end()
                continue
            break
        rest = s[pos:]
        writes = bool(prefix) or bool(_ASSIGN_OP_RE.match(rest)) or bool(_INCDEC_OP_RE.match(rest))
        if not writes and member in ("push", "pop") and rest.lstrip().startswith("("):
            writes = True
        if writes and self._is_storage(base):
            return base
        return None

    def is_external_call(self, stmt: str) -> bool:
        if (
            _LOW_LEVEL_CALL_RE.search(stmt)
            or _VALUE_TRANSFER_RE.search(stmt)
            or _SAFE_CALL_RE.search(stmt)
        ):
            return True
        for m in _INTERFACE_CAST_CALL_RE.finditer(stmt):
            if m.group(1) not in self.value_types:
                return True
        if self.callables:
            for m in _MEMBER_CALL_RE.finditer(stmt):
                if m.group(1) in self.callables:
                    return True
        return False

    def classify(self, stmt: str) -> Tuple[StatementKind, Optional[str]]:
        if _EMIT_RE.match(stmt):
            return StatementKind.EVENT_EMIT, None
        self._record_declaration(stmt)
        target = self.write_target(stmt)
        if self.is_external_call(stmt):
            return StatementKind.EXTERNAL_CALL, target
        if target:
            return StatementKind.STATE_WRITE, target
        if _CATCH_RE.match(stmt):
            return StatementKind.CONTROL_FLOW, None
        return StatementKind.OTHER, None

    def _statement_end(self, i: int, end: int) -> Tuple[int, str]:
        while True:
            m = _STMT_DELIM_RE.search(self.text, i, end)
            if m is None:
                return end, ""
            pos = m.start()
            ch = m.group()
            if ch == "(":
                close = self.parens.get(pos)
                if close is None or close >= end:
                    return end, ""
                i = close + 1
                continue
            if ch == "{" and _CALL_OPTIONS_RE.match(self.text, pos):
                close = self.braces.get(pos)
                if close is None or close >= end:
                    return end, ""
                i = close + 1
                continue
            return pos, ch

    def _span(self, kind: StatementKind, start: int, end: int, depth: int, target: Optional[str] = None) -> StatementSpan:
        stmt = self.text[start:end].rstrip()
        return StatementSpan(kind=kind, start=start, end=start + len(stmt), text=stmt, loop_depth=depth, target=target)

    def _loop_init(self, header_start: int, header_end: int) -> None:
        open_paren = self.text.find("(", header_start, header_end)
        if open_paren == -1:
            return
        init = self.text[open_paren + 1:header_end].split(";", 1)[0].strip()
        if init:
            self._record_declaration(init)

    def scan(self, start: int, end: int) -> Tuple[StatementSpan, ...]:
        text = self.text
        spans: List[StatementSpan] = []
        frames: List[int] = []
        loop_depth = 0
        pending = 0  # loop headers whose body has not started yet
        i = start
        while i < end:
            i = _SPACE_RE.match(text, i, end).end()
            if i >= end:
                break
            ch = text[i]
            if ch == "{":
                frames.append(pending)
                loop_depth += pending
                pending = 0
                i += 1
                continue
            if ch == "}":
                if frames:
                    loop_depth -= frames.pop()
                i += 1
                continue
            if ch == ";":
                pending = 0
                i += 1
                continue

            kw = _CONTROL_RE.match(text, i, end)
            if kw:
                word = kw.group(1)
                if word == "else":
                    i = kw.end()
                    continue
                if word == "do":
                    pending += 1
                    i = kw.end()
                    continue
                header_end = kw.end()
                j = _SPACE_RE.match(text, header_end, end).end()
                if j < end and text[j] == "(":
                    close = self.parens.get(j)
                    if close is not None and close < end:
                        header_end = close + 1
                if word == "for":
                    self._loop_init(i, header_end)
                spans.append(self._span(StatementKind.CONTROL_FLOW, i, header_end, loop_depth + pending))
                if word in ("for", "while"):
                    pending += 1
                i = header_end
                continue

            stmt_end, delim = self._statement_end(i, end)
            if delim == "{" and _ASSEMBLY_RE.match(text, i):
                close = self.braces.get(stmt_end)
                if close is None or close >= end:
                    close = end - 1
                body = text[stmt_end:close + 1]
                kind = StatementKind.OTHER
                if _YUL_CALL_RE.search(body):
                    kind = StatementKind.EXTERNAL_CALL
                elif _YUL_WRITE_RE.search(body):
                    kind = StatementKind.STATE_WRITE
                spans.append(self._span(kind, i, close + 1, loop_depth + pending))
                pending = 0
                i = close + 1
                continue

            if text[i:stmt_end].strip():
                kind, target = self.classify(text[i:stmt_end].strip())
                spans.append(self._span(kind, i, stmt_end, loop_depth + pending, target))
            if delim == ";":
                pending = 0
                i = stmt_end + 1
            elif delim == "{":
                i = stmt_end
            elif delim == "}":
                pending = 0
                i = stmt_end
            else:
                break
        return tuple(spans)


# --- Entry point -------------------------------------------------------------


def _enclosing(open_contracts: List[ContractUnit], offset: int) -> Optional[ContractUnit]:
    """Innermost contract around offset; contracts that ended before it are dropped from the stack."""
    while open_contracts and open_contracts[-1].end <= offset:
        open_contracts.pop()
    return open_contracts[-1] if open_contracts else None


def structure(unit: SourceUnit) -> Structure:
    """Segment a SourceUnit into contracts and code blocks."""
    text = unit.text
    braces = match_pairs(text, "{", "}")
    parens = match_pairs(text, "(", ")")
    value_types = frozenset(a or b for a, b in _TYPE_DECL_RE.findall(text))

    contracts: List[ContractUnit] = []
    open_contracts: List[ContractUnit] = []
    blocks: List[CodeBlock] = []
    pos = 0
    while True:
        m = _DECL_RE.search(text, pos)
        if m is None:
            break
        kpos = m.start()

        if m.group("ckind"):
            body_open, delim = _find_body_open(text, m.end(), parens)
            if body_open is None or delim != "{":
                pos = m.end()
                continue
            close = braces.get(body_open)
            end = close + 1 if close is not None else len(text)
            contracts.append(ContractUnit(
                name=m.group("cname"),
                kind=" ".join(m.group("ckind").split()),
                start=kpos,
                end=end,
                bases=_parse_bases(text[m.end():body_open]),
                state_vars=_state_variables(text, body_open + 1, close if close is not None else len(text), braces),
                unparsable=close is None,
            ))
            open_contracts.append(contracts[-1])
            pos = body_open + 1
            continue

        keyword = m.group("member")
        if keyword in ("fallback", "receive") and not re.match(r"\s*\(", text[m.end():m.end() + 64]):
            pos = m.end()
            continue

        contract = _enclosing(open_contracts, kpos)
        body_open, delim = _find_body_open(text, m.end(), parens)
        if body_open is not None and delim == ";":
            pos = body_open + 1
            continue

        if body_open is not None:
            header_end = body_open
        else:
            # A header with no body ends at the lookahead limit or the next declaration.
            header_end = min(len(text), kpos + MAX_HEADER_LOOKAHEAD)
            following = _DECL_RE.search(text, m.end(), header_end)
            if following is not None:
                header_end = following.start()
        kind, name, params, visibility, mutability, modifiers = _parse_header(text[kpos:header_end], keyword)
        if kind is BlockKind.FUNCTION and contract is not None and name == contract.name:
            kind = BlockKind.CONSTRUCTOR
        common = dict(
            kind=kind, name=name, contract=contract, modifiers=modifiers, visibility=visibility,
            mutability=mutability, params=params,
        )

        if body_open is None or delim != "{":
            logger.debug("Unparsable %s %s: no body found", keyword, name)
            blocks.append(CodeBlock(start=kpos, end=header_end, unparsable=True, reason="missing body", **common))
            pos = m.end()
            continue

        close = braces.get(body_open)
        limit = close if close is not None else len(text)
        nested = _NESTED_DECL_RE.search(text, body_open + 1, limit)
        if close is None or nested is not None:
            end = nested.start() if nested is not None else len(text)
            logger.debug("Unparsable %s %s: unbalanced braces", keyword, name)
            blocks.append(CodeBlock(
                start=kpos, end=end, body_start=body_open + 1, body_end=end,
                unparsable=True, reason="unbalanced braces", **common
            ))
            pos = body_open + 1
            continue

        scanner = _BodyScanner(text, braces, parens, value_types, contract, params)
        blocks.append(CodeBlock(
            start=kpos, end=close + 1, body_start=body_open + 1, body_end=close,
            statements=scanner.scan(body_open + 1, close), **common
        ))
        pos = close + 1

    return Structure(contracts=tuple(contracts), blocks=tuple(blocks))

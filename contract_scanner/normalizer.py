# contract_scanner/normalizer.py
"""
Source normalization.

- Replaces comment and string/char literal contents with filler, never removing
  characters, so every offset and line number matches the raw source.
- Literal delimiters (quotes) are kept; comment markers are filled too.
- Unterminated block comments or literals are tolerated and flagged.
- Builds the line-start index used for O(log n) offset -> (line, column) lookups.
"""

import logging
from typing import List, Optional, Tuple

from config import FILLER_CHAR
from models import ScanOptions, SourceUnit
from contract_scanner.errors import InputTooLarge

logger = logging.getLogger(__name__)

UNTERMINATED_LITERAL = "unterminatedLiteral"

_NORMAL, _LINE_COMMENT, _BLOCK_COMMENT, _STRING, _CHAR = range(5)


def build_line_index(text: str) -> Tuple[int, ...]:
    """Return the offset of every line start, in increasing order."""
    starts = [0]
    pos = text.find("\n")
    while pos != -1:
        starts.append(pos + 1)
        pos = text.find("\n", pos + 1)
    return tuple(starts)


def neutralize(source_text: str) -> Tuple[str, bool]:
    """
    Return (normalized_text, unterminated).

    String literals end at a newline as well as at their closing quote; that
    case counts as unterminated too.
    """
    out: List[str] = []
    state = _NORMAL
    unterminated = False
    i = 0
    n = len(source_text)
    while i < n:
        ch = source_text[i]
        nxt = source_text[i + 1] if i + 1 < n else ""

        if state == _NORMAL:
            if ch == "/" and nxt == "/":
                out.append(FILLER_CHAR * 2)
                state = _LINE_COMMENT
                i += 2
                continue
            if ch == "/" and nxt == "*":
                out.append(FILLER_CHAR * 2)
                state = _BLOCK_COMMENT
                i += 2
                continue
            if ch == '"':
                state = _STRING
            elif ch == "'":
                state = _CHAR
            out.append(ch)
            i += 1
            continue

        if ch == "\n":
            out.append(ch)
            if state == _LINE_COMMENT:
                state = _NORMAL
            elif state in (_STRING, _CHAR):
                unterminated = True
                state = _NORMAL
            i += 1
            continue

        if state == _BLOCK_COMMENT:
            if ch == "*" and nxt == "/":
                out.append(FILLER_CHAR * 2)
                state = _NORMAL
                i += 2
                continue
        elif state in (_STRING, _CHAR):
            if ch == "\\" and nxt and nxt != "\n":
                out.append(FILLER_CHAR * 2)
                i += 2
                continue
            if (state == _STRING and ch == '"') or (state == _CHAR and ch == "'"):
                out.append(ch)
                state = _NORMAL
                i += 1
                continue

        out.append(FILLER_CHAR)
        i += 1

    if state in (_BLOCK_COMMENT, _STRING, _CHAR):
        unterminated = True
    return "".join(out), unterminated


def normalize(source_text: str, max_input_size: Optional[int] = None) -> SourceUnit:
    """
    Build a SourceUnit from raw source text.

    Raises InputTooLarge when the text exceeds the size ceiling.
    """
    limit = ScanOptions(max_input_size=max_input_size).resolved_max_input_size()
    if len(source_text) > limit:
        raise InputTooLarge(len(source_text), limit)

    text, unterminated = neutralize(source_text)
    warnings = frozenset()
    if unterminated:
        logger.debug("Tolerating unterminated comment or literal")
        warnings = frozenset({UNTERMINATED_LITERAL})
    return SourceUnit(
        raw=source_text,
        text=text,
        line_starts=build_line_index(source_text),
        warnings=warnings,
    )

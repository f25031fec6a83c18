"""Lark parser setup for declaration files."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from lark import Lark, Tree, UnexpectedCharacters, UnexpectedEOF, UnexpectedInput, UnexpectedToken

from sumlayout.internals import errors as er
from sumlayout.internals.report import Reporter, Span

GRAMMAR_PATH = Path(__file__).parent.parent / "grammar.lark"

# Terminal names shown to users in "expected ..." hints
_TERMINAL_NAMES = {
    "NAME": "a name", "INT": "a number", "LBRACE": "'{'", "RBRACE": "'}'",
    "LPAR": "'('", "RPAR": "')'", "LSQB": "'['", "RSQB": "']'",
    "COLON": "':'", "COMMA": "','", "EQUAL": "'='", "LESSTHAN": "'<'", "MORETHAN": "'>'",
}


@lru_cache(maxsize=1)
def get_parser() -> Lark:
    return Lark.open(
        str(GRAMMAR_PATH),
        parser="lalr",
        propagate_positions=True,
        maybe_placeholders=False,
    )


def describe_parse_error(e: UnexpectedInput) -> str:
    """Short, user-facing description of a lark parse error."""
    if isinstance(e, UnexpectedEOF):
        return "unexpected end of input"
    if isinstance(e, UnexpectedCharacters):
        return f"unexpected character '{e.char}'"
    if isinstance(e, UnexpectedToken):
        if e.token.type == "$END":
            return "unexpected end of input"
        expected = sorted(_TERMINAL_NAMES.get(name, name) for name in e.expected)
        detail = f"unexpected '{e.token}'"
        if expected:
            detail += f", expected {' or '.join(expected[:4])}"
        return detail
    return str(e).splitlines()[0]


def parse_source(src: str, reporter: Reporter) -> Optional[Tree]:
    """Parse a declaration file.

    Returns:
        The parse tree, or None after reporting SL4001 for a syntax error.
    """
    try:
        return get_parser().parse(src)
    except UnexpectedInput as e:
        line = getattr(e, "line", None)
        column = getattr(e, "column", None)
        span = Span(line, column, line, column + 1) if line and column and line > 0 else None
        er.emit(reporter, er.ERR.SL4001, span, detail=describe_parse_error(e))
        return None

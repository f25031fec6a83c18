"""Diagnostics collected while analyzing one declaration file."""
from __future__ import annotations
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, List, Optional

from lark import Token


def _sgr(*codes: int) -> str:
    return "\x1b[" + ";".join(map(str, codes)) + "m"


RESET = _sgr(0)
STYLE = {
    "error": _sgr(1, 31),
    "warning": _sgr(1, 33),
    "location": _sgr(36),
    "code": _sgr(2),
    "guide": _sgr(90),
}


@dataclass(frozen=True)
class Span:
    """1-based source range; ``end_col`` is exclusive."""
    line: int
    col: int
    end_line: int
    end_col: int

    def __str__(self) -> str:
        return f"{self.line}:{self.col}"

    @property
    def width(self) -> int:
        if self.end_line != self.line:
            return 1
        return max(1, self.end_col - self.col)


@dataclass
class Diagnostic:
    kind: str
    code: str
    message: str
    span: Optional[Span] = None
    filename: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.kind == "error"


def span_of(t: Any) -> Optional[Span]:
    """Span of a lark Tree (via its meta) or Token, if positions are known."""
    meta = getattr(t, "meta", None)
    if meta is not None and not getattr(meta, "empty", True):
        return Span(meta.line, meta.column, meta.end_line, meta.end_column)
    if isinstance(t, Token) and t.line is not None and t.column is not None:
        return Span(t.line, t.column, t.end_line or t.line, t.end_column or t.column)
    return None


def display_path(filename: str) -> str:
    """``./relative`` inside the working directory, the bare name elsewhere."""
    try:
        return f"./{Path(filename).resolve().relative_to(Path.cwd())}"
    except ValueError:
        return Path(filename).name


class Reporter:
    """Collects errors and warnings for one source text."""

    def __init__(self, source: Optional[str] = None, filename: str = "<input>") -> None:
        self.source = source
        self.filename = filename
        self.items: List[Diagnostic] = []

    def _add(self, kind: str, code: str, message: str, span: Optional[Span]) -> Diagnostic:
        diag = Diagnostic(kind, code, message, span, self.filename)
        self.items.append(diag)
        return diag

    def error(self, code: str, message: str, span: Optional[Span] = None) -> Diagnostic:
        return self._add("error", code, message, span)

    def warn(self, code: str, message: str, span: Optional[Span] = None) -> Diagnostic:
        return self._add("warning", code, message, span)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def has_errors(self) -> bool:
        return any(d.is_error for d in self.items)

    @property
    def has_warnings(self) -> bool:
        return any(not d.is_error for d in self.items)

    def codes(self) -> List[str]:
        return [d.code for d in self.items]

    def exit_code(self) -> int:
        """0 when clean, 1 with warnings only, 2 with errors."""
        if self.has_errors:
            return 2
        if self.has_warnings:
            return 1
        return 0

    def summary(self) -> str:
        errors = sum(1 for d in self.items if d.is_error)
        warnings = len(self.items) - errors
        parts = []
        if errors:
            parts.append(f"{errors} error{'s' if errors != 1 else ''}")
        if warnings:
            parts.append(f"{warnings} warning{'s' if warnings != 1 else ''}")
        return ", ".join(parts) or "no diagnostics"

    def format(self, use_color: bool = True, use_unicode: bool = True) -> str:
        """Render all diagnostics, each followed by its source line when known.

        use_color   -> ANSI colorize location, kind and marker
        use_unicode -> ``│`` / ``╰`` guides and ``┯`` markers instead of ASCII
        """
        src_lines = self.source.splitlines() if self.source else None
        out: List[str] = []
        for d in self.items:
            out.append(self._header(d, use_color))
            if d.span is not None and src_lines is not None:
                out.extend(self._snippet(d, src_lines, use_color, use_unicode))
        return "\n".join(out)

    def _header(self, d: Diagnostic, use_color: bool) -> str:
        path = display_path(d.filename or self.filename)
        loc = f"{path}:{d.span}" if d.span else path
        message = d.message if d.message.endswith(".") else f"{d.message}."
        if not use_color:
            return f"{loc}: {d.kind} [{d.code}]: {message}"
        return (
            f"{STYLE['location']}{loc}{RESET}: {STYLE[d.kind]}{d.kind}{RESET} "
            f"[{STYLE['code']}{d.code}{RESET}]: {message}"
        )

    def _snippet(self, d: Diagnostic, src_lines: List[str], use_color: bool, use_unicode: bool) -> List[str]:
        idx = d.span.line - 1
        line_text = src_lines[idx] if 0 <= idx < len(src_lines) else ""
        marker = " " * (max(1, d.span.col) - 1) + ("┯" if use_unicode else "^") * d.span.width
        bar, corner = ("  │ ", "  ╰ ") if use_unicode else ("  | ", "  ` ")
        if not use_color:
            return [f"{bar}{line_text}", f"{corner}{marker}"]
        guide = STYLE["guide"]
        return [
            f"{guide}{bar}{RESET}{line_text}",
            f"{guide}{corner}{RESET}{STYLE[d.kind]}{marker}{RESET}",
        ]

    def print(self, stream=None, use_color: Optional[bool] = None, use_unicode: Optional[bool] = None) -> None:
        """Print diagnostics to `stream` (default: sys.stderr).

        Color and unicode guides are auto-enabled for a TTY unless NO_COLOR,
        NO_UNICODE or TERM=dumb is set.
        """
        stream = stream or sys.stderr
        fancy = getattr(stream, "isatty", lambda: False)() and os.getenv("TERM") != "dumb"
        if use_color is None:
            use_color = fancy and os.getenv("NO_COLOR") is None
        if use_unicode is None:
            use_unicode = fancy and os.getenv("NO_UNICODE") is None

        text = self.format(use_color=use_color, use_unicode=use_unicode)
        if text:
            print(text, file=stream)

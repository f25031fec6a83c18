from __future__ import annotations
import platform
import sys

import llvmlite
from llvmlite import binding as llvm

from sumlayout import __version__, __dev__


def version_fields() -> list[tuple[str, str]]:
    """Name/version pairs shown under the banner headline."""
    llvm_info = getattr(llvm, "llvm_version_info", None) or ()
    return [
        ("Python", platform.python_version()),
        ("llvmlite", getattr(llvmlite, "__version__", "unknown")),
        ("LLVM", ".".join(str(part) for part in llvm_info) or "unknown"),
    ]


def banner_text(use_ansi: bool = False) -> str:
    bold, dim, reset = ("\x1b[1m", "\x1b[2m", "\x1b[0m") if use_ansi else ("", "", "")
    headline = f"{bold}sumlayout{reset} {__version__}" + (" (dev)" if __dev__ else "")
    details = ", ".join(f"{name} {ver}" for name, ver in version_fields())
    return f"{headline}\n{dim}{details}{reset}"


def print_banner(stream=None) -> None:
    stream = stream or sys.stdout
    print(banner_text(getattr(stream, "isatty", lambda: False)()), file=stream)

# sumlayout/internals/errors.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, NoReturn, Optional, Sequence

from sumlayout.internals.report import Span, Reporter


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class Category(str, Enum):
    GENERAL    = "general"
    DEFINITION = "definition"
    PLANNING   = "planning"
    CALL_SITE  = "call-site"
    RUNTIME    = "runtime"
    FRONT_END  = "front-end"
    CONFIG     = "config"
    ARTIFACT   = "artifact"


@dataclass(frozen=True)
class ErrorMessage:
    code: str
    severity: Severity
    text: str
    category: Category = Category.GENERAL
    doc: str = ""


REGISTRY: Dict[str, ErrorMessage] = {}

class _ErrorCatalog:
    def __init__(self, backing: Dict[str, ErrorMessage]) -> None:
        self._registry = backing

    def __getattr__(self, name: str) -> ErrorMessage:
        try:
            return self._registry[name]
        except KeyError as e:
            raise AttributeError(name) from e

    def __getitem__(self, code: str) -> ErrorMessage:
        return self._registry[code]


ERR = _ErrorCatalog(REGISTRY)

def emit(r: Reporter, em: ErrorMessage, span: Optional[Span], **kwargs) -> None:
    text = _fmt(em.code, **kwargs)
    if em.severity == Severity.ERROR:
        r.error(em.code, text, span)
    else:
        r.warn(em.code, text, span)

def format_message(code: str, **kwargs) -> str:
    """Render a registry entry as ``"<code>: <text>"``."""
    return f"{code}: {_fmt(code, **kwargs)}"


def raise_internal_error(code: str, **kwargs) -> NoReturn:
    """Raise a RuntimeError for internal errors.

    Internal errors (SL0 codes) indicate bugs in sumlayout itself, not in
    the declarations being planned.

    Raises:
        RuntimeError: Always raises with formatted error message
    """
    raise RuntimeError(format_message(code, **kwargs))

#
# --- Exceptions
#

class SumLayoutError(Exception):
    """Base class for every error raised with a registry code.

    Subclasses pass the registry code and the format parameters; the
    rendered message is available as ``str(exc)`` and the code as
    ``exc.code``.
    """

    def __init__(self, code: str, **kwargs) -> None:
        self.code = code
        self.params = kwargs
        super().__init__(format_message(code, **kwargs))


class UnionDefinitionError(SumLayoutError):
    """A union definition violates the case model invariants."""

    def __init__(self, code: str, union_name: str, **kwargs) -> None:
        self.union_name = union_name
        super().__init__(code, union=union_name, **kwargs)


class PlanningError(SumLayoutError):
    """The planner cannot produce a storage plan for a union definition."""

    def __init__(self, code: str, union_name: str, case_name: Optional[str], **kwargs) -> None:
        self.union_name = union_name
        self.case_name = case_name
        super().__init__(code, union=union_name, case=case_name, **kwargs)
        self.reason = _fmt(code, union=union_name, case=case_name, **kwargs)


class RuntimeCapacityError(SumLayoutError):
    """A concrete payload type does not fit the union's overlapping block."""

    def __init__(self, type_name: str, required_bytes: int, available_bytes: int, union_name: str) -> None:
        self.type_name = type_name
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes
        self.union_name = union_name
        super().__init__("SL3003", type=type_name, required=required_bytes,
                         available=available_bytes, union=union_name)


class InvalidState(SumLayoutError):
    """An accessor was used on an instance that does not hold the expected case."""


class MatchFailure(SumLayoutError):
    """A dispatch call has no handler for the active case."""

    def __init__(self, case_name: str, union_name: str) -> None:
        self.case_name = case_name
        super().__init__("SL3002", case=case_name, union=union_name)


class EncodingError(SumLayoutError):
    """A payload value cannot be written with the byte layout of its type."""

    def __init__(self, value: object, type_name: str, reason: str) -> None:
        self.value = value
        super().__init__("SL3010", value=value, type=type_name, reason=reason)


class FrontEndError(SumLayoutError):
    """Raised by the declaration front-end for unrecoverable input."""


class ConfigError(SumLayoutError):
    pass


class PlanFormatError(SumLayoutError):
    pass


#
# --- Helpers
#

def _add(msg: ErrorMessage) -> None:
    if msg.code in REGISTRY:
        raise ValueError(f"duplicate error code {REGISTRY[msg.code]} in {msg}")
    REGISTRY[msg.code] = msg

def _get(code: str) -> ErrorMessage:
    try:
        return REGISTRY[code]
    except KeyError:
        raise KeyError(f"unknown error code: {code}")

def _fmt(code: str, **kwargs) -> str:
    msg = _get(code)
    try:
        return msg.text.format(**kwargs)
    except KeyError as key_error:
        missing = key_error.args[0]
        raise KeyError(f"missing text key '{missing}' for {code} "
                       f"(needed by: {msg.text!r})") from None

def format_names(names: Sequence[str]) -> str:
    return "[" + ", ".join(names) + "]"

#
# --- Registry population
#

# Internal errors (bugs, not user input) - SL0xxx range
_add(ErrorMessage("SL0001", Severity.ERROR,
    "unsupported type for size calculation: {type}",
    Category.GENERAL, "Only layout-eligible concrete types have a byte size."))

_add(ErrorMessage("SL0002", Severity.ERROR,
    "unsupported type for LLVM lowering: {type}",
    Category.GENERAL, "The lowering has no mapping for this type."))

_add(ErrorMessage("SL0003", Severity.ERROR,
    "write of {size} bytes exceeds overlapping block capacity {capacity}",
    Category.GENERAL, "Capacity is validated before any byte is written."))

_add(ErrorMessage("SL0004", Severity.ERROR,
    "expected a parse tree rooted at 'start', got {node}",
    Category.GENERAL, "The declaration builder only accepts trees produced by the parser."))

# Union definition invariants (SL1001-SL1099)
_add(ErrorMessage("SL1001", Severity.ERROR,
    "union '{union}' declares case '{name}' more than once",
    Category.DEFINITION, "Case names must be unique within a union."))

_add(ErrorMessage("SL1002", Severity.ERROR,
    "union '{union}' case '{name}' has index {index}, expected {expected}",
    Category.DEFINITION, "Case indices are 0-based, contiguous and follow declaration order."))

_add(ErrorMessage("SL1003", Severity.ERROR,
    "union '{union}' declares no cases",
    Category.DEFINITION, "A union must declare at least one case."))

_add(ErrorMessage("SL1004", Severity.ERROR,
    "union '{union}' declares type parameter '{name}' more than once",
    Category.DEFINITION, "Type parameter names must be unique."))

_add(ErrorMessage("SL1005", Severity.ERROR,
    "union '{union}' case '{name}' uses undeclared type parameter '{param}'",
    Category.DEFINITION, "Generic payloads must refer to one of the union's type parameters."))

_add(ErrorMessage("SL1006", Severity.ERROR,
    "union '{union}' case '{name}' has no payload but specifies {option}",
    Category.DEFINITION, "Storage and layout overrides only apply to payload-bearing cases."))

# Planning (SL1101-SL1199)
_add(ErrorMessage("SL1101", Severity.ERROR,
    "union '{union}' case '{case}': type '{type}' is declared layout-eligible but its size cannot be determined; "
    "specify a size override or a union capacity",
    Category.PLANNING, "Generic and cross-unit types have no provable static size."))

_add(ErrorMessage("SL1102", Severity.ERROR,
    "union '{union}' case '{case}': size override must be positive, got {size}",
    Category.PLANNING, "Explicit byte sizes are strictly positive."))

_add(ErrorMessage("SL1103", Severity.ERROR,
    "union '{union}': capacity override must be positive, got {size}",
    Category.PLANNING, "The overlapping block capacity is strictly positive."))

_add(ErrorMessage("SL1104", Severity.ERROR,
    "union '{union}' case '{case}': {kind} '{type}' can never be layout-eligible{detail}",
    Category.PLANNING, "Reference types, arrays and interfaces have no fixed byte layout, "
    "nor do value types that contain them."))

_add(ErrorMessage("SW1201", Severity.WARNING,
    "union '{union}' case '{case}': '{type}' needs {required} bytes but the union capacity is {available}; "
    "construction will fail",
    Category.PLANNING, "Concrete shortfalls against an explicit capacity are reported ahead of first use."))

# Call-site diagnostics (SW2001-SL2099)
_add(ErrorMessage("SW2001", Severity.WARNING,
    "dispatch on '{union}' fails to handle case(s): {cases}; handle all cases or provide a default (_) handler",
    Category.CALL_SITE, "Non-exhaustive match or switch."))

_add(ErrorMessage("SW2002", Severity.WARNING,
    "dispatch on '{union}' handles every case; the default (_) handler will never be used",
    Category.CALL_SITE, "Redundant default handler."))

_add(ErrorMessage("SW2003", Severity.WARNING,
    "handler for case(s) {cases} of '{union}' is bound by position; bind by name so that reordering cases "
    "cannot silently change the dispatch",
    Category.CALL_SITE, "Positional handler binding."))

_add(ErrorMessage("SL2004", Severity.ERROR,
    "'{union}' has no case {name}",
    Category.CALL_SITE, "Named handler or position does not refer to a declared case."))

_add(ErrorMessage("SL2005", Severity.ERROR,
    "case '{name}' of '{union}' is handled more than once",
    Category.CALL_SITE, "Each case takes at most one handler."))

# Runtime (SL3001-SL3099)
_add(ErrorMessage("SL3001", Severity.ERROR,
    "attempted to access case '{case}' (index {index}) of '{union}' but the active case is '{active}' (index {active_index})",
    Category.RUNTIME, "as_case() on an instance holding another case."))

_add(ErrorMessage("SL3002", Severity.ERROR,
    "failed to handle case {case} of '{union}'",
    Category.RUNTIME, "Dispatch reached a case with no handler and no default."))

_add(ErrorMessage("SL3003", Severity.ERROR,
    "the layout-eligible type {type} requires {required} bytes of storage but {union} has only {available} bytes "
    "available to store layout-eligible types",
    Category.RUNTIME, "Deferred capacity validation failed."))

_add(ErrorMessage("SL3004", Severity.ERROR,
    "'{union}' cannot convert a value of type '{type}': {reason}",
    Category.RUNTIME, "from_payload() needs exactly one case carrying the type."))

_add(ErrorMessage("SL3005", Severity.ERROR,
    "'{union}' must bind type parameter '{param}' before constructing case '{case}'",
    Category.RUNTIME, "Generic unions are instantiated before payloads are stored."))

_add(ErrorMessage("SL3006", Severity.ERROR,
    "overlapping block holds '{held}' but was read as '{wanted}'",
    Category.RUNTIME, "Only the interpretation written last is valid."))

_add(ErrorMessage("SL3007", Severity.ERROR,
    "'{union}' has no case {name}",
    Category.RUNTIME, "Runtime API called with an unknown case name or index."))

_add(ErrorMessage("SL3008", Severity.ERROR,
    "case '{case}' of '{union}' {reason}",
    Category.RUNTIME, "Wrong constructor for the case kind."))

_add(ErrorMessage("SL3009", Severity.ERROR,
    "'{union}' cannot bind type parameters: {reason}",
    Category.RUNTIME, "instantiate() arguments must name declared parameters with concrete types."))

_add(ErrorMessage("SL3010", Severity.ERROR,
    "cannot encode value {value!r} as '{type}': {reason}",
    Category.RUNTIME, "Payload does not fit the layout of its declared type."))

_add(ErrorMessage("SL3011", Severity.ERROR,
    "case '{case}' of '{union}' has more than one handler",
    Category.RUNTIME, "A dispatch call binds each case at most once."))

# Front-end, configuration and plan artifact (SL4001-SL4099)
_add(ErrorMessage("SL4001", Severity.ERROR,
    "syntax error: {detail}",
    Category.FRONT_END, "The declaration file could not be parsed."))

_add(ErrorMessage("SL4002", Severity.ERROR,
    "unknown type '{name}'",
    Category.FRONT_END, "Payload and field types must be declared or built in."))

_add(ErrorMessage("SL4003", Severity.ERROR,
    "'{name}' is already declared",
    Category.FRONT_END, "Type and union names share one namespace."))

_add(ErrorMessage("SL4004", Severity.ERROR,
    "unknown union '{name}' at call site",
    Category.FRONT_END, "Dispatch call sites must refer to a declared union."))

_add(ErrorMessage("SL4005", Severity.ERROR,
    "invalid option {option}: {reason}",
    Category.FRONT_END, "Bracketed options accept a fixed set of keys and values."))

_add(ErrorMessage("SL4006", Severity.ERROR,
    "value type '{name}' contains itself by value through {path}",
    Category.FRONT_END, "Struct fields cannot form a cycle."))

_add(ErrorMessage("SL4010", Severity.ERROR,
    "invalid configuration in {path}: {reason}",
    Category.CONFIG, "sumlayout.toml or [tool.sumlayout] is malformed."))

_add(ErrorMessage("SL4020", Severity.ERROR,
    "{path} is not a plan file (bad magic)",
    Category.ARTIFACT, "Plan artifacts start with a fixed magic header."))

_add(ErrorMessage("SL4021", Severity.ERROR,
    "{path} is truncated in the {section} section",
    Category.ARTIFACT, "The file ended before the declared section length."))

_add(ErrorMessage("SL4022", Severity.ERROR,
    "{path} uses plan format version {version}, supported: {supported}",
    Category.ARTIFACT, "The artifact was written by an incompatible version."))

_add(ErrorMessage("SL4023", Severity.ERROR,
    "{path} contains a malformed plan: {reason}",
    Category.ARTIFACT, "The MessagePack payload does not describe valid plans."))

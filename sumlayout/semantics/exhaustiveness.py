# sumlayout/semantics/exhaustiveness.py
"""
Exhaustiveness checking for match/switch call sites.

A call site passes one handler per case, either by position (the case at
that ordinal) or by case name, plus an optional default handler named
``_``. The check is a pure function of the declared case names and the
call-site arguments:
- missing cases without a default      -> NonExhaustive
- no missing cases but a default       -> RedundantDefault
- any handler bound by position        -> PreferNamedBinding
Arguments naming no case, or binding a case twice, are errors.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from sumlayout.internals import errors as er
from sumlayout.internals.report import Reporter, Span
from sumlayout.semantics.model import UnionDefinition

DEFAULT_HANDLER = "_"


class RuleId(Enum):
    NON_EXHAUSTIVE = "SW2001"
    REDUNDANT_DEFAULT = "SW2002"
    PREFER_NAMED_BINDING = "SW2003"
    UNKNOWN_CASE = "SL2004"
    DUPLICATE_HANDLER = "SL2005"

    @property
    def code(self) -> str:
        return self.value


@dataclass(frozen=True)
class CallSiteArgument:
    """One handler argument; ``name`` is None for positional arguments."""
    name: Optional[str] = None
    span: Optional[Span] = None

    @property
    def is_named(self) -> bool:
        return self.name is not None


@dataclass(frozen=True)
class CallSite:
    union_name: str
    arguments: tuple[CallSiteArgument, ...]
    kind: str = "match"
    span: Optional[Span] = None


@dataclass(frozen=True)
class ExhaustivenessDiagnostic:
    """A call-site finding.

    ``missing_case_names`` is set for NonExhaustive; ``case_names`` holds
    the positional cases for PreferNamedBinding and the offending argument
    for UnknownCase and DuplicateHandler.
    """
    rule_id: RuleId
    location: Optional[Span]
    missing_case_names: tuple[str, ...] = ()
    case_names: tuple[str, ...] = ()

    @property
    def is_error(self) -> bool:
        return er.ERR[self.rule_id.code].severity == er.Severity.ERROR

    def format_kwargs(self, union_name: str) -> dict:
        match self.rule_id:
            case RuleId.NON_EXHAUSTIVE:
                return {"union": union_name, "cases": er.format_names(self.missing_case_names)}
            case RuleId.PREFER_NAMED_BINDING:
                return {"union": union_name, "cases": er.format_names(self.case_names)}
            case RuleId.UNKNOWN_CASE | RuleId.DUPLICATE_HANDLER:
                return {"union": union_name, "name": self.case_names[0]}
            case _:
                return {"union": union_name}

    def message(self, union_name: str) -> str:
        return er.format_message(self.rule_id.code, **self.format_kwargs(union_name))


def check_call_site(case_names: Sequence[str], arguments: Iterable[CallSiteArgument],
                    location: Optional[Span] = None) -> List[ExhaustivenessDiagnostic]:
    """Check one dispatch call site against the declared case names."""
    diagnostics: List[ExhaustivenessDiagnostic] = []
    declared = set(case_names)
    resolved: set[str] = set()
    positional: List[str] = []
    has_default = False

    for position, arg in enumerate(arguments):
        if arg.is_named:
            name = arg.name
            if name != DEFAULT_HANDLER and name not in declared:
                diagnostics.append(ExhaustivenessDiagnostic(
                    RuleId.UNKNOWN_CASE, arg.span or location, case_names=(f"'{name}'",)))
                continue
        elif position < len(case_names):
            name = case_names[position]
            positional.append(name)
        else:
            diagnostics.append(ExhaustivenessDiagnostic(
                RuleId.UNKNOWN_CASE, arg.span or location, case_names=(f"at position {position}",)))
            continue

        if name == DEFAULT_HANDLER:
            if has_default:
                diagnostics.append(ExhaustivenessDiagnostic(
                    RuleId.DUPLICATE_HANDLER, arg.span or location, case_names=(DEFAULT_HANDLER,)))
            has_default = True
        elif name in resolved:
            diagnostics.append(ExhaustivenessDiagnostic(
                RuleId.DUPLICATE_HANDLER, arg.span or location, case_names=(name,)))
        else:
            resolved.add(name)

    missing = tuple(name for name in case_names if name not in resolved)
    if missing and not has_default:
        diagnostics.append(ExhaustivenessDiagnostic(RuleId.NON_EXHAUSTIVE, location, missing_case_names=missing))
    elif not missing and has_default:
        diagnostics.append(ExhaustivenessDiagnostic(RuleId.REDUNDANT_DEFAULT, location))

    if positional:
        diagnostics.append(ExhaustivenessDiagnostic(
            RuleId.PREFER_NAMED_BINDING, location, case_names=tuple(positional)))

    return diagnostics


def check(definition: UnionDefinition, call: CallSite) -> List[ExhaustivenessDiagnostic]:
    return check_call_site(definition.case_names, call.arguments, call.span)


def report_diagnostics(reporter: Reporter, union_name: str,
                       diagnostics: Iterable[ExhaustivenessDiagnostic]) -> None:
    """Forward call-site findings to the reporter."""
    for diag in diagnostics:
        er.emit(reporter, er.ERR[diag.rule_id.code], diag.location, **diag.format_kwargs(union_name))

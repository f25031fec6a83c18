"""Declaration file analysis: parse, build, plan and check."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from sumlayout.backend.sizing import TypeSizing
from sumlayout.compiler.config import SumLayoutConfig
from sumlayout.internals import errors as er
from sumlayout.internals.parser import parse_source
from sumlayout.internals.report import Reporter
from sumlayout.semantics.declarations import DeclarationUnit, build_declarations
from sumlayout.semantics.exhaustiveness import check, report_diagnostics
from sumlayout.semantics.planner import PlanCache, StoragePlan

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    reporter: Reporter
    unit: Optional[DeclarationUnit] = None
    plans: Dict[str, StoragePlan] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return self.reporter.exit_code()


def analyze_source(src: str, filename: str = "<input>",
                   config: Optional[SumLayoutConfig] = None) -> PipelineResult:
    """Run every stage over one declaration file.

    Returns:
        The result; diagnostics are collected in ``result.reporter``.
    """
    config = config or SumLayoutConfig()
    reporter = Reporter(source=src, filename=filename)
    result = PipelineResult(reporter)

    tree = parse_source(src, reporter)
    if tree is None:
        return result

    unit = build_declarations(tree, reporter, config.strategy)
    result.unit = unit

    cache = PlanCache(TypeSizing(config.pointer_size))
    for name, definition in unit.unions.items():
        span = unit.union_spans.get(name)
        try:
            plan = cache.get(definition)
        except er.PlanningError as e:
            er.emit(reporter, er.ERR[e.code], span, **e.params)
            continue
        block = plan.overlapping_block
        for shortfall in plan.shortfalls:
            er.emit(reporter, er.ERR.SW1201, span, union=name, case=shortfall.case_name,
                    type=shortfall.type_name, required=shortfall.required, available=block.capacity)
        result.plans[name] = plan

    for call in unit.call_sites:
        definition = unit.unions[call.union_name]
        report_diagnostics(reporter, definition.name, check(definition, call))

    logger.info("%s: %d plan(s), %d call site(s), %d diagnostic(s)",
                filename, len(result.plans), len(unit.call_sites), len(reporter.items))
    return result


def analyze_file(path: Path, config: Optional[SumLayoutConfig] = None) -> PipelineResult:
    src = path.read_text(encoding="utf-8")
    return analyze_source(src, str(path), config)

"""CLI entry point and argument parsing."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sumlayout.internals.version import print_banner


def print_plan_info(plan_path: Path) -> int:
    """Print the plans stored in a .slplan artifact.

    Returns:
        0 on success, 2 on error.
    """
    from sumlayout.backend.plan_format import PlanFormat
    from sumlayout.internals.errors import PlanFormatError

    if not plan_path.exists():
        print(f"error: file not found: {plan_path}", file=sys.stderr)
        return 2

    try:
        plans = PlanFormat.read(plan_path)
    except PlanFormatError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    print(f"Plans ({len(plans)}):")
    for plan in plans:
        uniform = " (uniform)" if plan.uniform else ""
        print(f"  union {plan.union_name}{uniform}:")
        for field_id, spec in enumerate(plan.fields):
            users = [str(i) for i, f in enumerate(plan.per_case_field) if f == field_id]
            print(f"    field {field_id}: {spec}  <- case(s) {', '.join(users)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point: analyze one declaration file."""
    ap = argparse.ArgumentParser(prog="sumlayout", description="Tagged union storage layout planner")

    ap.add_argument("source", nargs="?", help="Path to declaration file (.sum)")
    ap.add_argument("--version", action="store_true", help="Show version and exit")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log planning decisions")
    ap.add_argument("--log-file", metavar="PATH", help="Also write a debug log to PATH")
    ap.add_argument("--no-color", action="store_true", help="Disable colored diagnostics")
    ap.add_argument("--dump-plan", action="store_true", help="Print the storage plan of every union")
    ap.add_argument("--dump-ll", action="store_true",
                    help="Print the LLVM struct type of every non-generic union")
    ap.add_argument("--emit-plan", metavar="OUT", help="Write all plans to a .slplan artifact")
    ap.add_argument("--plan-info", metavar="FILE", help="Display the plans stored in a .slplan file")
    args = ap.parse_args(argv)

    if args.version:
        print_banner()
        return 0

    if args.plan_info:
        return print_plan_info(Path(args.plan_info))

    if not args.source:
        print("error: source file required", file=sys.stderr)
        return 2

    from sumlayout.compiler.config import load_config
    from sumlayout.compiler.pipeline import analyze_source
    from sumlayout.internals.errors import ConfigError
    from sumlayout.internals.log import LoggerSetup

    try:
        config = load_config()
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    LoggerSetup.initialize(
        verbose=args.verbose,
        log_file=Path(args.log_file) if args.log_file else None,
        level=config.log_level,
    )

    src_path = Path(args.source).resolve()
    try:
        src = src_path.read_text(encoding="utf-8")
    except OSError as e:
        print(f"error: cannot read {src_path}: {e}", file=sys.stderr)
        return 2

    result = analyze_source(src, str(src_path), config)
    result.reporter.print(use_color=False if args.no_color else config.use_color)
    if len(result.reporter):
        print(f"{src_path.name}: {result.reporter.summary()}", file=sys.stderr)

    if args.dump_plan and result.unit is not None:
        for name, plan in result.plans.items():
            print("\n".join(plan.describe(result.unit.unions[name])))

    if args.dump_ll and result.unit is not None:
        from sumlayout.backend.llvm_layout import LayoutLowering, build_module
        lowering = LayoutLowering(config.tag_bits, config.pointer_size)
        lowered = {
            name: lowering.lower(plan, result.unit.unions[name])
            for name, plan in result.plans.items()
            if not result.unit.unions[name].is_generic
        }
        print(build_module(lowered, src_path.stem))

    if args.emit_plan:
        if result.reporter.has_errors:
            print("error: plans not written because of errors", file=sys.stderr)
            return 2
        from sumlayout.backend.plan_format import PlanFormat
        PlanFormat.write(Path(args.emit_plan), result.plans.values())
        print(f"wrote {len(result.plans)} plan(s) to {args.emit_plan}")

    return result.exit_code


if __name__ == "__main__":
    raise SystemExit(main())

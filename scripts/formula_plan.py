#!/usr/bin/env python3
"""
Inspect, evaluate and approve formula plan documents.

Usage:
    python scripts/formula_plan.py validate PLAN
    python scripts/formula_plan.py evaluate PLAN --bindings FILE [--records FILE] [--trace]
    python scripts/formula_plan.py order PLAN
    python scripts/formula_plan.py approve PLAN

PLAN is a path to a .yaml/.yml/.json plan document, or the name of a plan
under payroll_config/plans/.

``--bindings`` is a YAML/JSON mapping of variable name -> value.
``--records`` is a YAML/JSON mapping with optional ``employee``, ``sales``
and ``transactions`` keys; variable values are read from it by each
variable's ``path``. Explicit bindings win over records.

``approve`` writes the plan's fingerprint to ``<plan file>.approved``;
afterwards any edit to the plan makes ``load_formula_plan`` raise
ConfigIntegrityError until the plan is approved again.

Exit codes: 0 on success, 1 on validation or evaluation failure.
"""

import argparse
import logging
import sys
from pathlib import Path

import yaml

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from payroll_config import ConfigIntegrityError, find_plan_file, load_formula_plan
from payroll_config.integrity import compute_plan_fingerprint, write_fingerprint_pin
from payroll_config.loader import load_plan
from payroll_engines.bindings import BindingSources, build_bindings
from payroll_engines.formula.dependency import dependency_levels
from payroll_engines.formula.evaluator import evaluate_plan
from payroll_engines.formula.operators import render_operation
from payroll_engines.formula.validator import validate_formula_plan
from payroll_kernel.exceptions import BindingValueError, FormulaError, FormulaEvaluationError
from payroll_kernel.logging_config import configure_logging


def cmd_validate(args: argparse.Namespace) -> int:
    plan = load_plan(find_plan_file(args.plan, args.plans_dir))
    result = validate_formula_plan(plan)

    for issue in result.errors:
        print(f"  ERROR [{issue.code}] {issue.message}")
    for issue in result.warnings:
        print(f"  WARNING [{issue.code}] {issue.message}")

    if not result.is_valid:
        print(f"INVALID: {len(result.errors)} error(s), {len(result.warnings)} warning(s)")
        return 1
    print(f"OK: {len(plan.steps)} step(s), {len(result.warnings)} warning(s)")
    return 0


def cmd_evaluate(args: argparse.Namespace) -> int:
    plan = load_formula_plan(args.plan, args.plans_dir)

    records = _read_mapping(args.records) if args.records else {}
    sources = BindingSources(
        employee=records.get("employee") or {},
        sales=records.get("sales") or {},
        transactions=records.get("transactions") or {},
    )
    overrides = _read_mapping(args.bindings) if args.bindings else {}
    bindings = build_bindings(plan, sources, overrides=overrides)

    try:
        result = evaluate_plan(plan=plan, bindings=bindings)
    except FormulaEvaluationError as exc:
        print(f"FAILED [{exc.code}] {exc}")
        return 1

    if args.trace:
        for trace in result.steps:
            inputs = ", ".join(f"{k}={v}" for k, v in trace.inputs.items())
            label = trace.result_name or "-"
            print(f"  {trace.step_id:<20} {label:<20} = {trace.value}    ({inputs})")
    print(f"{result.output_variable} = {result.value}")
    return 0


def cmd_order(args: argparse.Namespace) -> int:
    plan = load_plan(find_plan_file(args.plan, args.plans_dir))
    steps = {step.id: step for step in plan.steps}
    for step_id, depth in dependency_levels(plan.steps).items():
        step = steps[step_id]
        target = step.result or "-"
        print(f"  [{depth}] {step_id:<20} {target:<20} <- {render_operation(step.operation)}")
    return 0


def cmd_approve(args: argparse.Namespace) -> int:
    path = find_plan_file(args.plan, args.plans_dir)
    plan = load_plan(path)

    result = validate_formula_plan(plan)
    if not result.is_valid:
        print("VALIDATION FAILED:")
        for issue in result.errors:
            print(f"  ERROR [{issue.code}] {issue.message}")
        return 1
    for issue in result.warnings:
        print(f"  WARNING [{issue.code}] {issue.message}")

    fingerprint = compute_plan_fingerprint(plan)
    pin_path = write_fingerprint_pin(path, fingerprint)
    print(f"  fingerprint: {fingerprint}")
    print(f"Wrote {pin_path}")
    return 0


def _read_mapping(path: str) -> dict:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inspect, evaluate and approve formula plans.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--plans-dir",
        type=Path,
        default=None,
        help="Directory searched for named plans (default: payroll_config/plans)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Emit structured logs to stderr"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_validate = sub.add_parser("validate", help="Report validation errors and warnings")
    p_validate.add_argument("plan")
    p_validate.set_defaults(func=cmd_validate)

    p_evaluate = sub.add_parser("evaluate", help="Evaluate a plan against bindings")
    p_evaluate.add_argument("plan")
    p_evaluate.add_argument("--bindings", help="YAML/JSON mapping of variable -> value")
    p_evaluate.add_argument("--records", help="YAML/JSON employee/sales/transactions records")
    p_evaluate.add_argument("--trace", action="store_true", help="Print every step's value")
    p_evaluate.set_defaults(func=cmd_evaluate)

    p_order = sub.add_parser("order", help="Print steps in evaluation order")
    p_order.add_argument("plan")
    p_order.set_defaults(func=cmd_order)

    p_approve = sub.add_parser("approve", help="Pin the plan's current fingerprint")
    p_approve.add_argument("plan")
    p_approve.set_defaults(func=cmd_approve)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=logging.INFO if args.verbose else logging.WARNING)

    try:
        return args.func(args)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except (FormulaError, BindingValueError, ConfigIntegrityError) as exc:
        print(f"Error [{exc.code}]: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""
Formula Plan Evaluator.

Pure functions with deterministic behavior. No I/O.

Usage:
    from payroll_engines.formula import op, run
    from payroll_engines.formula.types import CalculationStep, FormulaPlan, Variable

    plan = FormulaPlan(
        variables=(Variable("x"),),
        steps=(CalculationStep("s1", "Double", op("multiply", "x", 2), result="doubled"),),
        output_variable="doubled",
    )
    run(plan, {"x": 10})   # Decimal("20")

Evaluation strategy:
    - The plan is re-validated on every call; a plan with errors raises
      ``InvalidFormulaPlanError`` and is never evaluated.
    - Every step is computed exactly once, in topological order (ties in
      authored order), so each step sees its dependencies' results.
    - Parameters are evaluated eagerly left to right, except ``if``, which
      evaluates its condition and then only the selected branch.
    - Plans are validated before the traced evaluation starts, so input
      fingerprinting and the recursive tree walk only see bounded depth.
    - The first evaluation error stops the run. A corrupt intermediate
      value must never feed later steps.
"""

from __future__ import annotations

import time
from collections.abc import Mapping

from payroll_engines.formula.dependency import ordered_references, topological_order
from payroll_engines.formula.operators import apply_operator, require_boolean
from payroll_engines.formula.registry import VariableRegistry
from payroll_engines.formula.types import (
    CalculationStep,
    FormulaEvaluationResult,
    FormulaPlan,
    Literal,
    NameRef,
    Operand,
    Operation,
    OperatorTag,
    StepTrace,
    Value,
)
from payroll_engines.formula.validator import validate_formula_plan
from payroll_engines.tracer import traced_engine
from payroll_kernel.exceptions import FormulaEvaluationError, InvalidFormulaPlanError
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.formula.evaluator")


def evaluate_operation(
    operation: Operation,
    registry: VariableRegistry,
    results: Mapping[str, Value],
    bindings: Mapping[str, object],
    step_id: str | None = None,
) -> Value:
    """Evaluate one expression tree against computed results and bindings.

    Raises:
        FormulaEvaluationError: unresolved name, division by zero, an
            operand of the wrong kind or Decimal overflow. Always tagged with
            ``step_id``.

    Recurses once per nesting level; callers pass trees that passed
    validation, which caps depth at ``MAX_NESTING_DEPTH``.
    """
    tag = operation.type

    if tag == OperatorTag.IF:
        condition_param, when_true, when_false = operation.parameters
        condition = require_boolean(
            _evaluate_operand(condition_param, tag, registry, results, bindings, step_id),
            tag.value,
            step_id,
        )
        selected = when_true if condition else when_false
        return _evaluate_operand(selected, tag, registry, results, bindings, step_id)

    values = [
        _evaluate_operand(param, tag, registry, results, bindings, step_id)
        for param in operation.parameters
    ]
    return apply_operator(tag, values, step_id)


def _evaluate_operand(
    param: Operand,
    tag: OperatorTag,
    registry: VariableRegistry,
    results: Mapping[str, Value],
    bindings: Mapping[str, object],
    step_id: str | None,
) -> Value:
    if isinstance(param, Literal):
        return param.value
    if isinstance(param, NameRef):
        return registry.resolve(param.name, results, bindings, step_id=step_id, operator=tag.value)
    return evaluate_operation(param.operation, registry, results, bindings, step_id)


def evaluate_plan(
    plan: FormulaPlan,
    bindings: Mapping[str, object] | None = None,
) -> FormulaEvaluationResult:
    """
    Evaluate every step of a plan and return the output with a step trace.

    Args:
        plan: The formula plan. Validated before evaluation.
        bindings: Variable name -> number or boolean for this run. Not
            mutated.

    Returns:
        FormulaEvaluationResult with the output value and one StepTrace per
        step in evaluation order.

    Raises:
        InvalidFormulaPlanError: the plan has validation errors.
        FormulaEvaluationError: a step failed; carries step id and operator.
    """
    bindings = bindings or {}
    t0 = time.monotonic()

    validation = validate_formula_plan(plan)
    if not validation.is_valid:
        logger.warning(
            "formula_plan_rejected",
            extra={
                "error_count": len(validation.errors),
                "error_codes": sorted(validation.codes()),
            },
        )
        raise InvalidFormulaPlanError(validation.errors)

    return _evaluate_steps(plan=plan, bindings=bindings, started=t0)


@traced_engine("formula_plan", "1.0", fingerprint_fields=("plan", "bindings"))
def _evaluate_steps(
    plan: FormulaPlan,
    bindings: Mapping[str, object],
    started: float,
) -> FormulaEvaluationResult:
    # Only reached for valid plans, so tree depth is bounded.
    registry = VariableRegistry(plan.variables)
    steps_by_id = {step.id: step for step in plan.steps}
    results: dict[str, Value] = {}
    traces: list[StepTrace] = []

    for step_id in topological_order(plan.steps):
        step = steps_by_id[step_id]
        step_t0 = time.monotonic()
        try:
            value = evaluate_operation(step.operation, registry, results, bindings, step.id)
        except FormulaEvaluationError as exc:
            logger.warning(
                "formula_evaluation_failed",
                extra={
                    "step_id": step.id,
                    "operator": exc.operator,
                    "error_code": exc.code,
                    "error": exc.detail,
                },
            )
            raise

        if step.result:
            results[step.result] = value
        duration_ms = round((time.monotonic() - step_t0) * 1000, 3)
        traces.append(
            StepTrace(
                step_id=step.id,
                step_name=step.name,
                result_name=step.result,
                value=value,
                inputs=_collect_inputs(step, registry, results, bindings),
                duration_ms=duration_ms,
            )
        )
        logger.debug(
            "formula_step_evaluated",
            extra={"step_id": step.id, "result": step.result, "value": value},
        )

    output = results[plan.output_variable]
    duration_ms = round((time.monotonic() - started) * 1000, 3)
    logger.info(
        "formula_plan_evaluated",
        extra={
            "output_variable": plan.output_variable,
            "step_count": len(traces),
            "duration_ms": duration_ms,
        },
    )
    return FormulaEvaluationResult(
        output_variable=plan.output_variable,
        value=output,
        steps=tuple(traces),
        duration_ms=duration_ms,
    )


def run(plan: FormulaPlan, bindings: Mapping[str, object] | None = None) -> Value:
    """Evaluate a plan and return only the value of its output variable."""
    return evaluate_plan(plan=plan, bindings=bindings).value


def _collect_inputs(
    step: CalculationStep,
    registry: VariableRegistry,
    results: Mapping[str, Value],
    bindings: Mapping[str, object],
) -> dict[str, Value]:
    """Values of the names a step referenced, for display in step traces.

    Names only used in an untaken ``if`` branch may have no value; they are
    left out of the trace rather than failing a step that succeeded.
    """
    inputs: dict[str, Value] = {}
    for name in ordered_references(step):
        if name == step.result:
            continue
        try:
            inputs[name] = registry.resolve(name, results, bindings, step_id=step.id)
        except FormulaEvaluationError:
            continue
    return inputs

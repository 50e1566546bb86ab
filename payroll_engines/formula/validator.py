"""
Formula Plan Validator (``payroll_engines.formula.validator``).

Responsibility
--------------
Checks a ``FormulaPlan`` for structural defects before it is saved or
evaluated, collecting every problem at once so an editor can show them
inline.

Architecture position
---------------------
**Engine layer** -- pure, no I/O. Called by the evaluator (which
re-validates before every run), the plan store (before every save), and the
configuration loader.

Checks
------
Errors (block save and evaluation):

* ``EMPTY_PLAN`` -- the plan has no steps.
* ``DUPLICATE_STEP_ID`` -- two steps share an id.
* ``DUPLICATE_VARIABLE`` -- two variables share a name.
* ``MISSING_VARIABLE_PATH`` -- a non-constant variable has no ``path``.
* ``DUPLICATE_RESULT`` -- two steps publish the same result name.
* ``UNKNOWN_REFERENCE`` -- a name is neither a variable nor a step result;
  reported against the referencing step.
* ``ARITY_MISMATCH`` -- wrong parameter count, nested operations included.
* ``DIVISION_BY_ZERO`` -- a literal zero divisor.
* ``NESTING_TOO_DEEP`` -- operations nested more than ``MAX_NESTING_DEPTH``
  levels.
* ``MISSING_OUTPUT`` -- the output variable is not produced by any step.
* ``CIRCULAR_DEPENDENCY`` -- reported against every step in a cycle.

Warnings (never block): ``UNUSED_VARIABLE``, ``POTENTIAL_DIVISION_BY_ZERO``,
``RESULT_SHADOWS_VARIABLE``, ``UNREACHABLE_STEP``.

Failure modes
-------------
None. Validation is total: it returns a result for any well-typed plan,
cyclic or not, and never raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from payroll_engines.formula.cycles import cyclic_nodes, find_cycles
from payroll_engines.formula.dependency import (
    MAX_NESTING_DEPTH,
    build_step_graph,
    extract_references,
    iter_operations,
    nesting_depth,
    required_steps,
)
from payroll_engines.formula.operators import arity_error
from payroll_engines.formula.types import (
    FormulaPlan,
    Literal,
    NameRef,
    OperatorTag,
    VariableSource,
)
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.formula.validator")


class IssueScope(str, Enum):
    """What a validation issue is attached to."""

    STEP = "step"
    VARIABLE = "variable"
    PLAN = "plan"


@dataclass(frozen=True)
class FormulaIssue:
    """A validation error or warning found in a formula plan."""

    code: str
    message: str
    scope: IssueScope
    step_id: str | None = None
    variable_name: str | None = None

    @property
    def is_plan_level(self) -> bool:
        return self.scope == IssueScope.PLAN


@dataclass
class FormulaValidationResult:
    """
    Result of formula plan validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings never block saving or evaluation.
    """

    errors: list[FormulaIssue] = field(default_factory=list)
    warnings: list[FormulaIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(
        self,
        code: str,
        message: str,
        scope: IssueScope,
        step_id: str | None = None,
        variable_name: str | None = None,
    ) -> None:
        self.errors.append(FormulaIssue(code, message, scope, step_id, variable_name))

    def add_warning(
        self,
        code: str,
        message: str,
        scope: IssueScope,
        step_id: str | None = None,
        variable_name: str | None = None,
    ) -> None:
        self.warnings.append(FormulaIssue(code, message, scope, step_id, variable_name))

    def errors_for_step(self, step_id: str) -> list[FormulaIssue]:
        return [e for e in self.errors if e.step_id == step_id]

    def codes(self) -> set[str]:
        return {e.code for e in self.errors}


def validate_formula_plan(plan: FormulaPlan) -> FormulaValidationResult:
    """
    Validate a formula plan.

    Postconditions:
        - Returns a ``FormulaValidationResult`` with every error and warning.
        - A plan with errors MUST NOT be saved or evaluated.
    """
    result = FormulaValidationResult()

    _validate_not_empty(plan, result)
    _validate_step_ids(plan, result)
    _validate_variables(plan, result)
    _validate_results(plan, result)
    _validate_references(plan, result)
    _validate_operations(plan, result)
    _validate_nesting(plan, result)
    _validate_output(plan, result)
    _validate_cycles(plan, result)
    _check_unused_variables(plan, result)
    _check_unreachable_steps(plan, result)

    logger.debug(
        "formula_plan_validated",
        extra={
            "step_count": len(plan.steps),
            "variable_count": len(plan.variables),
            "error_count": len(result.errors),
            "warning_count": len(result.warnings),
        },
    )
    return result


def _validate_not_empty(plan: FormulaPlan, result: FormulaValidationResult) -> None:
    if not plan.steps:
        result.add_error(
            "EMPTY_PLAN", "Formula must have at least one step", IssueScope.PLAN
        )


def _validate_step_ids(plan: FormulaPlan, result: FormulaValidationResult) -> None:
    seen: set[str] = set()
    for step in plan.steps:
        if step.id in seen:
            result.add_error(
                "DUPLICATE_STEP_ID",
                f"Step id '{step.id}' is used more than once",
                IssueScope.STEP,
                step_id=step.id,
            )
        seen.add(step.id)


def _validate_variables(plan: FormulaPlan, result: FormulaValidationResult) -> None:
    """Check variable name uniqueness and source paths."""
    seen: set[str] = set()
    for variable in plan.variables:
        if variable.name in seen:
            result.add_error(
                "DUPLICATE_VARIABLE",
                f"Variable '{variable.name}' is declared more than once",
                IssueScope.VARIABLE,
                variable_name=variable.name,
            )
        seen.add(variable.name)

        if variable.source != VariableSource.CONSTANT and not variable.path:
            result.add_error(
                "MISSING_VARIABLE_PATH",
                f"Variable '{variable.name}' with source '{variable.source.value}' "
                f"needs a path",
                IssueScope.VARIABLE,
                variable_name=variable.name,
            )


def _validate_results(plan: FormulaPlan, result: FormulaValidationResult) -> None:
    """Check that published result names are unique."""
    variable_names = {v.name for v in plan.variables}
    producers: dict[str, str] = {}
    for step in plan.steps:
        if not step.result:
            continue
        if step.result in producers:
            result.add_error(
                "DUPLICATE_RESULT",
                f"Result '{step.result}' is already produced by step "
                f"'{producers[step.result]}'",
                IssueScope.STEP,
                step_id=step.id,
                variable_name=step.result,
            )
            continue
        producers[step.result] = step.id
        if step.result in variable_names:
            result.add_warning(
                "RESULT_SHADOWS_VARIABLE",
                f"Result '{step.result}' has the same name as a variable; "
                f"the step result takes precedence",
                IssueScope.STEP,
                step_id=step.id,
                variable_name=step.result,
            )


def _validate_references(plan: FormulaPlan, result: FormulaValidationResult) -> None:
    """Every referenced name must be a variable or some step's result."""
    known = {v.name for v in plan.variables} | {s.result for s in plan.steps if s.result}
    for step in plan.steps:
        for name in sorted(extract_references(step)):
            if name not in known:
                result.add_error(
                    "UNKNOWN_REFERENCE",
                    f"Step '{step.id}' references unknown name '{name}'",
                    IssueScope.STEP,
                    step_id=step.id,
                    variable_name=name,
                )


def _validate_operations(plan: FormulaPlan, result: FormulaValidationResult) -> None:
    """Check arity and divisors of every operation, nested ones included."""
    for step in plan.steps:
        for operation in iter_operations(step.operation):
            message = arity_error(operation)
            if message is not None:
                result.add_error(
                    "ARITY_MISMATCH",
                    f"Step '{step.id}': {message}",
                    IssueScope.STEP,
                    step_id=step.id,
                )
                continue

            if operation.type == OperatorTag.DIVIDE:
                divisor = operation.parameters[1]
                if isinstance(divisor, Literal) and divisor.value == 0:
                    result.add_error(
                        "DIVISION_BY_ZERO",
                        f"Step '{step.id}' divides by zero",
                        IssueScope.STEP,
                        step_id=step.id,
                    )
                elif isinstance(divisor, NameRef):
                    result.add_warning(
                        "POTENTIAL_DIVISION_BY_ZERO",
                        f"Step '{step.id}' divides by '{divisor.name}', "
                        f"which fails evaluation if it is zero",
                        IssueScope.STEP,
                        step_id=step.id,
                        variable_name=divisor.name,
                    )


def _validate_nesting(plan: FormulaPlan, result: FormulaValidationResult) -> None:
    for step in plan.steps:
        depth = nesting_depth(step.operation)
        if depth > MAX_NESTING_DEPTH:
            result.add_error(
                "NESTING_TOO_DEEP",
                f"Step '{step.id}' nests operations {depth} levels deep; "
                f"the limit is {MAX_NESTING_DEPTH}",
                IssueScope.STEP,
                step_id=step.id,
            )


def _validate_output(plan: FormulaPlan, result: FormulaValidationResult) -> None:
    if not plan.output_variable:
        result.add_error(
            "MISSING_OUTPUT",
            "Formula must have an output variable",
            IssueScope.PLAN,
        )
        return
    if not any(step.result == plan.output_variable for step in plan.steps):
        result.add_error(
            "MISSING_OUTPUT",
            f"Output variable '{plan.output_variable}' is not produced by any step",
            IssueScope.PLAN,
            variable_name=plan.output_variable,
        )


def _validate_cycles(plan: FormulaPlan, result: FormulaValidationResult) -> None:
    """Report every step that takes part in a circular dependency."""
    graph = build_step_graph(plan.steps)
    reported: set[str] = set()

    for cycle in find_cycles(graph):
        rendered = " -> ".join(cycle)
        for step_id in dict.fromkeys(cycle):
            if step_id in reported:
                continue
            reported.add(step_id)
            result.add_error(
                "CIRCULAR_DEPENDENCY",
                f"Step '{step_id}' is part of a circular dependency: {rendered}",
                IssueScope.STEP,
                step_id=step_id,
            )

    if not reported:
        return

    # DFS reports one cycle per back-edge; catch members it did not walk
    cyclic = cyclic_nodes(graph)
    for step_id in graph:
        if step_id in reported or step_id not in cyclic:
            continue
        reported.add(step_id)
        result.add_error(
            "CIRCULAR_DEPENDENCY",
            f"Step '{step_id}' depends on its own result through other steps",
            IssueScope.STEP,
            step_id=step_id,
        )


def _check_unused_variables(plan: FormulaPlan, result: FormulaValidationResult) -> None:
    used: set[str] = set()
    for step in plan.steps:
        used |= extract_references(step)
    for variable in plan.variables:
        if variable.name not in used:
            result.add_warning(
                "UNUSED_VARIABLE",
                f"Variable '{variable.name}' is not used in any formula step",
                IssueScope.VARIABLE,
                variable_name=variable.name,
            )


def _check_unreachable_steps(plan: FormulaPlan, result: FormulaValidationResult) -> None:
    needed = required_steps(plan.steps, plan.output_variable)
    if not needed:
        return
    for step in plan.steps:
        if step.id not in needed:
            result.add_warning(
                "UNREACHABLE_STEP",
                f"Step '{step.id}' does not contribute to output "
                f"'{plan.output_variable}'",
                IssueScope.STEP,
                step_id=step.id,
            )

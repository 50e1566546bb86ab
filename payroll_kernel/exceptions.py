"""
Typed Exception Hierarchy for the Payroll Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A formula that silently produces a wrong number pays someone the wrong
salary. Callers must be able to tell "this employee's input was missing"
apart from "this plan is broken" without parsing message strings:

    try:
        total = run(plan, bindings)
    except UnresolvedNameError as e:
        report_missing_input(e.name, e.step_id)
    except FormulaEvaluationError as e:
        report_failure(code=e.code, step=e.step_id, operator=e.operator)

Every exception has a ``code`` class attribute and carries its context as
attributes, not only inside the message.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from PayrollKernelError:

    PayrollKernelError (base)
    |
    +-- FormulaError
    |   +-- PlanDocumentError
    |   +-- InvalidFormulaPlanError
    |   +-- CircularDependencyError
    |
    +-- FormulaEvaluationError
    |   +-- UnresolvedNameError
    |   +-- DivisionByZeroError
    |   +-- OperandTypeError
    |   +-- NumericOverflowError
    |
    +-- BindingValueError
    |
    +-- PlanStoreError
        +-- FormulaPlanNotFoundError
        +-- PlanVersionConflictError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                     | When Raised
----------------|--------------------------|-----------------------------------------
Formula         | PLAN_DOCUMENT_INVALID    | Plan document is structurally malformed
                | FORMULA_PLAN_INVALID     | Plan failed validation before evaluation
                | CIRCULAR_DEPENDENCY      | Ordering requested for a cyclic plan
----------------|--------------------------|-----------------------------------------
Evaluation      | UNRESOLVED_NAME          | No step result, binding or default
                | DIVISION_BY_ZERO         | divide() with a zero divisor
                | OPERAND_TYPE_MISMATCH    | Boolean where number expected, etc.
                | NUMERIC_OVERFLOW         | Arithmetic left the representable range
----------------|--------------------------|-----------------------------------------
Bindings        | BINDING_VALUE_INVALID    | Source record value cannot be summed
----------------|--------------------------|-----------------------------------------
Plan store      | FORMULA_PLAN_NOT_FOUND   | No stored plan for key/version
                | PLAN_VERSION_CONFLICT    | Stale expected_version on save

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Validation problems are DATA, not exceptions. ``validate_formula_plan``
   returns every issue at once so an editor can show them inline.
   ``InvalidFormulaPlanError`` is only raised when someone tries to
   evaluate or save a plan that still has errors.

2. Evaluation errors are fail-fast for one computation. In a payroll batch
   each employee fails independently:

    for unit in units:
        try:
            value = run(plan, unit.bindings)
        except FormulaEvaluationError as e:
            failed.append((unit.key, e.code, e.step_id))

3. NEVER substitute zero for a failed computation.
"""

from __future__ import annotations

from typing import Any, Sequence


class PayrollKernelError(Exception):
    """
    Base exception for all payroll kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PAYROLL_KERNEL_ERROR"


# Formula definition exceptions


class FormulaError(PayrollKernelError):
    """Base exception for formula plan definition errors."""

    code: str = "FORMULA_ERROR"


class PlanDocumentError(FormulaError):
    """
    A plan document cannot be turned into a FormulaPlan.

    Raised before validation: missing top-level keys, unknown operator
    tags, operand values of an unsupported kind.
    """

    code: str = "PLAN_DOCUMENT_INVALID"

    def __init__(self, message: str, location: str = ""):
        self.location = location
        where = f" at {location}" if location else ""
        super().__init__(f"Invalid formula plan document{where}: {message}")


class InvalidFormulaPlanError(FormulaError):
    """A plan with validation errors was submitted for evaluation or storage."""

    code: str = "FORMULA_PLAN_INVALID"

    def __init__(self, issues: Sequence[Any]):
        self.issues = list(issues)
        summary = "; ".join(
            getattr(issue, "message", str(issue)) for issue in self.issues[:3]
        )
        more = len(self.issues) - 3
        if more > 0:
            summary += f" (+{more} more)"
        super().__init__(
            f"Formula plan has {len(self.issues)} validation error(s): {summary}"
        )


class CircularDependencyError(FormulaError):
    """Steps cannot be ordered because their results reference each other."""

    code: str = "CIRCULAR_DEPENDENCY"

    def __init__(self, cycles: Sequence[Sequence[str]]):
        self.cycles = [list(c) for c in cycles]
        rendered = ", ".join(" -> ".join(c) for c in self.cycles)
        super().__init__(f"Circular dependency between steps: {rendered}")


# Evaluation exceptions


class FormulaEvaluationError(PayrollKernelError):
    """
    Base exception for a failed formula evaluation.

    Always identifies the step being computed and, when known, the
    operator that failed.
    """

    code: str = "FORMULA_EVALUATION_ERROR"

    def __init__(
        self,
        message: str,
        step_id: str | None = None,
        operator: str | None = None,
    ):
        self.step_id = step_id
        self.operator = operator
        self.detail = message
        context = []
        if step_id is not None:
            context.append(f"step '{step_id}'")
        if operator is not None:
            context.append(f"operator '{operator}'")
        prefix = f"[{', '.join(context)}] " if context else ""
        super().__init__(f"{prefix}{message}")


class UnresolvedNameError(FormulaEvaluationError):
    """A name has no step result, no binding and no default value."""

    code: str = "UNRESOLVED_NAME"

    def __init__(
        self,
        name: str,
        step_id: str | None = None,
        operator: str | None = None,
    ):
        self.name = name
        super().__init__(
            f"'{name}' has no computed result, binding or default value",
            step_id=step_id,
            operator=operator,
        )


class DivisionByZeroError(FormulaEvaluationError):
    """divide() was applied with a zero divisor."""

    code: str = "DIVISION_BY_ZERO"

    def __init__(self, step_id: str | None = None, operator: str | None = "divide"):
        super().__init__("Division by zero", step_id=step_id, operator=operator)


class OperandTypeError(FormulaEvaluationError):
    """An operand had the wrong kind of value for its operator."""

    code: str = "OPERAND_TYPE_MISMATCH"

    def __init__(
        self,
        expected: str,
        actual: str,
        step_id: str | None = None,
        operator: str | None = None,
    ):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Expected {expected}, got {actual}",
            step_id=step_id,
            operator=operator,
        )


class NumericOverflowError(FormulaEvaluationError):
    """Decimal arithmetic overflowed or produced an invalid result."""

    code: str = "NUMERIC_OVERFLOW"

    def __init__(
        self,
        reason: str,
        step_id: str | None = None,
        operator: str | None = None,
    ):
        self.reason = reason
        super().__init__(
            f"Arithmetic outside the representable range ({reason})",
            step_id=step_id,
            operator=operator,
        )


# Binding exceptions


class BindingValueError(PayrollKernelError):
    """A source record holds a value that cannot be used for a variable."""

    code: str = "BINDING_VALUE_INVALID"

    def __init__(self, path: str, value: object, reason: str):
        self.path = path
        self.value = value
        super().__init__(f"Binding '{path}': {reason}: {value!r}")


# Plan store exceptions


class PlanStoreError(PayrollKernelError):
    """Base exception for formula plan storage errors."""

    code: str = "PLAN_STORE_ERROR"


class FormulaPlanNotFoundError(PlanStoreError):
    """No stored formula plan matches the requested key (and version)."""

    code: str = "FORMULA_PLAN_NOT_FOUND"

    def __init__(self, plan_key: str, version: int | None = None):
        self.plan_key = plan_key
        self.version = version
        suffix = f" v{version}" if version is not None else ""
        super().__init__(f"Formula plan not found: {plan_key}{suffix}")


class PlanVersionConflictError(PlanStoreError):
    """Optimistic version check failed: the plan was saved by someone else."""

    code: str = "PLAN_VERSION_CONFLICT"

    def __init__(self, plan_key: str, expected_version: int | None, actual_version: int):
        self.plan_key = plan_key
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Formula plan {plan_key} was modified concurrently: "
            f"expected version {expected_version}, current version {actual_version}"
        )

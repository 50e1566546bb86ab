"""
Operator arity and semantics.

Every operator tag has a minimum parameter count and, for fixed-arity
operators, a maximum equal to it:

    add, multiply                     >= 2   left fold
    subtract, divide, percent         == 2
    round, abs, not                   == 1   (round: halves go up, -2.5 -> -2)
    max, min                          >= 1   (one parameter passes through)
    equal ... lessThanOrEqual         == 2   -> bool
    and, or                           >= 2   -> bool
    if                                == 3   (condition, whenTrue, whenFalse)

Numeric operators reject booleans and logical operators reject numbers;
there is no truthiness coercion. Decimal overflow or an invalid Decimal
operation surfaces as ``NumericOverflowError`` for the step.

``if`` is not applied here: the evaluator handles it so that only the
selected branch is computed.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, DecimalException

from payroll_engines.formula.types import (
    Literal,
    NameRef,
    NestedOperation,
    Operand,
    Operation,
    OperatorTag,
    Value,
)
from payroll_kernel.exceptions import (
    DivisionByZeroError,
    NumericOverflowError,
    OperandTypeError,
)


@dataclass(frozen=True)
class Arity:
    """Parameter count rule. ``maximum`` of None means variadic."""

    minimum: int
    maximum: int | None = None

    @property
    def is_fixed(self) -> bool:
        return self.maximum is not None and self.maximum == self.minimum

    def accepts(self, count: int) -> bool:
        if count < self.minimum:
            return False
        return self.maximum is None or count <= self.maximum

    def describe(self) -> str:
        noun = "parameter" if self.minimum == 1 else "parameters"
        qualifier = "exactly" if self.is_fixed else "at least"
        return f"{qualifier} {self.minimum} {noun}"


ARITY: dict[OperatorTag, Arity] = {
    OperatorTag.ADD: Arity(2),
    OperatorTag.MULTIPLY: Arity(2),
    OperatorTag.SUBTRACT: Arity(2, 2),
    OperatorTag.DIVIDE: Arity(2, 2),
    OperatorTag.PERCENT: Arity(2, 2),
    OperatorTag.ROUND: Arity(1, 1),
    OperatorTag.ABS: Arity(1, 1),
    OperatorTag.MAX: Arity(1),
    OperatorTag.MIN: Arity(1),
    OperatorTag.EQUAL: Arity(2, 2),
    OperatorTag.NOT_EQUAL: Arity(2, 2),
    OperatorTag.GREATER_THAN: Arity(2, 2),
    OperatorTag.LESS_THAN: Arity(2, 2),
    OperatorTag.GREATER_THAN_OR_EQUAL: Arity(2, 2),
    OperatorTag.LESS_THAN_OR_EQUAL: Arity(2, 2),
    OperatorTag.AND: Arity(2),
    OperatorTag.OR: Arity(2),
    OperatorTag.NOT: Arity(1, 1),
    OperatorTag.IF: Arity(3, 3),
}

COMPARISON_OPERATORS: frozenset[OperatorTag] = frozenset({
    OperatorTag.EQUAL,
    OperatorTag.NOT_EQUAL,
    OperatorTag.GREATER_THAN,
    OperatorTag.LESS_THAN,
    OperatorTag.GREATER_THAN_OR_EQUAL,
    OperatorTag.LESS_THAN_OR_EQUAL,
})

LOGICAL_OPERATORS: frozenset[OperatorTag] = frozenset({
    OperatorTag.AND,
    OperatorTag.OR,
    OperatorTag.NOT,
})

HALF = Decimal("0.5")


def arity_of(tag: OperatorTag) -> Arity:
    return ARITY[tag]


def arity_error(operation: Operation) -> str | None:
    """Return a message if the operation's parameter count is wrong."""
    arity = ARITY[operation.type]
    count = len(operation.parameters)
    if arity.accepts(count):
        return None
    return (
        f"Operation '{operation.type.value}' requires {arity.describe()}, "
        f"got {count}"
    )


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def apply_operator(
    tag: OperatorTag,
    values: Sequence[Value],
    step_id: str | None = None,
) -> Value:
    """Apply ``tag`` to already-evaluated parameter values.

    Preconditions:
        ``len(values)`` satisfies the operator's arity (checked by the
        validator before any evaluation).

    Raises:
        DivisionByZeroError: divide() with a zero divisor.
        OperandTypeError: a value has the wrong kind for the operator.
        NumericOverflowError: the Decimal context trapped the result.
        ValueError: ``if`` was passed here instead of to the evaluator.
    """
    try:
        return _apply(tag, values, step_id)
    except DecimalException as exc:
        raise NumericOverflowError(
            type(exc).__name__, step_id=step_id, operator=tag.value
        ) from exc


def _apply(tag: OperatorTag, values: Sequence[Value], step_id: str | None) -> Value:
    name = tag.value

    if tag == OperatorTag.ADD:
        numbers = _numbers(values, name, step_id)
        total = numbers[0]
        for number in numbers[1:]:
            total = total + number
        return total

    if tag == OperatorTag.MULTIPLY:
        numbers = _numbers(values, name, step_id)
        product = numbers[0]
        for number in numbers[1:]:
            product = product * number
        return product

    if tag == OperatorTag.SUBTRACT:
        left, right = _numbers(values, name, step_id)
        return left - right

    if tag == OperatorTag.DIVIDE:
        dividend, divisor = _numbers(values, name, step_id)
        if divisor == 0:
            raise DivisionByZeroError(step_id=step_id, operator=name)
        return dividend / divisor

    if tag == OperatorTag.PERCENT:
        value, percentage = _numbers(values, name, step_id)
        return value * percentage / Decimal(100)

    if tag == OperatorTag.ROUND:
        (value,) = _numbers(values, name, step_id)
        return (value + HALF).to_integral_value(rounding=ROUND_FLOOR)

    if tag == OperatorTag.ABS:
        (value,) = _numbers(values, name, step_id)
        return abs(value)

    if tag == OperatorTag.MAX:
        return max(_numbers(values, name, step_id))

    if tag == OperatorTag.MIN:
        return min(_numbers(values, name, step_id))

    if tag in (OperatorTag.EQUAL, OperatorTag.NOT_EQUAL):
        left, right = values
        if isinstance(left, bool) != isinstance(right, bool):
            raise OperandTypeError(
                "two numbers or two booleans",
                f"{_kind(left)} and {_kind(right)}",
                step_id=step_id,
                operator=name,
            )
        same = left == right
        return same if tag == OperatorTag.EQUAL else not same

    if tag in COMPARISON_OPERATORS:
        left, right = _numbers(values, name, step_id)
        if tag == OperatorTag.GREATER_THAN:
            return left > right
        if tag == OperatorTag.LESS_THAN:
            return left < right
        if tag == OperatorTag.GREATER_THAN_OR_EQUAL:
            return left >= right
        return left <= right

    if tag == OperatorTag.AND:
        return all(_booleans(values, name, step_id))

    if tag == OperatorTag.OR:
        return any(_booleans(values, name, step_id))

    if tag == OperatorTag.NOT:
        (value,) = _booleans(values, name, step_id)
        return not value

    raise ValueError(f"Operator '{name}' must be applied by the evaluator")


def require_boolean(value: Value, operator: str, step_id: str | None) -> bool:
    if not isinstance(value, bool):
        raise OperandTypeError("boolean", _kind(value), step_id=step_id, operator=operator)
    return value


def _numbers(values: Sequence[Value], operator: str, step_id: str | None) -> list[Decimal]:
    numbers: list[Decimal] = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, Decimal):
            raise OperandTypeError("number", _kind(value), step_id=step_id, operator=operator)
        numbers.append(value)
    return numbers


def _booleans(values: Sequence[Value], operator: str, step_id: str | None) -> list[bool]:
    return [require_boolean(value, operator, step_id) for value in values]


def _kind(value: object) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, Decimal):
        return "number"
    return type(value).__name__


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_operand(param: Operand) -> str:
    if isinstance(param, Literal):
        return str(param.value)
    if isinstance(param, NameRef):
        return param.name
    return render_operation(param.operation)


def render_operation(operation: Operation) -> str:
    """Render an operation as ``tag(arg, ...)`` for logs and listings."""
    args = ", ".join(render_operand(p) for p in operation.parameters)
    return f"{operation.type.value}({args})"

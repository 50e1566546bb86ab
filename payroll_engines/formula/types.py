"""
Formula plan value objects.

Pure data, no behavior beyond lookup. A plan is a value: every type here is
a frozen dataclass and every collection is a tuple, so a plan handed to a
payroll batch cannot change underneath it. Edits go through
``payroll_engines.formula.editing`` and produce a new plan.

Operands are a tagged variant::

    Operand = Literal(Decimal) | NameRef(str) | NestedOperation(Operation)

Numbers are ``Decimal`` throughout. Floats are converted through ``str``
so that ``0.1`` in a plan document stays ``Decimal("0.1")``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Union

Value = Union[Decimal, bool]


class VariableSource(str, Enum):
    """Where a variable's value comes from."""

    CONSTANT = "constant"
    EMPLOYEE = "employee"
    SALES = "sales"
    TRANSACTION = "transaction"


class DataType(str, Enum):
    """Declared data type of a variable."""

    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    TEXT = "text"


class OperatorTag(str, Enum):
    """Operators a calculation step may apply."""

    ADD = "add"
    SUBTRACT = "subtract"
    MULTIPLY = "multiply"
    DIVIDE = "divide"
    PERCENT = "percent"
    ROUND = "round"
    ABS = "abs"
    MAX = "max"
    MIN = "min"
    EQUAL = "equal"
    NOT_EQUAL = "notEqual"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    AND = "and"
    OR = "or"
    NOT = "not"
    IF = "if"


@dataclass(frozen=True)
class Variable:
    """
    A named input to a formula plan.

    Attributes:
        name: Unique name within the plan; steps reference it by this name.
        source: Classification of where the value comes from.
        data_type: Declared type, used when coercing record values.
        default_value: Used when no binding is supplied for this variable.
        path: Dotted accessor into the source record. Required unless the
            source is ``constant``.
        description: Human-readable description.
        category: Free-form grouping label.
    """

    name: str
    source: VariableSource = VariableSource.CONSTANT
    data_type: DataType = DataType.NUMBER
    default_value: Decimal | None = None
    path: str | None = None
    description: str = ""
    category: str = ""

    def __post_init__(self) -> None:
        if self.default_value is not None and not isinstance(self.default_value, Decimal):
            object.__setattr__(self, "default_value", to_decimal(self.default_value))


@dataclass(frozen=True)
class Literal:
    """A numeric literal operand."""

    value: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.value, Decimal):
            object.__setattr__(self, "value", to_decimal(self.value))


@dataclass(frozen=True)
class NameRef:
    """A reference to a variable or to another step's result."""

    name: str


@dataclass(frozen=True)
class NestedOperation:
    """An operand that is itself an operation."""

    operation: Operation
    id: str = ""
    name: str = ""


Operand = Union[Literal, NameRef, NestedOperation]


@dataclass(frozen=True)
class Operation:
    """An operator applied to an ordered list of operands."""

    type: OperatorTag
    parameters: tuple[Operand, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.type, OperatorTag):
            object.__setattr__(self, "type", OperatorTag(self.type))
        object.__setattr__(
            self, "parameters", tuple(operand(p) for p in self.parameters)
        )


@dataclass(frozen=True)
class CalculationStep:
    """
    A named unit of computation.

    The step's value is published under ``result`` so later steps, or the
    plan output, can reference it. A step without ``result`` is still
    computed but nothing can reference it.
    """

    id: str
    name: str
    operation: Operation
    result: str | None = None
    description: str = ""


@dataclass(frozen=True)
class FormulaPlan:
    """
    Complete definition of a compensation calculation.

    Attributes:
        variables: Declared inputs.
        steps: Calculation steps in authored order.
        output_variable: Result name whose value is the plan's output.
    """

    variables: tuple[Variable, ...] = ()
    steps: tuple[CalculationStep, ...] = ()
    output_variable: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "variables", tuple(self.variables))
        object.__setattr__(self, "steps", tuple(self.steps))

    def step_by_id(self, step_id: str) -> CalculationStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def variable_by_name(self, name: str) -> Variable | None:
        for variable in self.variables:
            if variable.name == name:
                return variable
        return None

    def result_producers(self) -> dict[str, str]:
        """Map each published result name to the id of the first step producing it."""
        producers: dict[str, str] = {}
        for step in self.steps:
            if step.result and step.result not in producers:
                producers[step.result] = step.id
        return producers


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def to_decimal(value: Any) -> Decimal:
    """Convert an int, float, Decimal or numeric string to Decimal.

    Raises:
        TypeError: for booleans and other non-numeric types.
        ValueError: for strings that are not finite numbers.
    """
    if isinstance(value, bool):
        raise TypeError("Booleans are not numbers")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        parsed = parse_numeric(value)
        if parsed is None:
            raise ValueError(f"Not a number: {value!r}")
        return parsed
    raise TypeError(f"Cannot convert {type(value).__name__} to Decimal")


def parse_numeric(text: str) -> Decimal | None:
    """Return the Decimal value of a numeric string, or None if it is a name.

    Digit-group underscores (``"1_000"``) are not numeric; such a string is
    a name.
    """
    stripped = text.strip()
    if not stripped or "_" in stripped:
        return None
    try:
        number = Decimal(stripped)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def operand(value: Any) -> Operand:
    """Coerce a raw parameter into an Operand.

    Numbers and numeric strings become ``Literal``; other strings become
    ``NameRef``; an ``Operation`` becomes ``NestedOperation``.
    """
    if isinstance(value, (Literal, NameRef, NestedOperation)):
        return value
    if isinstance(value, Operation):
        return NestedOperation(operation=value)
    if isinstance(value, str):
        number = parse_numeric(value)
        if number is not None:
            return Literal(number)
        return NameRef(value)
    if isinstance(value, bool):
        raise TypeError("Boolean literals are not supported as operands")
    if isinstance(value, (int, float, Decimal)):
        return Literal(to_decimal(value))
    raise TypeError(f"Unsupported operand: {value!r}")


def op(tag: OperatorTag | str, *parameters: Any) -> Operation:
    """Shorthand for building an Operation: ``op("add", "base", 100)``."""
    return Operation(type=OperatorTag(tag), parameters=tuple(parameters))


@dataclass(frozen=True)
class StepTrace:
    """Value computed for one step during an evaluation run."""

    step_id: str
    step_name: str
    result_name: str | None
    value: Value
    inputs: dict[str, Value] = field(default_factory=dict)
    duration_ms: float = 0.0


@dataclass(frozen=True)
class FormulaEvaluationResult:
    """Outcome of evaluating a plan: the output value plus a per-step trace."""

    output_variable: str
    value: Value
    steps: tuple[StepTrace, ...] = ()
    duration_ms: float = 0.0

    def result_of(self, result_name: str) -> Value:
        for trace in self.steps:
            if trace.result_name == result_name:
                return trace.value
        raise KeyError(result_name)

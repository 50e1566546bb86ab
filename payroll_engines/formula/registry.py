"""
Variable registry -- name resolution for formula evaluation.

Resolution order for a name referenced by a step:

    1. results of steps already computed in this run
    2. the caller's binding for a declared variable
    3. the declared variable's default value
    4. otherwise ``UnresolvedNameError``

There is no zero-fill. A missing salary input must fail the computation,
not pay someone nothing.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime, timezone
from decimal import Decimal

from payroll_engines.formula.types import DataType, Value, Variable, parse_numeric
from payroll_kernel.exceptions import OperandTypeError, UnresolvedNameError


class VariableRegistry:
    """Lookup of declared variables by name. First declaration wins."""

    def __init__(self, variables: Iterable[Variable]):
        self._variables: dict[str, Variable] = {}
        for variable in variables:
            self._variables.setdefault(variable.name, variable)

    def __contains__(self, name: object) -> bool:
        return name in self._variables

    def __len__(self) -> int:
        return len(self._variables)

    def get(self, name: str) -> Variable | None:
        return self._variables.get(name)

    def names(self) -> frozenset[str]:
        return frozenset(self._variables)

    def resolve(
        self,
        name: str,
        results: Mapping[str, Value],
        bindings: Mapping[str, object],
        step_id: str | None = None,
        operator: str | None = None,
    ) -> Value:
        """Resolve ``name`` to a value for the step currently being evaluated.

        Raises:
            UnresolvedNameError: nothing supplies a value for ``name``.
            OperandTypeError: the bound value is not a number or boolean.
        """
        if name in results:
            return results[name]

        variable = self._variables.get(name)
        if variable is None:
            raise UnresolvedNameError(name, step_id=step_id, operator=operator)

        if name in bindings and bindings[name] is not None:
            return normalize_value(bindings[name], step_id=step_id, operator=operator)

        if variable.default_value is not None:
            if variable.data_type == DataType.BOOLEAN:
                return variable.default_value != 0
            return variable.default_value

        raise UnresolvedNameError(name, step_id=step_id, operator=operator)


def normalize_value(
    raw: object,
    step_id: str | None = None,
    operator: str | None = None,
) -> Value:
    """Normalize a bound value to ``Decimal`` or ``bool``.

    Dates become epoch milliseconds so they can be compared and subtracted.
    """
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, Decimal):
        if not raw.is_finite():
            raise OperandTypeError("a finite number", str(raw), step_id, operator)
        return raw
    if isinstance(raw, int):
        return Decimal(raw)
    if isinstance(raw, float):
        number = Decimal(str(raw))
        if not number.is_finite():
            raise OperandTypeError("a finite number", str(raw), step_id, operator)
        return number
    if isinstance(raw, (date, datetime)):
        return date_to_epoch_ms(raw)
    if isinstance(raw, str):
        number = parse_numeric(raw)
        if number is not None:
            return number
        raise OperandTypeError("number or boolean", f"text {raw!r}", step_id, operator)
    raise OperandTypeError("number or boolean", type(raw).__name__, step_id, operator)


def date_to_epoch_ms(value: date | datetime) -> Decimal:
    """Milliseconds since the Unix epoch; naive values are taken as UTC."""
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return Decimal(delta.days * 86_400_000 + delta.seconds * 1000 + delta.microseconds // 1000)

"""
Binding builder -- pulls formula inputs out of records the caller holds.

The formula engine never fetches data. Payroll code that already has an
employee record, the month's sales figures and the month's transactions
uses ``build_bindings`` to turn them into the name -> value mapping the
evaluator expects.

Per variable source:

    constant      never bound; the declared default applies
    employee      ``path`` is a dotted accessor into the employee record
    sales         ``path`` is a dotted accessor into the sales record
    transaction   ``path`` is ``<collection>`` or ``<collection>.<field>``;
                  the value is the sum of ``field`` (default ``amount``)
                  over every transaction in that collection

Values are coerced by the variable's ``data_type``. A value that is absent
or cannot be coerced is left unbound, so the variable's default applies or
evaluation fails loudly with ``UnresolvedNameError``. The exception is a
transaction amount that is not numeric, which raises ``BindingValueError``.

Usage:
    sources = BindingSources(
        employee={"id": "e-1", "contract": {"base_salary": 4000}},
        sales={"total": 18250},
        transactions={"bonuses": [{"amount": 150}], "loans": []},
    )
    bindings = build_bindings(plan, sources)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from payroll_engines.formula.registry import date_to_epoch_ms
from payroll_engines.formula.types import (
    DataType,
    FormulaPlan,
    Value,
    Variable,
    VariableSource,
    parse_numeric,
)
from payroll_kernel.exceptions import BindingValueError
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.bindings")

DEFAULT_TRANSACTION_FIELD = "amount"

_MISSING = object()

_TRUE_STRINGS = frozenset({"true", "yes", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "0"})


@dataclass(frozen=True)
class BindingSources:
    """Records one evaluation draws its inputs from."""

    employee: Mapping[str, Any] = field(default_factory=dict)
    sales: Mapping[str, Any] = field(default_factory=dict)
    transactions: Mapping[str, Sequence[Any]] = field(default_factory=dict)


def build_bindings(
    plan: FormulaPlan,
    sources: BindingSources,
    overrides: Mapping[str, Value] | None = None,
) -> dict[str, Value]:
    """
    Build the binding for one evaluation of ``plan``.

    Args:
        plan: Plan whose variables are bound.
        sources: Records to read from.
        overrides: Explicit values that win over anything read from records.

    Returns:
        Variable name -> Decimal or bool, for every variable a value was
        found for.

    Raises:
        BindingValueError: a summed transaction field is not numeric.
    """
    bindings: dict[str, Value] = {}
    for variable in plan.variables:
        if variable.source == VariableSource.CONSTANT or not variable.path:
            continue

        raw = _read_source(variable, sources)
        if raw is _MISSING:
            continue

        value = coerce_value(raw, variable.data_type)
        if value is None:
            logger.warning(
                "binding_value_uncoercible",
                extra={
                    "variable": variable.name,
                    "data_type": variable.data_type.value,
                    "raw_type": type(raw).__name__,
                },
            )
            continue
        bindings[variable.name] = value

    if overrides:
        bindings.update(overrides)
    return bindings


def _read_source(variable: Variable, sources: BindingSources) -> Any:
    path = variable.path or ""
    if variable.source == VariableSource.EMPLOYEE:
        return get_path(sources.employee, path)
    if variable.source == VariableSource.SALES:
        return get_path(sources.sales, path)
    if variable.source == VariableSource.TRANSACTION:
        return sum_transactions(sources.transactions, path)
    return _MISSING


def get_path(record: Any, path: str) -> Any:
    """Follow a dotted path through mappings and attributes.

    Returns the module-level ``_MISSING`` sentinel when any segment is
    absent or ``None``.
    """
    current = record
    for part in path.split("."):
        if current is None:
            return _MISSING
        if isinstance(current, Mapping):
            if part not in current:
                return _MISSING
            current = current[part]
        elif hasattr(current, part):
            current = getattr(current, part)
        else:
            return _MISSING
    return _MISSING if current is None else current


def sum_transactions(transactions: Mapping[str, Sequence[Any]], path: str) -> Any:
    """Sum ``field`` over the ``collection`` named by ``collection[.field]``.

    An empty collection sums to zero; an absent collection is missing.

    Raises:
        BindingValueError: an item's field holds a non-numeric value.
    """
    collection, _, field_name = path.partition(".")
    items = transactions.get(collection, _MISSING)
    if items is _MISSING or items is None:
        return _MISSING

    total = Decimal(0)
    for item in items:
        raw = get_path(item, field_name or DEFAULT_TRANSACTION_FIELD)
        if raw is _MISSING:
            continue
        amount = coerce_value(raw, DataType.NUMBER)
        if amount is None:
            raise BindingValueError(path, raw, "transaction field is not numeric")
        total += amount
    return total


def coerce_value(raw: Any, data_type: DataType) -> Value | None:
    """Coerce a record value to the engine's value kinds, or None if impossible."""
    if data_type == DataType.BOOLEAN:
        return _to_boolean(raw)
    if data_type == DataType.DATE:
        return _to_epoch_ms(raw)
    return _to_number(raw)


def _to_boolean(raw: Any) -> bool | None:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float, Decimal)):
        return raw != 0
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def _to_epoch_ms(raw: Any) -> Decimal | None:
    if isinstance(raw, (date, datetime)):
        return date_to_epoch_ms(raw)
    if isinstance(raw, str):
        try:
            return date_to_epoch_ms(datetime.fromisoformat(raw))
        except ValueError:
            return None
    if isinstance(raw, (int, Decimal)) and not isinstance(raw, bool):
        return Decimal(raw)
    return None


def _to_number(raw: Any) -> Decimal | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        return raw if raw.is_finite() else None
    if isinstance(raw, int):
        return Decimal(raw)
    if isinstance(raw, float):
        number = Decimal(str(raw))
        return number if number.is_finite() else None
    if isinstance(raw, str):
        return parse_numeric(raw)
    return None

"""
Immutable edits to a formula plan.

Every function returns a new ``FormulaPlan``; the input plan is never
changed, so derived state (validation results, dependency graphs) computed
for the old plan can never go stale. Callers revalidate the new value.

Structural problems a validator would report anyway (unknown references,
cycles) are allowed here. Only edits that make no sense at all raise:

* ``KeyError`` -- the step id or variable name to change does not exist.
* ``ValueError`` -- the edit would duplicate a step id or variable name.
"""

from __future__ import annotations

from dataclasses import replace

from payroll_engines.formula.types import CalculationStep, FormulaPlan, Variable


def add_step(
    plan: FormulaPlan,
    step: CalculationStep,
    index: int | None = None,
) -> FormulaPlan:
    """Insert a step at ``index`` (default: append)."""
    if plan.step_by_id(step.id) is not None:
        raise ValueError(f"Step id '{step.id}' already exists")
    steps = list(plan.steps)
    if index is None:
        steps.append(step)
    else:
        steps.insert(index, step)
    return replace(plan, steps=tuple(steps))


def replace_step(plan: FormulaPlan, step_id: str, step: CalculationStep) -> FormulaPlan:
    """Swap the step with id ``step_id`` for ``step``, keeping its position."""
    index = _step_index(plan, step_id)
    if step.id != step_id and plan.step_by_id(step.id) is not None:
        raise ValueError(f"Step id '{step.id}' already exists")
    steps = list(plan.steps)
    steps[index] = step
    return replace(plan, steps=tuple(steps))


def remove_step(plan: FormulaPlan, step_id: str) -> FormulaPlan:
    index = _step_index(plan, step_id)
    steps = list(plan.steps)
    del steps[index]
    return replace(plan, steps=tuple(steps))


def move_step(plan: FormulaPlan, step_id: str, new_index: int) -> FormulaPlan:
    """Move a step to ``new_index`` in authored order.

    Authored order only breaks ties; dependencies still decide evaluation
    order.
    """
    index = _step_index(plan, step_id)
    steps = list(plan.steps)
    step = steps.pop(index)
    steps.insert(new_index, step)
    return replace(plan, steps=tuple(steps))


def add_variable(plan: FormulaPlan, variable: Variable) -> FormulaPlan:
    if plan.variable_by_name(variable.name) is not None:
        raise ValueError(f"Variable '{variable.name}' already exists")
    return replace(plan, variables=plan.variables + (variable,))


def replace_variable(plan: FormulaPlan, name: str, variable: Variable) -> FormulaPlan:
    if plan.variable_by_name(name) is None:
        raise KeyError(name)
    if variable.name != name and plan.variable_by_name(variable.name) is not None:
        raise ValueError(f"Variable '{variable.name}' already exists")
    variables = tuple(variable if v.name == name else v for v in plan.variables)
    return replace(plan, variables=variables)


def remove_variable(plan: FormulaPlan, name: str) -> FormulaPlan:
    if plan.variable_by_name(name) is None:
        raise KeyError(name)
    return replace(plan, variables=tuple(v for v in plan.variables if v.name != name))


def set_output_variable(plan: FormulaPlan, output_variable: str) -> FormulaPlan:
    return replace(plan, output_variable=output_variable)


def _step_index(plan: FormulaPlan, step_id: str) -> int:
    for index, step in enumerate(plan.steps):
        if step.id == step_id:
            return index
    raise KeyError(step_id)

"""
Formula Plan Loader (``payroll_config.loader``).

Responsibility
--------------
Reads formula plan documents (JSON or YAML) and parses them into
``payroll_engines.formula`` value objects, and renders plans back into
documents. The document shape is::

    variables:
      - {name, source, dataType, defaultValue, path, description, category}
    steps:
      - {id, name, description, result, operation: {type, parameters}}
    outputVariable: <result name>

Parameters are numbers, strings (numeric strings are literals, anything
else is a name reference) or nested operations ``{id, name, operation}``.
A bare ``{type, parameters}`` object is accepted as a nested operation.

Architecture position
---------------------
**Config layer** -- infrastructure tooling. Consumed by
``payroll_config.load_formula_plan`` and the plan store. Depends on the
engine's value objects only; never on services.

Invariants enforced
-------------------
* Structural problems raise ``PlanDocumentError`` naming the location
  (``steps[2].operation.parameters[0]``); no silent defaults for
  required keys.
* Operation trees deeper than ``MAX_NESTING_DEPTH`` are refused while
  parsing, before the tree is built.
* Parsing never validates semantics (unknown names, cycles). That is
  ``validate_formula_plan``'s job, so an editor can load a broken plan
  and show every issue at once.
* ``compute_checksum`` produces a deterministic SHA-256 hash of a
  document for identity and change detection.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML/JSON  -> ``yaml.YAMLError`` propagates (YAML is a
  superset of JSON, so one parser reads both).
* Structurally invalid document  -> ``PlanDocumentError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from payroll_engines.formula.dependency import MAX_NESTING_DEPTH
from payroll_engines.formula.types import (
    CalculationStep,
    DataType,
    FormulaPlan,
    Literal,
    NameRef,
    NestedOperation,
    Operand,
    Operation,
    OperatorTag,
    Variable,
    VariableSource,
    operand,
    to_decimal,
)
from payroll_kernel.exceptions import PlanDocumentError

PLAN_FILE_SUFFIXES = (".yaml", ".yml", ".json")


def load_plan_file(path: Path) -> dict[str, Any]:
    """
    Load a plan document file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file is not valid YAML or JSON.
        PlanDocumentError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise PlanDocumentError("document must be a mapping", location=str(path))
    return data


def load_plan(path: Path) -> FormulaPlan:
    """Load and parse a plan document file. Does not validate."""
    return parse_plan_document(load_plan_file(path))


def parse_plan_document(data: dict[str, Any]) -> FormulaPlan:
    """
    Parse a ``FormulaPlan`` from a plan document.

    Raises:
        PlanDocumentError: missing ``variables``/``steps`` arrays, missing
            or empty ``outputVariable``, unknown operator tags or enum
            values, unsupported operand values.
    """
    if not isinstance(data, dict):
        raise PlanDocumentError("document must be a mapping")

    variables = data.get("variables")
    if not isinstance(variables, list):
        raise PlanDocumentError("'variables' must be an array", location="variables")

    steps = data.get("steps")
    if not isinstance(steps, list):
        raise PlanDocumentError("'steps' must be an array", location="steps")

    output_variable = data.get("outputVariable")
    if not isinstance(output_variable, str) or not output_variable.strip():
        raise PlanDocumentError(
            "'outputVariable' must be a non-empty string", location="outputVariable"
        )

    return FormulaPlan(
        variables=tuple(
            parse_variable(item, f"variables[{i}]") for i, item in enumerate(variables)
        ),
        steps=tuple(parse_step(item, f"steps[{i}]") for i, item in enumerate(steps)),
        output_variable=output_variable,
    )


def parse_variable(data: Any, location: str = "variable") -> Variable:
    """Parse a ``Variable`` from a dict."""
    if not isinstance(data, dict):
        raise PlanDocumentError("variable must be a mapping", location=location)
    name = _require_string(data, "name", location)

    default_value = data.get("defaultValue")
    if default_value is not None:
        default_value = _parse_number(default_value, f"{location}.defaultValue")

    return Variable(
        name=name,
        source=_parse_enum(VariableSource, data.get("source", "constant"), f"{location}.source"),
        data_type=_parse_enum(DataType, data.get("dataType", "number"), f"{location}.dataType"),
        default_value=default_value,
        path=_optional_string(data, "path", location) or None,
        description=_optional_string(data, "description", location) or "",
        category=_optional_string(data, "category", location) or "",
    )


def parse_step(data: Any, location: str = "step") -> CalculationStep:
    """Parse a ``CalculationStep`` from a dict."""
    if not isinstance(data, dict):
        raise PlanDocumentError("step must be a mapping", location=location)
    step_id = _require_string(data, "id", location)

    if "operation" not in data:
        raise PlanDocumentError("step requires 'operation'", location=location)

    result = data.get("result")
    if result is not None and not isinstance(result, str):
        raise PlanDocumentError("'result' must be a string", location=f"{location}.result")

    return CalculationStep(
        id=step_id,
        name=_optional_string(data, "name", location) or step_id,
        operation=parse_operation(data["operation"], f"{location}.operation"),
        result=result or None,
        description=_optional_string(data, "description", location) or "",
    )


def parse_operation(data: Any, location: str = "operation", depth: int = 1) -> Operation:
    """Parse an ``Operation`` ``{type, parameters}`` found ``depth`` levels down."""
    if not isinstance(data, dict):
        raise PlanDocumentError("operation must be a mapping", location=location)
    if depth > MAX_NESTING_DEPTH:
        raise PlanDocumentError(
            f"operations are nested more than {MAX_NESTING_DEPTH} levels deep",
            location=location,
        )
    tag = _parse_enum(OperatorTag, data.get("type"), f"{location}.type")

    parameters = data.get("parameters", [])
    if not isinstance(parameters, list):
        raise PlanDocumentError(
            "'parameters' must be an array", location=f"{location}.parameters"
        )

    return Operation(
        type=tag,
        parameters=tuple(
            parse_operand(p, f"{location}.parameters[{i}]", depth)
            for i, p in enumerate(parameters)
        ),
    )


def parse_operand(data: Any, location: str = "parameter", depth: int = 1) -> Operand:
    """Parse one parameter of an operation sitting ``depth`` levels down."""
    if isinstance(data, bool):
        raise PlanDocumentError("boolean literals are not supported", location=location)
    if isinstance(data, (int, float)):
        return Literal(_parse_number(data, location))
    if isinstance(data, str):
        return operand(data)
    if isinstance(data, dict):
        if "operation" in data:
            return NestedOperation(
                operation=parse_operation(data["operation"], f"{location}.operation", depth + 1),
                id=_optional_string(data, "id", location) or "",
                name=_optional_string(data, "name", location) or "",
            )
        if "type" in data:
            return NestedOperation(operation=parse_operation(data, location, depth + 1))
        raise PlanDocumentError(
            "nested operand requires 'operation' or 'type'", location=location
        )
    raise PlanDocumentError(
        f"unsupported operand of type {type(data).__name__}", location=location
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def plan_to_document(plan: FormulaPlan) -> dict[str, Any]:
    """Render a plan as a JSON-serializable document.

    Integral numbers render as ints; other numbers render as exact numeric
    strings, which parse back to the same literal.
    """
    return {
        "variables": [_variable_to_document(v) for v in plan.variables],
        "steps": [_step_to_document(s) for s in plan.steps],
        "outputVariable": plan.output_variable,
    }


def _variable_to_document(variable: Variable) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "name": variable.name,
        "source": variable.source.value,
        "dataType": variable.data_type.value,
    }
    if variable.default_value is not None:
        doc["defaultValue"] = _render_number(variable.default_value)
    if variable.path:
        doc["path"] = variable.path
    if variable.description:
        doc["description"] = variable.description
    if variable.category:
        doc["category"] = variable.category
    return doc


def _step_to_document(step: CalculationStep) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "id": step.id,
        "name": step.name,
        "operation": _operation_to_document(step.operation),
    }
    if step.result:
        doc["result"] = step.result
    if step.description:
        doc["description"] = step.description
    return doc


def _operation_to_document(operation: Operation) -> dict[str, Any]:
    return {
        "type": operation.type.value,
        "parameters": [_operand_to_document(p) for p in operation.parameters],
    }


def _operand_to_document(param: Operand) -> Any:
    if isinstance(param, Literal):
        return _render_number(param.value)
    if isinstance(param, NameRef):
        return param.name
    doc: dict[str, Any] = {"operation": _operation_to_document(param.operation)}
    if param.id:
        doc["id"] = param.id
    if param.name:
        doc["name"] = param.name
    return doc


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums
          (deterministic).
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_string(data: dict[str, Any], key: str, location: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise PlanDocumentError(f"'{key}' must be a non-empty string", location=f"{location}.{key}")
    return value


def _optional_string(data: dict[str, Any], key: str, location: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise PlanDocumentError(f"'{key}' must be a string", location=f"{location}.{key}")
    return value


def _parse_enum(enum_cls: type, value: Any, location: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise PlanDocumentError(
            f"unknown value {value!r} (expected one of: {allowed})", location=location
        ) from None


def _parse_number(value: Any, location: str) -> Decimal:
    try:
        number = to_decimal(value)
    except (TypeError, ValueError) as exc:
        raise PlanDocumentError(str(exc), location=location) from None
    if not number.is_finite():
        raise PlanDocumentError("number must be finite", location=location)
    return number


def _render_number(value: Decimal) -> int | str:
    if value == value.to_integral_value():
        return int(value)
    return str(value)

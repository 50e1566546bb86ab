"""
Tests for the formula plan document loader.

Covers:
- Parsing variables, steps and operands (nested and bare nested forms)
- Structural errors reported with their location, wrongly typed text
  fields included
- Nesting depth limit while parsing
- Rendering a plan back to a document and checksums
- The shipped sample plan
"""

from decimal import Decimal

import pytest

from payroll_config.loader import (
    compute_checksum,
    load_plan,
    load_plan_file,
    parse_operand,
    parse_plan_document,
    plan_to_document,
)
from payroll_engines.formula import run
from payroll_engines.formula.dependency import MAX_NESTING_DEPTH
from payroll_engines.formula.types import (
    DataType,
    Literal,
    NameRef,
    NestedOperation,
    OperatorTag,
    VariableSource,
)
from payroll_engines.formula.validator import validate_formula_plan
from payroll_kernel.exceptions import PlanDocumentError


def document(**overrides):
    doc = {
        "variables": [{"name": "x"}],
        "steps": [
            {
                "id": "s1",
                "name": "Double",
                "result": "doubled",
                "operation": {"type": "multiply", "parameters": ["x", 2]},
            }
        ],
        "outputVariable": "doubled",
    }
    doc.update(overrides)
    return doc


def nested_document(levels):
    operation = {"type": "add", "parameters": ["x", 1]}
    for _ in range(levels - 1):
        operation = {"type": "add", "parameters": [{"operation": operation}, 1]}
    return document(steps=[{"id": "s1", "result": "doubled", "operation": operation}])


class TestParsing:
    def test_minimal_document(self):
        plan = parse_plan_document(document())

        assert plan.output_variable == "doubled"
        assert plan.steps[0].operation.type == OperatorTag.MULTIPLY
        assert plan.steps[0].operation.parameters == (NameRef("x"), Literal(Decimal(2)))
        assert run(plan, {"x": 10}) == Decimal(20)

    def test_variable_defaults(self):
        variable = parse_plan_document(document()).variables[0]

        assert variable.source == VariableSource.CONSTANT
        assert variable.data_type == DataType.NUMBER
        assert variable.default_value is None
        assert variable.path is None

    def test_variable_fields(self):
        doc = document(
            variables=[
                {
                    "name": "x",
                    "source": "employee",
                    "dataType": "boolean",
                    "defaultValue": "1.5",
                    "path": "flags.active",
                    "category": "flags",
                }
            ]
        )

        variable = parse_plan_document(doc).variables[0]

        assert variable.source == VariableSource.EMPLOYEE
        assert variable.data_type == DataType.BOOLEAN
        assert variable.default_value == Decimal("1.5")
        assert variable.path == "flags.active"
        assert variable.category == "flags"

    def test_step_name_defaults_to_id(self):
        doc = document()
        del doc["steps"][0]["name"]

        assert parse_plan_document(doc).steps[0].name == "s1"

    def test_numeric_string_is_a_literal(self):
        assert parse_operand("12.5") == Literal(Decimal("12.5"))

    def test_float_is_exact(self):
        assert parse_operand(0.1) == Literal(Decimal("0.1"))

    def test_nested_operation_with_identity(self):
        param = parse_operand(
            {"id": "n1", "name": "Inner", "operation": {"type": "add", "parameters": [1, 2]}}
        )

        assert isinstance(param, NestedOperation)
        assert param.id == "n1"
        assert param.operation.type == OperatorTag.ADD

    def test_bare_nested_operation(self):
        param = parse_operand({"type": "max", "parameters": ["x", 0]})

        assert isinstance(param, NestedOperation)
        assert param.operation.type == OperatorTag.MAX
        assert param.id == ""


class TestDocumentErrors:
    @pytest.mark.parametrize("key", ["variables", "steps"])
    def test_missing_arrays(self, key):
        doc = document()
        del doc[key]

        with pytest.raises(PlanDocumentError) as exc_info:
            parse_plan_document(doc)

        assert exc_info.value.location == key

    def test_empty_output_variable(self):
        with pytest.raises(PlanDocumentError) as exc_info:
            parse_plan_document(document(outputVariable=" "))
        assert exc_info.value.location == "outputVariable"

    def test_unknown_operator(self):
        doc = document()
        doc["steps"][0]["operation"]["type"] = "power"

        with pytest.raises(PlanDocumentError) as exc_info:
            parse_plan_document(doc)

        assert exc_info.value.location == "steps[0].operation.type"
        assert exc_info.value.code == "PLAN_DOCUMENT_INVALID"

    def test_boolean_literal_is_rejected(self):
        doc = document()
        doc["steps"][0]["operation"]["parameters"] = ["x", True]

        with pytest.raises(PlanDocumentError) as exc_info:
            parse_plan_document(doc)

        assert exc_info.value.location == "steps[0].operation.parameters[1]"

    def test_nested_error_location(self):
        doc = document()
        doc["steps"][0]["operation"]["parameters"] = [
            "x",
            {"operation": {"type": "add", "parameters": [None]}},
        ]

        with pytest.raises(PlanDocumentError) as exc_info:
            parse_plan_document(doc)

        assert exc_info.value.location == "steps[0].operation.parameters[1].operation.parameters[0]"

    def test_step_without_operation(self):
        doc = document()
        del doc["steps"][0]["operation"]

        with pytest.raises(PlanDocumentError) as exc_info:
            parse_plan_document(doc)
        assert exc_info.value.location == "steps[0]"

    def test_unknown_variable_source(self):
        doc = document(variables=[{"name": "x", "source": "payslip"}])

        with pytest.raises(PlanDocumentError) as exc_info:
            parse_plan_document(doc)
        assert exc_info.value.location == "variables[0].source"

    @pytest.mark.parametrize("field", ["path", "description", "category"])
    def test_variable_text_fields_must_be_strings(self, field):
        doc = document(variables=[{"name": "x", "source": "employee", field: 5}])

        with pytest.raises(PlanDocumentError) as exc_info:
            parse_plan_document(doc)
        assert exc_info.value.location == f"variables[0].{field}"

    @pytest.mark.parametrize("field", ["name", "description"])
    def test_step_text_fields_must_be_strings(self, field):
        doc = document()
        doc["steps"][0][field] = ["not", "text"]

        with pytest.raises(PlanDocumentError) as exc_info:
            parse_plan_document(doc)
        assert exc_info.value.location == f"steps[0].{field}"

    def test_nested_operation_name_must_be_a_string(self):
        doc = document()
        doc["steps"][0]["operation"]["parameters"] = [
            "x",
            {"name": 7, "operation": {"type": "add", "parameters": [1, 2]}},
        ]

        with pytest.raises(PlanDocumentError) as exc_info:
            parse_plan_document(doc)
        assert exc_info.value.location == "steps[0].operation.parameters[1].name"

    def test_nesting_at_the_limit_parses_and_runs(self):
        plan = parse_plan_document(nested_document(MAX_NESTING_DEPTH))

        assert validate_formula_plan(plan).is_valid
        assert run(plan, {"x": 0}) == Decimal(MAX_NESTING_DEPTH)

    def test_nesting_past_the_limit_is_refused(self):
        with pytest.raises(PlanDocumentError) as exc_info:
            parse_plan_document(nested_document(MAX_NESTING_DEPTH + 1))
        assert "nested more than" in str(exc_info.value)

    def test_very_deep_document_is_refused_without_recursing(self):
        with pytest.raises(PlanDocumentError) as exc_info:
            parse_plan_document(nested_document(1200))

        location = exc_info.value.location
        assert location.startswith("steps[0].operation.parameters[0].operation")
        assert location.count(".operation") == MAX_NESTING_DEPTH + 1

    def test_semantic_problems_are_left_to_the_validator(self):
        doc = document()
        doc["steps"][0]["operation"]["parameters"] = ["ghost", 2]

        plan = parse_plan_document(doc)

        assert "UNKNOWN_REFERENCE" in validate_formula_plan(plan).codes()

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "plan.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(PlanDocumentError):
            load_plan_file(path)


class TestRendering:
    def test_render_then_parse_gives_the_same_plan(self, sample_plan_path):
        plan = load_plan(sample_plan_path)
        assert parse_plan_document(plan_to_document(plan)) == plan

    def test_numbers_render_exactly(self):
        doc = document()
        doc["steps"][0]["operation"]["parameters"] = ["x", "2.50", 3]

        rendered = plan_to_document(parse_plan_document(doc))

        assert rendered["steps"][0]["operation"]["parameters"] == ["x", "2.50", 3]

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})

    def test_json_file_is_accepted(self, tmp_path):
        import json

        path = tmp_path / "plan.json"
        path.write_text(json.dumps(document()))

        assert load_plan(path).output_variable == "doubled"


class TestSamplePlan:
    def test_sample_plan_is_valid(self, sample_plan_path):
        result = validate_formula_plan(load_plan(sample_plan_path))

        assert result.is_valid
        assert result.warnings == []

    def test_sample_plan_value(self, sample_plan_path):
        plan = load_plan(sample_plan_path)
        bindings = {
            "base_salary": 4000,
            "sales_total": 18250,
            "bonuses": 150,
            "deductions": 200,
        }

        # 4000 + 912.5 + 500 + 150 - 200 = 5362.5, rounded half up
        assert run(plan, bindings) == Decimal(5363)

    def test_sample_plan_floors_at_zero(self, sample_plan_path):
        plan = load_plan(sample_plan_path)

        assert run(plan, {"base_salary": 100, "sales_total": 0, "deductions": 900}) == 0

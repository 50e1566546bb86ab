"""
Formula-based compensation calculation engine.

A ``FormulaPlan`` declares variables and ordered calculation steps; each
step applies an operator to literals, name references or nested operations
and publishes its value under a result name. The engine validates a plan
(unknown names, arity, duplicate results, missing output, cycles) and
evaluates it against a caller-supplied binding of input values.
"""

from payroll_engines.formula.cycles import find_cycles
from payroll_engines.formula.dependency import (
    MAX_NESTING_DEPTH,
    build_step_graph,
    dependency_levels,
    dependents_of,
    extract_references,
    nesting_depth,
    topological_order,
)
from payroll_engines.formula.evaluator import evaluate_operation, evaluate_plan, run
from payroll_engines.formula.operators import ARITY, Arity, arity_of, render_operation
from payroll_engines.formula.registry import VariableRegistry
from payroll_engines.formula.types import (
    CalculationStep,
    DataType,
    FormulaEvaluationResult,
    FormulaPlan,
    Literal,
    NameRef,
    NestedOperation,
    Operand,
    Operation,
    OperatorTag,
    StepTrace,
    Value,
    Variable,
    VariableSource,
    op,
    operand,
)
from payroll_engines.formula.validator import (
    FormulaIssue,
    FormulaValidationResult,
    IssueScope,
    validate_formula_plan,
)

__all__ = [
    "ARITY",
    "Arity",
    "CalculationStep",
    "DataType",
    "FormulaEvaluationResult",
    "FormulaIssue",
    "FormulaPlan",
    "FormulaValidationResult",
    "IssueScope",
    "Literal",
    "MAX_NESTING_DEPTH",
    "NameRef",
    "NestedOperation",
    "Operand",
    "Operation",
    "OperatorTag",
    "StepTrace",
    "Value",
    "Variable",
    "VariableRegistry",
    "VariableSource",
    "arity_of",
    "build_step_graph",
    "dependency_levels",
    "dependents_of",
    "evaluate_operation",
    "evaluate_plan",
    "extract_references",
    "find_cycles",
    "nesting_depth",
    "op",
    "operand",
    "render_operation",
    "run",
    "topological_order",
    "validate_formula_plan",
]

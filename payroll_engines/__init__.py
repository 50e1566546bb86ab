"""
Module: payroll_engines
Responsibility:
    Package entrypoint for the pure compensation calculation layer: the
    formula plan engine, the binding builder that turns caller-held records
    into formula inputs, and the payroll batch runner.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import payroll_kernel (exceptions, logging) and sibling engine
    modules. MUST NOT import payroll_config or payroll_kernel.services.

Invariants enforced:
    - Purity: engines NEVER read the clock, the filesystem or a database.
      Every input arrives through the plan and the bindings.
    - Decimal-only arithmetic: numeric values are ``Decimal``; floats are
      converted through ``str`` at the boundary.
    - Determinism: identical plans and bindings always produce identical
      outputs.

Failure modes:
    - InvalidFormulaPlanError when a plan with validation errors is evaluated.
    - FormulaEvaluationError subclasses for failures during evaluation.

Audit relevance:
    Every plan evaluation is traced via the ``@traced_engine`` decorator
    (see ``payroll_engines.tracer``), emitting FORMULA_ENGINE_TRACE log
    records that include engine name, version, input fingerprint, and
    duration.

Usage:
    from payroll_engines.formula import FormulaPlan, evaluate_plan, run
    from payroll_engines.bindings import BindingSources, build_bindings
    from payroll_engines.payroll_run import PayrollUnit, run_payroll
"""

from payroll_kernel.logging_config import get_logger

logger = get_logger("engines")

"""
payroll_config -- single public entrypoint for formula plan configuration.

Responsibility:
    Provides the way to obtain a formula plan from configuration at
    runtime through ``load_formula_plan()``. Returns a validated, immutable
    ``FormulaPlan``. Document parsing lives in ``payroll_config.loader``
    and is build/test tooling.

Architecture position:
    Configuration -- YAML/JSON plan documents, load-time validation.
    This package sits above ``payroll_engines`` and ``payroll_kernel``.
    Neither of those may import from ``payroll_config``.

Invariants enforced:
    - Load-time validation: a plan with validation errors is never
      returned.
    - Fingerprint pinning: when ``<plan file>.approved`` exists, the plan
      fingerprint must match the pinned value.
    - Deterministic fingerprinting: the same plan always produces the same
      fingerprint regardless of document formatting.

Failure modes:
    - ``FileNotFoundError`` -- no plan file for the requested name/path.
    - ``PlanDocumentError`` -- the document is structurally invalid.
    - ``InvalidFormulaPlanError`` -- the plan failed validation.
    - ``ConfigIntegrityError`` -- fingerprint mismatch against an approved
      pin file.

Audit relevance:
    Every successful ``load_formula_plan()`` call emits a
    ``FORMULA_CONFIG_TRACE`` log entry containing the plan id, fingerprint,
    variable and step counts. This trace ties every computed salary back
    to the exact plan version that produced it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from payroll_config.integrity import (
    ConfigIntegrityError,
    compute_plan_fingerprint,
    read_pinned_fingerprint,
    verify_fingerprint_pin,
)
from payroll_config.loader import PLAN_FILE_SUFFIXES, load_plan
from payroll_engines.formula.types import FormulaPlan
from payroll_engines.formula.validator import validate_formula_plan
from payroll_kernel.exceptions import InvalidFormulaPlanError

_logger = logging.getLogger("payroll_kernel.config")

# Default plan documents directory
_DEFAULT_PLANS_DIR = Path(__file__).parent / "plans"

__all__ = [
    "ConfigIntegrityError",
    "find_plan_file",
    "load_formula_plan",
]


def load_formula_plan(
    plan: str | Path,
    plans_dir: Path | None = None,
) -> FormulaPlan:
    """Load, validate and verify a formula plan.

    Args:
        plan: Path to a plan file, or the name of a plan in ``plans_dir``
            (file stem without suffix).
        plans_dir: Directory searched for named plans. Defaults to
            payroll_config/plans/.

    Returns:
        The validated ``FormulaPlan``.

    Raises:
        FileNotFoundError: If no plan file is found.
        PlanDocumentError: If the document is malformed.
        InvalidFormulaPlanError: If validation reports errors.
        ConfigIntegrityError: If a pin file exists and does not match.
    """
    path = find_plan_file(plan, plans_dir)
    formula_plan = load_plan(path)

    validation = validate_formula_plan(formula_plan)
    if not validation.is_valid:
        raise InvalidFormulaPlanError(validation.errors)

    fingerprint = compute_plan_fingerprint(formula_plan)
    verify_fingerprint_pin(
        plan_id=path.stem,
        fingerprint=fingerprint,
        plan_path=path,
    )

    _logger.info(
        "FORMULA_CONFIG_TRACE",
        extra={
            "trace_type": "FORMULA_CONFIG_TRACE",
            "plan_id": path.stem,
            "fingerprint": fingerprint,
            "approved": read_pinned_fingerprint(path) is not None,
            "variable_count": len(formula_plan.variables),
            "step_count": len(formula_plan.steps),
            "output_variable": formula_plan.output_variable,
            "warning_count": len(validation.warnings),
        },
    )
    return formula_plan


def find_plan_file(plan: str | Path, plans_dir: Path | None = None) -> Path:
    """Resolve a plan path or plan name to an existing file.

    Raises:
        FileNotFoundError: If nothing matches.
    """
    candidate = Path(plan)
    if candidate.is_file():
        return candidate

    search_dir = plans_dir or _DEFAULT_PLANS_DIR
    for suffix in PLAN_FILE_SUFFIXES:
        named = search_dir / f"{plan}{suffix}"
        if named.is_file():
            return named
    raise FileNotFoundError(f"Formula plan not found: {plan} (searched {search_dir})")

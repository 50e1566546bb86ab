"""
payroll_engines.payroll_run -- Evaluate one formula plan for many employees.

Contract:
    ``run_payroll(plan, units)`` validates the plan once, then evaluates it
    for every ``PayrollUnit`` (typically one employee for one pay period).

Invariants enforced:
    - Per-unit isolation: an evaluation error in one unit is recorded on
      that unit's ``PayrollItemResult`` and never aborts the batch.
    - Invalid plans fail the whole run up front with
      ``InvalidFormulaPlanError``; no unit is evaluated.
    - Results come back in input order regardless of ``max_workers``.
    - Plans are immutable, so units may be evaluated on a thread pool
      without locking.

Follows the shape of batch item/run DTOs: frozen dataclasses with enum
status fields and tuples for immutable collections.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

from payroll_engines.formula.evaluator import evaluate_plan
from payroll_engines.formula.types import FormulaPlan, StepTrace, Value
from payroll_engines.formula.validator import validate_formula_plan
from payroll_kernel.exceptions import FormulaEvaluationError, InvalidFormulaPlanError
from payroll_kernel.logging_config import LogContext, get_logger

logger = get_logger("engines.payroll_run")


class PayrollItemStatus(str, Enum):
    """Outcome of evaluating the plan for one unit."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PayrollRunStatus(str, Enum):
    """Outcome of the whole run."""

    COMPLETED = "completed"  # Every unit succeeded (or there were none)
    PARTIALLY_COMPLETED = "partially_completed"  # Some units failed
    FAILED = "failed"  # Every unit failed


@dataclass(frozen=True)
class PayrollUnit:
    """One evaluation: a business key plus its bindings."""

    key: str  # Business identifier (e.g., employee id)
    bindings: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PayrollItemResult:
    item_index: int  # 0-indexed position in the run
    item_key: str
    status: PayrollItemStatus
    value: Value | None = None
    steps: tuple[StepTrace, ...] = ()
    error_code: str | None = None
    error_message: str | None = None
    error_step_id: str | None = None
    error_operator: str | None = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == PayrollItemStatus.SUCCEEDED


@dataclass(frozen=True)
class PayrollRunResult:
    """Immutable result of a complete payroll run."""

    run_id: str
    status: PayrollRunStatus
    output_variable: str
    total_items: int
    succeeded: int
    failed: int
    item_results: tuple[PayrollItemResult, ...] = ()
    duration_ms: float = 0.0

    def values(self) -> dict[str, Value]:
        """Output value per unit key, for units that succeeded."""
        return {
            item.item_key: item.value
            for item in self.item_results
            if item.succeeded and item.value is not None
        }

    def failures(self) -> tuple[PayrollItemResult, ...]:
        return tuple(item for item in self.item_results if not item.succeeded)


def run_payroll(
    plan: FormulaPlan,
    units: Iterable[PayrollUnit],
    max_workers: int = 1,
    run_id: str | None = None,
) -> PayrollRunResult:
    """
    Evaluate ``plan`` for every unit.

    Args:
        plan: The formula plan, validated once before any unit runs.
        units: Units to evaluate, in the order results should be returned.
        max_workers: Thread pool size; 1 evaluates sequentially.
        run_id: Identifier for log correlation. Generated when omitted.

    Raises:
        InvalidFormulaPlanError: the plan has validation errors.
        ValueError: ``max_workers`` is less than 1.
    """
    if max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {max_workers}")

    run_id = run_id or str(uuid4())
    unit_list = list(units)

    validation = validate_formula_plan(plan)
    if not validation.is_valid:
        logger.warning(
            "payroll_run_rejected",
            extra={"run_id": run_id, "error_codes": sorted(validation.codes())},
        )
        raise InvalidFormulaPlanError(validation.errors)

    t0 = time.monotonic()
    with LogContext.bind(run_id=run_id):
        logger.info(
            "payroll_run_started",
            extra={"unit_count": len(unit_list), "max_workers": max_workers},
        )

        if max_workers == 1 or len(unit_list) <= 1:
            items = [
                _evaluate_unit(plan, index, unit, run_id)
                for index, unit in enumerate(unit_list)
            ]
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                futures = [
                    pool.submit(_evaluate_unit, plan, index, unit, run_id)
                    for index, unit in enumerate(unit_list)
                ]
                items = [future.result() for future in futures]

        succeeded = sum(1 for item in items if item.succeeded)
        failed = len(items) - succeeded
        status = _run_status(succeeded, failed)
        duration_ms = round((time.monotonic() - t0) * 1000, 3)

        logger.info(
            "payroll_run_completed",
            extra={
                "status": status.value,
                "succeeded": succeeded,
                "failed": failed,
                "duration_ms": duration_ms,
            },
        )

    return PayrollRunResult(
        run_id=run_id,
        status=status,
        output_variable=plan.output_variable,
        total_items=len(items),
        succeeded=succeeded,
        failed=failed,
        item_results=tuple(items),
        duration_ms=duration_ms,
    )


def _evaluate_unit(
    plan: FormulaPlan,
    index: int,
    unit: PayrollUnit,
    run_id: str,
) -> PayrollItemResult:
    # Pool threads start with an empty LogContext; rebind the run id.
    t0 = time.monotonic()
    with LogContext.bind(run_id=run_id, employee_id=unit.key):
        try:
            result = evaluate_plan(plan=plan, bindings=unit.bindings)
        except FormulaEvaluationError as exc:
            logger.warning(
                "payroll_unit_failed",
                extra={
                    "item_index": index,
                    "error_code": exc.code,
                    "step_id": exc.step_id,
                },
            )
            return PayrollItemResult(
                item_index=index,
                item_key=unit.key,
                status=PayrollItemStatus.FAILED,
                error_code=exc.code,
                error_message=exc.detail,
                error_step_id=exc.step_id,
                error_operator=exc.operator,
                duration_ms=round((time.monotonic() - t0) * 1000, 3),
            )

    return PayrollItemResult(
        item_index=index,
        item_key=unit.key,
        status=PayrollItemStatus.SUCCEEDED,
        value=result.value,
        steps=result.steps,
        duration_ms=round((time.monotonic() - t0) * 1000, 3),
    )


def _run_status(succeeded: int, failed: int) -> PayrollRunStatus:
    if failed == 0:
        return PayrollRunStatus.COMPLETED
    if succeeded == 0:
        return PayrollRunStatus.FAILED
    return PayrollRunStatus.PARTIALLY_COMPLETED

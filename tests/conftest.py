"""
Pytest fixtures for the payroll formula engine test suite.

Provides:
- Structured logging configured once per session, LogContext cleared per test
- ``captured_logs`` for asserting on emitted log events
- Sample formula plans built in code and loaded from payroll_config/plans
- An in-memory SQLite session for the plan store
"""

import json
import logging
from datetime import UTC, datetime
from decimal import Decimal
from io import StringIO
from pathlib import Path
from uuid import uuid4

import pytest

from payroll_engines.formula.types import (
    CalculationStep,
    FormulaPlan,
    Variable,
    VariableSource,
    op,
)
from payroll_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from payroll_kernel.domain.clock import DeterministicClock
from payroll_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

# Test actor ID for all store operations
TEST_ACTOR_ID = uuid4()

PLANS_DIR = Path(__file__).resolve().parent.parent / "payroll_config" / "plans"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture payroll_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            run(plan, bindings)
            logs = captured_logs()
            assert any(r["message"] == "formula_plan_evaluated" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("payroll_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Plan fixtures
# =============================================================================


@pytest.fixture
def doubling_plan() -> FormulaPlan:
    """output = x * 2"""
    return FormulaPlan(
        variables=(Variable("x"),),
        steps=(CalculationStep("s1", "Double", op("multiply", "x", 2), result="doubled"),),
        output_variable="doubled",
    )


@pytest.fixture
def commission_plan() -> FormulaPlan:
    """
    total = base + percent(sales, rate) + (sales >= target ? bonus : 0)

    Steps are authored out of dependency order on purpose.
    """
    return FormulaPlan(
        variables=(
            Variable("base_salary", VariableSource.EMPLOYEE, path="contract.base_salary"),
            Variable("sales_total", VariableSource.SALES, path="total"),
            Variable("commission_rate", default_value=Decimal("5")),
            Variable("sales_target", default_value=Decimal("15000")),
            Variable("target_bonus_amount", default_value=Decimal("500")),
        ),
        steps=(
            CalculationStep(
                "total",
                "Total salary",
                op("add", "base_salary", "commission", "target_bonus"),
                result="total_salary",
            ),
            CalculationStep(
                "commission",
                "Commission",
                op("percent", "sales_total", "commission_rate"),
                result="commission",
            ),
            CalculationStep(
                "target_bonus",
                "Target bonus",
                op(
                    "if",
                    op("greaterThanOrEqual", "sales_total", "sales_target"),
                    "target_bonus_amount",
                    0,
                ),
                result="target_bonus",
            ),
        ),
        output_variable="total_salary",
    )


@pytest.fixture
def sample_plan_path() -> Path:
    return PLANS_DIR / "sales_commission.yaml"


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 1, 31, 17, 0, tzinfo=UTC))


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test."""
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    session = get_session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        drop_tables()
        reset_engine()


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID

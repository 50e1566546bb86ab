"""
payroll_services -- stateful services over the formula engine.

Responsibility:
    Services that compose the pure formula engine (payroll_engines/) and
    plan documents (payroll_config/) with database sessions and wall-clock
    time. This is the only layer that may hold database sessions.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        payroll_services/ -> payroll_engines/, payroll_config/, payroll_kernel/  (allowed)
        payroll_engines/  -> payroll_services/ (FORBIDDEN)
        payroll_kernel/   -> payroll_services/ (FORBIDDEN)
"""

from payroll_kernel.logging_config import get_logger

logger = get_logger("services")

from payroll_services.formula_plan_store import FormulaPlanStore, StoredFormulaPlan

__all__ = [
    "FormulaPlanStore",
    "StoredFormulaPlan",
]

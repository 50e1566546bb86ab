"""ORM models for the payroll kernel."""

from payroll_kernel.models.formula_plan import FormulaPlanModel

__all__ = ["FormulaPlanModel"]

"""
Module: payroll_kernel.models.formula_plan
Responsibility: ORM persistence for formula plan snapshots.  Each row is one
    immutable version of a named plan: the plan document as JSON plus its
    fingerprint.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, domain/, or outer layers.

Invariants enforced:
    Append-only versions -- a saved version is never updated; edits create
        version + 1 (enforced at service layer, not ORM).
    Version uniqueness -- (plan_key, version) is unique
        (uq_formula_plan_key_version).

Failure modes:
    - IntegrityError on duplicate (plan_key, version), e.g. two writers that
      both skipped the expected_version check.

Audit relevance:
    A computed salary can be traced to the exact plan version and
    fingerprint that produced it.
"""

from typing import Any

from sqlalchemy import JSON, Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TrackedBase


class FormulaPlanModel(TrackedBase):
    """
    One stored version of a formula plan.

    ``document`` holds the plan exactly as ``plan_to_document`` rendered it;
    reads parse it into a fresh immutable ``FormulaPlan``.
    """

    __tablename__ = "formula_plans"

    __table_args__ = (
        UniqueConstraint("plan_key", "version", name="uq_formula_plan_key_version"),
        Index("idx_formula_plan_key", "plan_key"),
    )

    plan_key: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    is_template: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<FormulaPlanModel {self.plan_key} v{self.version}>"

"""
FormulaPlanStore -- versioned snapshots of formula plans.

Responsibility:
    Saves formula plans as append-only versions keyed by ``plan_key`` and
    reads them back as fresh immutable ``FormulaPlan`` values.

Architecture position:
    Services -- imperative shell over ``formula_plans``.
    Called by plan editors (save) and payroll runs (get).

Invariants enforced:
    - Only valid plans are stored: every save re-runs
      ``validate_formula_plan`` and raises ``InvalidFormulaPlanError``.
    - Append-only: a stored version is never modified; each change is
      version + 1.
    - Optimistic concurrency: a save with ``expected_version`` that does
      not match the current version raises ``PlanVersionConflictError``.
    - Snapshot reads: each read parses the stored document into a new
      ``FormulaPlan``, so a running payroll never observes a later edit.
    - Flush-only: never commits or rolls back the session.
    - All timestamps come from the injected Clock.

Failure modes:
    - FormulaPlanNotFoundError: no plan (or version) for the key.
    - PlanVersionConflictError: stale ``expected_version``.
    - InvalidFormulaPlanError: plan has validation errors.

Audit relevance:
    Saves are logged with plan key, version, fingerprint and actor.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from payroll_config.integrity import compute_plan_fingerprint
from payroll_config.loader import parse_plan_document, plan_to_document
from payroll_engines.formula.types import FormulaPlan
from payroll_engines.formula.validator import validate_formula_plan
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.exceptions import (
    FormulaPlanNotFoundError,
    InvalidFormulaPlanError,
    PlanVersionConflictError,
)
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.formula_plan import FormulaPlanModel

logger = get_logger("services.formula_plan_store")


@dataclass(frozen=True)
class StoredFormulaPlan:
    """
    Immutable DTO for one stored plan version.

    Pure domain object, no ORM dependencies.
    """

    id: UUID
    plan_key: str
    version: int
    name: str
    description: str | None
    plan: FormulaPlan
    fingerprint: str
    is_template: bool
    created_at: datetime
    created_by_id: UUID


class FormulaPlanStore:
    """
    Versioned formula plan persistence.

    Contract:
        - ``save()`` validates and appends a new version.
        - ``get()`` / ``get_version()`` / ``list_versions()`` read snapshots.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def save(
        self,
        plan_key: str,
        plan: FormulaPlan,
        actor_id: UUID,
        name: str | None = None,
        description: str | None = None,
        is_template: bool = False,
        expected_version: int | None = None,
    ) -> StoredFormulaPlan:
        """
        Store ``plan`` as the next version of ``plan_key``.

        Saving a plan identical to the current version (same fingerprint and
        metadata) returns the current version instead of adding a new one.

        Args:
            plan_key: Stable identifier of the plan (e.g. "sales-commission").
            plan: The plan to store.
            actor_id: Who is saving.
            name: Display name; defaults to the previous version's name, then
                to ``plan_key``.
            description: Optional description.
            is_template: Whether the plan is offered as a starting point.
            expected_version: The version the caller edited; None skips the
                optimistic check. Use 0 for "must not exist yet".

        Raises:
            InvalidFormulaPlanError: the plan has validation errors.
            PlanVersionConflictError: ``expected_version`` is stale.
        """
        validation = validate_formula_plan(plan)
        if not validation.is_valid:
            logger.warning(
                "formula_plan_save_rejected",
                extra={"plan_key": plan_key, "error_codes": sorted(validation.codes())},
            )
            raise InvalidFormulaPlanError(validation.errors)

        current = self._latest(plan_key)
        current_version = current.version if current is not None else 0
        if expected_version is not None and expected_version != current_version:
            raise PlanVersionConflictError(plan_key, expected_version, current_version)

        fingerprint = compute_plan_fingerprint(plan)
        resolved_name = name or (current.name if current is not None else plan_key)

        if (
            current is not None
            and current.fingerprint == fingerprint
            and current.name == resolved_name
            and current.description == description
            and current.is_template == is_template
        ):
            logger.info(
                "formula_plan_unchanged",
                extra={"plan_key": plan_key, "version": current_version},
            )
            return self._to_dto(current)

        model = FormulaPlanModel(
            plan_key=plan_key,
            version=current_version + 1,
            name=resolved_name,
            description=description,
            document=plan_to_document(plan),
            fingerprint=fingerprint,
            is_template=is_template,
            created_at=self._clock.now(),
            updated_at=self._clock.now(),
            created_by_id=actor_id,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "formula_plan_saved",
            extra={
                "plan_key": plan_key,
                "version": model.version,
                "fingerprint": fingerprint,
                "actor_id": str(actor_id),
                "warning_count": len(validation.warnings),
            },
        )
        return self._to_dto(model)

    def get(self, plan_key: str) -> StoredFormulaPlan:
        """Latest version of ``plan_key``.

        Raises:
            FormulaPlanNotFoundError: nothing stored under ``plan_key``.
        """
        model = self._latest(plan_key)
        if model is None:
            raise FormulaPlanNotFoundError(plan_key)
        return self._to_dto(model)

    def get_version(self, plan_key: str, version: int) -> StoredFormulaPlan:
        model = self.session.scalars(
            select(FormulaPlanModel).where(
                FormulaPlanModel.plan_key == plan_key,
                FormulaPlanModel.version == version,
            )
        ).first()
        if model is None:
            raise FormulaPlanNotFoundError(plan_key, version)
        return self._to_dto(model)

    def list_versions(self, plan_key: str) -> tuple[StoredFormulaPlan, ...]:
        """Every version of ``plan_key``, oldest first. Empty if none."""
        models = self.session.scalars(
            select(FormulaPlanModel)
            .where(FormulaPlanModel.plan_key == plan_key)
            .order_by(FormulaPlanModel.version)
        ).all()
        return tuple(self._to_dto(m) for m in models)

    def list_plan_keys(self, templates_only: bool = False) -> tuple[str, ...]:
        if not templates_only:
            stmt = (
                select(FormulaPlanModel.plan_key)
                .distinct()
                .order_by(FormulaPlanModel.plan_key)
            )
        else:
            # A key is a template when its latest version is.
            latest = (
                select(
                    FormulaPlanModel.plan_key,
                    func.max(FormulaPlanModel.version).label("version"),
                )
                .group_by(FormulaPlanModel.plan_key)
                .subquery()
            )
            stmt = (
                select(FormulaPlanModel.plan_key)
                .join(
                    latest,
                    (FormulaPlanModel.plan_key == latest.c.plan_key)
                    & (FormulaPlanModel.version == latest.c.version),
                )
                .where(FormulaPlanModel.is_template.is_(True))
                .order_by(FormulaPlanModel.plan_key)
            )
        return tuple(self.session.scalars(stmt).all())

    def _latest(self, plan_key: str) -> FormulaPlanModel | None:
        return self.session.scalars(
            select(FormulaPlanModel)
            .where(FormulaPlanModel.plan_key == plan_key)
            .order_by(FormulaPlanModel.version.desc())
            .limit(1)
        ).first()

    @staticmethod
    def _to_dto(model: FormulaPlanModel) -> StoredFormulaPlan:
        return StoredFormulaPlan(
            id=model.id,
            plan_key=model.plan_key,
            version=model.version,
            name=model.name,
            description=model.description,
            plan=parse_plan_document(model.document),
            fingerprint=model.fingerprint,
            is_template=model.is_template,
            created_at=model.created_at,
            created_by_id=model.created_by_id,
        )

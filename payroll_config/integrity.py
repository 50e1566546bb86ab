"""
Plan Integrity -- fingerprint pinning for approved formula plans.

When a plan file ``<plan>.yaml`` has a sibling ``<plan>.yaml.approved``,
the fingerprint of the parsed plan must match the pinned value. This
prevents unauthorized or accidental edits to a plan that payroll has
signed off.

The pin file is a single line: the SHA-256 hex string produced by
``compute_plan_fingerprint``. The fingerprint covers the canonical
document rendered from the parsed plan, so reformatting the file or
reordering keys does not break the pin; changing a number does.

If no pin file exists, the check is skipped (draft workflow).
"""

from __future__ import annotations

from pathlib import Path

from payroll_config.loader import compute_checksum, plan_to_document
from payroll_engines.formula.types import FormulaPlan

PINFILE_SUFFIX = ".approved"


class ConfigIntegrityError(Exception):
    """Plan fingerprint does not match the approved pin.

    Attributes:
        plan_id: The plan identifier (file stem).
        expected: The pinned (approved) fingerprint.
        actual: The computed fingerprint.
        pin_path: Path to the pin file.
    """

    code: str = "CONFIG_INTEGRITY_MISMATCH"

    def __init__(
        self,
        plan_id: str,
        expected: str,
        actual: str,
        pin_path: Path,
    ):
        self.plan_id = plan_id
        self.expected = expected
        self.actual = actual
        self.pin_path = pin_path
        super().__init__(
            f"Plan integrity check failed for '{plan_id}': "
            f"pinned fingerprint {expected[:16]}... != "
            f"computed fingerprint {actual[:16]}... "
            f"(pin file: {pin_path})"
        )


def compute_plan_fingerprint(plan: FormulaPlan) -> str:
    """SHA-256 of the plan's canonical document."""
    return compute_checksum(plan_to_document(plan))


def pin_path_for(plan_path: Path) -> Path:
    return plan_path.with_name(plan_path.name + PINFILE_SUFFIX)


def read_pinned_fingerprint(plan_path: Path) -> str | None:
    """Read the pin file for a plan file.

    Returns:
        The pinned SHA-256 hex string, or None if no pin file exists.
    """
    pin_path = pin_path_for(plan_path)
    if not pin_path.is_file():
        return None
    return pin_path.read_text().strip()


def write_fingerprint_pin(plan_path: Path, fingerprint: str) -> Path:
    """Approve a plan by writing its fingerprint next to it."""
    pin_path = pin_path_for(plan_path)
    pin_path.write_text(fingerprint + "\n")
    return pin_path


def verify_fingerprint_pin(
    plan_id: str,
    fingerprint: str,
    plan_path: Path,
) -> None:
    """Verify that the plan fingerprint matches the pin file.

    No-op if no pin file exists.

    Raises:
        ConfigIntegrityError: If pin exists and fingerprint does not match.
    """
    pinned = read_pinned_fingerprint(plan_path)
    if pinned is None:
        return

    if fingerprint != pinned:
        raise ConfigIntegrityError(
            plan_id=plan_id,
            expected=pinned,
            actual=fingerprint,
            pin_path=pin_path_for(plan_path),
        )

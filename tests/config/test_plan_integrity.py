"""
Tests for plan fingerprint pinning and the load_formula_plan entrypoint.

Covers:
- Fingerprints are stable across formatting and change with content
- Pin files approve a plan; a mismatch is ConfigIntegrityError
- load_formula_plan validates, verifies and emits FORMULA_CONFIG_TRACE
- Plan lookup by path and by name
"""

import shutil

import pytest
import yaml

from payroll_config import find_plan_file, load_formula_plan
from payroll_config.integrity import (
    ConfigIntegrityError,
    compute_plan_fingerprint,
    pin_path_for,
    read_pinned_fingerprint,
    verify_fingerprint_pin,
    write_fingerprint_pin,
)
from payroll_config.loader import load_plan, load_plan_file
from payroll_kernel.exceptions import InvalidFormulaPlanError


@pytest.fixture
def plans_dir(tmp_path, sample_plan_path):
    shutil.copy(sample_plan_path, tmp_path / "sales_commission.yaml")
    return tmp_path


def rewrite(path, mutate):
    data = load_plan_file(path)
    mutate(data)
    path.write_text(yaml.safe_dump(data, sort_keys=False))


class TestFingerprint:
    def test_reformatting_keeps_the_fingerprint(self, plans_dir):
        path = plans_dir / "sales_commission.yaml"
        before = compute_plan_fingerprint(load_plan(path))

        # Drops comments and flow style, reorders top-level keys
        rewrite(path, lambda data: data)
        data = load_plan_file(path)
        path.write_text(yaml.safe_dump(dict(reversed(list(data.items())))))

        assert compute_plan_fingerprint(load_plan(path)) == before

    def test_changing_a_number_changes_the_fingerprint(self, plans_dir):
        path = plans_dir / "sales_commission.yaml"
        before = compute_plan_fingerprint(load_plan(path))

        rewrite(path, lambda data: data["variables"][2].update(defaultValue=6))

        assert compute_plan_fingerprint(load_plan(path)) != before


class TestPinFiles:
    def test_no_pin_is_a_draft(self, plans_dir):
        path = plans_dir / "sales_commission.yaml"

        assert read_pinned_fingerprint(path) is None
        verify_fingerprint_pin("sales_commission", "anything", path)

    def test_write_and_read_pin(self, plans_dir):
        path = plans_dir / "sales_commission.yaml"

        pin = write_fingerprint_pin(path, "abc123")

        assert pin == pin_path_for(path)
        assert pin.name == "sales_commission.yaml.approved"
        assert read_pinned_fingerprint(path) == "abc123"

    def test_mismatch_raises(self, plans_dir):
        path = plans_dir / "sales_commission.yaml"
        write_fingerprint_pin(path, "0" * 64)

        with pytest.raises(ConfigIntegrityError) as exc_info:
            verify_fingerprint_pin("sales_commission", "1" * 64, path)

        assert exc_info.value.code == "CONFIG_INTEGRITY_MISMATCH"
        assert exc_info.value.expected == "0" * 64
        assert exc_info.value.actual == "1" * 64


class TestLoadFormulaPlan:
    def test_load_by_name(self, plans_dir):
        plan = load_formula_plan("sales_commission", plans_dir=plans_dir)
        assert plan.output_variable == "total_salary"

    def test_load_from_default_directory(self):
        assert load_formula_plan("sales_commission").output_variable == "total_salary"

    def test_approved_plan_loads(self, plans_dir):
        path = plans_dir / "sales_commission.yaml"
        write_fingerprint_pin(path, compute_plan_fingerprint(load_plan(path)))

        assert load_formula_plan(path).output_variable == "total_salary"

    def test_edited_approved_plan_is_rejected(self, plans_dir):
        path = plans_dir / "sales_commission.yaml"
        write_fingerprint_pin(path, compute_plan_fingerprint(load_plan(path)))
        rewrite(path, lambda data: data["variables"][2].update(defaultValue=50))

        with pytest.raises(ConfigIntegrityError):
            load_formula_plan(path)

    def test_invalid_plan_is_rejected(self, plans_dir):
        path = plans_dir / "sales_commission.yaml"
        rewrite(path, lambda data: data.update(outputVariable="net_salary"))

        with pytest.raises(InvalidFormulaPlanError) as exc_info:
            load_formula_plan(path)

        assert "MISSING_OUTPUT" in {i.code for i in exc_info.value.issues}

    def test_config_trace(self, plans_dir, captured_logs):
        path = plans_dir / "sales_commission.yaml"
        fingerprint = compute_plan_fingerprint(load_plan(path))
        write_fingerprint_pin(path, fingerprint)

        load_formula_plan(path)

        trace = [r for r in captured_logs() if r["message"] == "FORMULA_CONFIG_TRACE"][0]
        assert trace["plan_id"] == "sales_commission"
        assert trace["fingerprint"] == fingerprint
        assert trace["approved"] is True
        assert trace["variable_count"] == 7
        assert trace["step_count"] == 4


class TestFindPlanFile:
    def test_existing_path(self, sample_plan_path):
        assert find_plan_file(sample_plan_path) == sample_plan_path

    def test_yml_suffix(self, tmp_path, sample_plan_path):
        shutil.copy(sample_plan_path, tmp_path / "other.yml")
        assert find_plan_file("other", plans_dir=tmp_path) == tmp_path / "other.yml"

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            find_plan_file("nope", plans_dir=tmp_path)

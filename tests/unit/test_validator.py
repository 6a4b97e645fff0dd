"""
Unit Tests - Constraint Validator

Tests for constraint parsing and change validation.
"""

import pytest

from goalengine.core.types import Change, ChangeType


def change(path: str, patch: str = "", type: ChangeType = ChangeType.MODIFY) -> Change:
    return Change(file_path=path, type=type, patch=patch)


class TestParseConstraint:
    """Tests for constraint classification."""

    @pytest.mark.parametrize(
        "text, kind",
        [
            ("Do not change the public API", "api"),
            ("Keep backward compatibility", "compatibility"),
            ("Maintain test coverage", "testing"),
            ("No new dependencies", "dependencies"),
            ("Be nice", "custom"),
        ],
    )
    def test_kinds(self, text, kind):
        """Test each constraint text maps to one check."""
        from goalengine.agent_core.validator import parse_constraint

        assert parse_constraint(text).kind.value == kind

    def test_blank_constraints_ignored(self):
        """Test whitespace-only constraints are dropped."""
        from goalengine.agent_core import ConstraintValidator

        assert ConstraintValidator(["", "  "]).constraints == []


class TestValidateChanges:
    """Tests for ConstraintValidator.validate_changes."""

    def test_public_api_addition(self):
        """Test adding a public function violates an API constraint."""
        from goalengine.agent_core import ConstraintValidator

        validator = ConstraintValidator(["Do not change the public API"])
        violations = validator.validate_changes([change("lib/core.py", "+def export_all():\n+    pass\n")])

        assert len(violations) == 1
        assert violations[0].file_path == "lib/core.py"
        assert "export_all" in violations[0].message

    def test_private_helper_allowed(self):
        """Test private helpers do not touch the public API."""
        from goalengine.agent_core import ConstraintValidator

        validator = ConstraintValidator(["Do not change the public API"])
        assert validator.validate_changes([change("lib/core.py", "+def _helper():\n+    pass\n")]) == []

    def test_go_exported_symbol(self):
        """Test Go exported names count as public."""
        from goalengine.agent_core import ConstraintValidator

        validator = ConstraintValidator(["stable api"])
        violations = validator.validate_changes([change("pkg/agent.go", "-func (a *Agent) Run() error {\n")])

        assert "removes public definition Run" in violations[0].message

    def test_backward_compat_deletion(self):
        """Test deleting a source file breaks compatibility."""
        from goalengine.agent_core import ConstraintValidator

        validator = ConstraintValidator(["Preserve backward compatibility"])
        violations = validator.validate_changes([change("lib/old.py", type=ChangeType.DELETE)])

        assert violations[0].message == "deletes a source file"

    def test_tests_required(self):
        """Test a source change needs a test change in the same batch."""
        from goalengine.agent_core import ConstraintValidator

        validator = ConstraintValidator(["Include tests"])
        src = change("app/service.py", "+x = 1\n")

        assert len(validator.validate_changes([src])) == 1
        assert validator.validate_changes([src, change("tests/test_service.py", "+def test_x(): pass\n")]) == []

    def test_no_new_dependencies(self):
        """Test manifests and new imports are flagged."""
        from goalengine.agent_core import ConstraintValidator

        validator = ConstraintValidator(["No new dependencies"])

        assert validator.validate_changes([change("requirements.txt", "+requests\n")])
        assert validator.validate_changes([change("app/x.py", "+import requests\n")])
        assert validator.validate_changes([change("app/x.py", "+value = 1\n")]) == []

    def test_custom_never_flags(self):
        """Test custom constraints pass every change."""
        from goalengine.agent_core import ConstraintValidator

        validator = ConstraintValidator(["Follow the style guide"])
        assert validator.validate_changes([change("a.py", "+def public(): pass\n")]) == []

    def test_check_changes_raises(self):
        """Test the raising variant reports the first violation."""
        from goalengine.agent_core import ConstraintValidator
        from goalengine.core.exceptions import ConstraintViolationError

        validator = ConstraintValidator(["No new dependencies"])

        with pytest.raises(ConstraintViolationError) as exc_info:
            validator.check_changes([change("go.mod", "+require x v1\n")])

        assert exc_info.value.context["kind"] == "dependencies"


class TestTestFileDetection:
    """Tests for is_test_file."""

    @pytest.mark.parametrize(
        "path, expected",
        [
            ("tests/test_a.py", True),
            ("pkg/agent_test.go", True),
            ("web/app.spec.ts", True),
            ("src/app.py", False),
        ],
    )
    def test_paths(self, path, expected):
        """Test common test file conventions."""
        from goalengine.agent_core.validator import is_test_file

        assert is_test_file(path) is expected

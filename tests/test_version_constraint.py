"""
Tests for version constraint evaluation.
"""

import pytest

from envorch.core.services.version_constraint import (
    check_version_constraint,
    is_valid_constraint,
    parse_version,
    satisfies,
    satisfies_all,
)


class TestParseVersion:
    def test_full(self):
        assert parse_version("1.2.3") == (1, 2, 3)

    def test_partial_is_padded(self):
        assert parse_version("2") == (2, 0, 0)
        assert parse_version("2.5") == (2, 5, 0)

    def test_leading_v(self):
        assert parse_version("v1.0.4") == (1, 0, 4)

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_version("1.2.3.4")
        with pytest.raises(ValueError):
            parse_version("latest")


class TestSatisfies:
    @pytest.mark.parametrize("constraint", ["*", "", "latest"])
    def test_any(self, constraint):
        assert satisfies("0.0.1", constraint)
        assert satisfies("9.9.9", constraint)

    def test_exact(self):
        assert satisfies("1.2.3", "1.2.3")
        assert not satisfies("1.2.4", "1.2.3")

    def test_partial_prefix(self):
        assert satisfies("1.2.9", "1.2")
        assert satisfies("1.2.0", "1.2.x")
        assert not satisfies("1.3.0", "1.2")
        assert satisfies("1.9.0", "1")
        assert not satisfies("2.0.0", "1.x")

    def test_comparators(self):
        assert satisfies("2.0.0", ">=1.5")
        assert not satisfies("1.4.9", ">=1.5")
        assert satisfies("1.0.1", ">1.0.0")
        assert not satisfies("1.0.0", ">1.0.0")
        assert satisfies("2.0.0", "<=2")
        assert not satisfies("2.0.0", "<2")
        assert satisfies("1.0.0", "!=1.0.1")
        assert satisfies("1.0.0", "==1.0.0")

    def test_caret(self):
        assert satisfies("1.9.0", "^1.2.3")
        assert not satisfies("2.0.0", "^1.2.3")
        assert not satisfies("1.2.2", "^1.2.3")
        # Zero major: the minor is the boundary
        assert satisfies("0.2.9", "^0.2.3")
        assert not satisfies("0.3.0", "^0.2.3")

    def test_tilde(self):
        assert satisfies("1.2.9", "~1.2.3")
        assert not satisfies("1.3.0", "~1.2.3")
        assert satisfies("1.8.0", "~1")

    def test_conjunction(self):
        assert satisfies("1.5.0", ">=1.0, <2.0")
        assert not satisfies("2.0.0", ">=1.0, <2.0")

    def test_satisfies_all(self):
        assert satisfies_all("1.4.0", ["^1.0.0", ">=1.3", "!=1.3.5"])
        assert not satisfies_all("1.4.0", ["^1.0.0", "<1.4"])
        assert satisfies_all("1.4.0", [])


class TestValidity:
    @pytest.mark.parametrize("constraint", ["^1.0.0", ">=1, <2", "1.x", "~0.3", "*"])
    def test_valid(self, constraint):
        assert is_valid_constraint(constraint)

    @pytest.mark.parametrize("constraint", ["abc", ">=1.x", "=>1.0", "^", "1.2.3.4"])
    def test_invalid(self, constraint):
        assert not is_valid_constraint(constraint)

    def test_check_reports_message(self):
        assert check_version_constraint("1.0.0", "^1.0.0") == {"valid": True}
        result = check_version_constraint("2.0.0", "^1.0.0")
        assert result["valid"] is False
        assert "2.0.0" in result["message"]

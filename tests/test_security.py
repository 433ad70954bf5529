"""Tests for shellmcp.security (SecurityValidator, ValidationResult)."""

from __future__ import annotations

import pytest

from shellmcp.config import SecurityConfig
from shellmcp.security import SecurityValidator, ValidationResult


# ---------------------------------------------------------------------------
# validate — defaults
# ---------------------------------------------------------------------------


class TestValidateDefaults:
    def test_plain_command_passes(self) -> None:
        assert SecurityValidator().validate("SELECT * FROM users").valid

    @pytest.mark.parametrize(
        "text, operator",
        [
            ("ls && whoami", "&&"),
            ("true || false", "||"),
            ("echo hi >> log", ">>"),
            ("echo $(id)", "$("),
            ("a; b", ";"),
            ("cat x | grep y", "|"),
            ("echo `id`", "`"),
            ("sleep 10 &", "&"),
        ],
    )
    def test_shell_operators_rejected(self, text: str, operator: str) -> None:
        result = SecurityValidator().validate(text)
        assert not result.valid
        assert result.reason == f"Command contains potentially dangerous operator: {operator}"

    def test_longest_operator_named_first(self) -> None:
        result = SecurityValidator().validate("a && b")
        assert result.reason is not None and result.reason.endswith("&&")

    def test_traversal_rejected(self) -> None:
        result = SecurityValidator().validate("cat ../etc/passwd")
        assert not result.valid
        assert "directory traversal" in (result.reason or "")

    def test_windows_traversal_rejected(self) -> None:
        assert not SecurityValidator().validate("type ..\\secret").valid

    @pytest.mark.parametrize("text", ["rm -rf /tmp/x", "mv a b", "cp a b", "RMDIR foo"])
    def test_file_operations_rejected(self, text: str) -> None:
        result = SecurityValidator().validate(text)
        assert not result.valid
        assert (result.reason or "").startswith("File operation not allowed")

    def test_empty_text_passes(self) -> None:
        assert SecurityValidator().validate("").valid

    def test_is_pure(self) -> None:
        validator = SecurityValidator()
        first = validator.validate("ls | wc")
        second = validator.validate("ls | wc")
        assert first == second


# ---------------------------------------------------------------------------
# validate — configured
# ---------------------------------------------------------------------------


class TestValidateConfigured:
    def test_allow_shell_operators(self) -> None:
        validator = SecurityValidator(SecurityConfig(allow_shell_operators=True))
        assert validator.validate("ls | wc -l").valid

    def test_traversal_never_allowed(self) -> None:
        validator = SecurityValidator(
            SecurityConfig(allow_shell_operators=True, allow_file_operations=True)
        )
        assert not validator.validate("cat ../x").valid

    def test_allow_file_operations(self) -> None:
        validator = SecurityValidator(SecurityConfig(allow_file_operations=True))
        assert validator.validate("rm old.txt").valid

    def test_blocked_command(self) -> None:
        validator = SecurityValidator(SecurityConfig(blocked_commands=["shutdown"]))
        result = validator.validate("shutdown now")
        assert not result.valid
        assert result.reason == "Command is blocked: shutdown"

    def test_allowed_commands(self) -> None:
        validator = SecurityValidator(SecurityConfig(allowed_commands=["ls", "cat"]))
        assert validator.validate("ls -la").valid
        result = validator.validate("whoami")
        assert not result.valid
        assert result.reason == "Command not in allowed list: whoami"

    def test_camel_case_aliases(self) -> None:
        config = SecurityConfig.model_validate(
            {"allowShellOperators": True, "blockedCommands": ["nc"]}
        )
        validator = SecurityValidator(config)
        assert validator.validate("a | b").valid
        assert not validator.validate("nc host 80").valid


# ---------------------------------------------------------------------------
# validate_argument / validate_timeout / sanitize_input
# ---------------------------------------------------------------------------


class TestArgumentAndTimeout:
    def test_safe_argument(self) -> None:
        assert SecurityValidator().validate_argument("World", "NAME").valid

    @pytest.mark.parametrize("value", ["x; id", "a|b", "a > b", "../x", "$(id)", "`id`"])
    def test_dangerous_argument(self, value: str) -> None:
        result = SecurityValidator().validate_argument(value, "NAME")
        assert not result.valid
        assert "Argument NAME contains dangerous pattern" in (result.reason or "")

    def test_timeout_bounds(self) -> None:
        validator = SecurityValidator()
        assert validator.validate_timeout(30).valid
        assert not validator.validate_timeout(0).valid
        assert not validator.validate_timeout(-1).valid
        assert not validator.validate_timeout(301).valid

    def test_timeout_cap_disabled(self) -> None:
        validator = SecurityValidator(SecurityConfig(max_timeout=0))
        assert validator.validate_timeout(10_000).valid

    def test_sanitize_input(self) -> None:
        assert SecurityValidator.sanitize_input("a\x00b\x1bc\td") == "abc\td"


class TestValidationResult:
    def test_ok(self) -> None:
        assert ValidationResult.ok() == ValidationResult(valid=True, reason=None)

    def test_reject(self) -> None:
        result = ValidationResult.reject("nope")
        assert not result.valid
        assert result.reason == "nope"

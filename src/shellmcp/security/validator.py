"""Command screening — the gate every outbound line passes through."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from shellmcp.config import SecurityConfig

logger = logging.getLogger(__name__)

# Order matters: multi-char operators first so the reason names the
# longest match.
SHELL_OPERATORS = ["&&", "||", ">>", "<<", "$(", ";", "|", ">", "<", "&", "`"]
TRAVERSAL_PATTERNS = ["../", "..\\"]
FILE_OPERATIONS = ["rm ", "del ", "rmdir", "mv ", "cp ", "copy ", "move "]

# Patterns rejected in single-command argument values regardless of config.
_ARGUMENT_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"[;&|`]"),  # chaining
    re.compile(r"[<>]"),  # redirection
    re.compile(r"\.\.[/\\]"),  # traversal
    re.compile(r"\$\("),  # command substitution
]

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str) -> ValidationResult:
        return cls(valid=False, reason=reason)


class Validator(Protocol):
    """Pure, side-effect-free text screening."""

    def validate(self, text: str) -> ValidationResult: ...

    def validate_argument(self, value: str, name: str) -> ValidationResult: ...


class SecurityValidator:
    """Rejects text that looks like command injection.

    Checks, in order: shell operators, directory traversal, file
    operations, the block list, and the allow list. Each check except
    traversal can be relaxed through :class:`SecurityConfig`.
    """

    def __init__(self, config: SecurityConfig | None = None) -> None:
        self.config = config or SecurityConfig()

    def validate(self, text: str) -> ValidationResult:
        logger.debug("Validating command: %r", text)

        if not self.config.allow_shell_operators:
            for operator in SHELL_OPERATORS:
                if operator in text:
                    return ValidationResult.reject(
                        f"Command contains potentially dangerous operator: {operator}"
                    )

        for pattern in TRAVERSAL_PATTERNS:
            if pattern in text:
                return ValidationResult.reject(
                    "Command contains directory traversal patterns"
                )

        if not self.config.allow_file_operations:
            lowered = text.lower()
            for op in FILE_OPERATIONS:
                if op in lowered:
                    return ValidationResult.reject(
                        f"File operation not allowed: {op.strip()}"
                    )

        parts = text.split()
        base_command = parts[0] if parts else ""
        if base_command in self.config.blocked_commands:
            return ValidationResult.reject(f"Command is blocked: {base_command}")

        if self.config.allowed_commands and base_command not in self.config.allowed_commands:
            return ValidationResult.reject(
                f"Command not in allowed list: {base_command}"
            )

        return ValidationResult.ok()

    def validate_argument(self, value: str, name: str) -> ValidationResult:
        """Screen a single argument value destined for a spawned command."""
        for pattern in _ARGUMENT_PATTERNS:
            if pattern.search(value):
                logger.warning(
                    "Dangerous pattern %s in argument %s", pattern.pattern, name
                )
                return ValidationResult.reject(
                    f"Argument {name} contains dangerous pattern: {pattern.pattern}"
                )
        return ValidationResult.ok()

    def validate_timeout(self, timeout: float) -> ValidationResult:
        if timeout <= 0:
            return ValidationResult.reject("Timeout must be positive")
        if self.config.max_timeout and timeout > self.config.max_timeout:
            return ValidationResult.reject(
                f"Timeout exceeds maximum allowed: {self.config.max_timeout}s"
            )
        return ValidationResult.ok()

    @staticmethod
    def sanitize_input(text: str) -> str:
        """Strip control characters other than tab, newline and CR."""
        return _CONTROL_CHARS.sub("", text)

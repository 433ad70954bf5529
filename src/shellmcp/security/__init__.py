"""Input screening applied before any text reaches a child process."""

from shellmcp.security.validator import SecurityValidator, ValidationResult, Validator

__all__ = [
    "SecurityValidator",
    "ValidationResult",
    "Validator",
]

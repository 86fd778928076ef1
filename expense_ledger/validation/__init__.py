"""Request validation package."""

from expense_ledger.validation.validator import (
    RequestValidationError,
    RequestValidator,
    ValidationErrorCode,
    ValidationIssue,
)

__all__ = [
    "RequestValidationError",
    "RequestValidator",
    "ValidationErrorCode",
    "ValidationIssue",
]

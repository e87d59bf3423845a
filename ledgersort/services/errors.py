"""
LedgerSort Error Handling

Specific error types with user-friendly messages and debugging context.
The engine's public entry points convert these into structured results;
the HTTP layer maps them to status codes.
"""
from typing import Optional, Dict, Any
from fastapi import HTTPException
from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes for client handling."""
    # Input errors (400s)
    INVALID_RECORD = "INVALID_RECORD"
    INVALID_CONFIG = "INVALID_CONFIG"
    NOT_FOUND = "NOT_FOUND"

    # Processing errors (500s)
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"

    # Dependency errors
    DEPENDENCY_UNAVAILABLE = "DEPENDENCY_UNAVAILABLE"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"


class LedgerSortError(Exception):
    """Base exception with structured error info."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        detail: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.detail = detail
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        result = {
            "error": self.code.value,
            "message": self.message
        }
        if self.detail:
            result["detail"] = self.detail
        if self.context:
            result["context"] = self.context
        return result


class ValidationError(LedgerSortError):
    """Record or pattern input is missing or unusable."""

    def __init__(self, detail: str, field: Optional[str] = None):
        super().__init__(
            code=ErrorCode.INVALID_RECORD,
            message="Invalid input",
            detail=detail,
            context={"field": field} if field else None
        )


class ConfigError(LedgerSortError):
    """Error in configuration."""

    def __init__(self, field: str, detail: str):
        super().__init__(
            code=ErrorCode.INVALID_CONFIG,
            message=f"Invalid configuration for '{field}'",
            detail=detail,
            context={"field": field}
        )


class NotFoundError(LedgerSortError):
    """Referenced category or pattern does not exist."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=f"{resource} '{identifier}' not found",
            context={"resource": resource, "id": identifier}
        )


class DependencyUnavailableError(LedgerSortError):
    """Pattern or category store could not be reached."""

    def __init__(self, dependency: str, detail: str):
        super().__init__(
            code=ErrorCode.DEPENDENCY_UNAVAILABLE,
            message=f"{dependency} unavailable",
            detail=detail,
            context={"dependency": dependency}
        )


class CircuitOpenError(LedgerSortError):
    """Circuit breaker is rejecting calls."""

    def __init__(self, detail: str = "Circuit breaker is open"):
        super().__init__(
            code=ErrorCode.CIRCUIT_OPEN,
            message="Circuit breaker is open",
            detail=detail
        )


class PersistenceError(LedgerSortError):
    """A write to the pattern store or event sink failed."""

    def __init__(self, operation: str, detail: str):
        super().__init__(
            code=ErrorCode.PERSISTENCE_FAILED,
            message=f"Persistence failed during {operation}",
            detail=detail,
            context={"operation": operation}
        )


STATUS_CODES = {
    ErrorCode.INVALID_RECORD: 400,
    ErrorCode.INVALID_CONFIG: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.PERSISTENCE_FAILED: 500,
    ErrorCode.DEPENDENCY_UNAVAILABLE: 503,
    ErrorCode.CIRCUIT_OPEN: 503,
}


def http_status_for(error: LedgerSortError) -> int:
    return STATUS_CODES.get(error.code, 500)


def to_http_exception(error: LedgerSortError) -> HTTPException:
    """Convert LedgerSortError to HTTPException."""
    return HTTPException(
        status_code=http_status_for(error),
        detail=error.to_dict()
    )

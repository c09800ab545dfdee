"""
Analytics Error Classification
==============================

Error taxonomy for the analytics core.

WHY THIS FILE EXISTS
--------------------
Failures reach the caller from three very different places:

    1. Configuration errors
       - weightedAvg measure without a weight field
       - table/field/order column not in the allow-list
       - limits out of range
       These are raised BEFORE any query is built or executed.

    2. Upstream execution errors
       - analytical store unreachable
       - query rejected (missing table, missing column, memory limit)
       These propagate untouched through the cache and the aggregators.
       Only the HTTP layer classifies them (classify_upstream_error).

    3. Cache-store errors
       - Redis unavailable
       Never raised from the cache layer, only logged.

Data-shape anomalies (non-numeric values in numeric fields) are NOT errors:
they are coerced to zero inside the generated SQL.

RELATED FILES
-------------
- frontview/analytics/security.py: Raises ConfigurationError for identifiers
- frontview/analytics/query.py: Raises ConfigurationError for measure specs
- frontview/routers/responses.py: Maps errors to HTTP responses
"""

from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Any, Dict, Optional


# =============================================================================
# ERROR CLASSIFICATION ENUMS
# =============================================================================

class ErrorCategory(Enum):
    """
    Broad classes of failure.

    Different categories get different responses: configuration errors are
    the caller's fault (400), upstream errors depend on what the store said.
    """
    CONFIGURATION = "configuration"  # Bad measure/field/table setup
    UPSTREAM = "upstream"            # Analytical store failures
    CACHE = "cache"                  # Key-value store failures (soft)
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """How loudly an error should be logged."""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Machine-readable codes for monitoring and API responses."""
    # Configuration errors
    MISSING_WEIGHT_FIELD = "ERR_001"
    UNKNOWN_AGGREGATION = "ERR_002"
    INVALID_IDENTIFIER = "ERR_003"
    UNKNOWN_FIELD = "ERR_004"
    INVALID_ORDER = "ERR_005"
    OUT_OF_RANGE = "ERR_006"
    MISSING_VALUE = "ERR_007"
    UNKNOWN_DIALECT = "ERR_008"
    DUPLICATE_KEY = "ERR_009"

    # Upstream errors
    TABLE_NOT_FOUND = "ERR_030"
    COLUMN_NOT_FOUND = "ERR_031"
    MEMORY_LIMIT = "ERR_032"
    UPSTREAM_ERROR = "ERR_039"

    INTERNAL_ERROR = "ERR_999"


# HTTP status the API layer uses for each code
HTTP_STATUS_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.TABLE_NOT_FOUND: 404,
    ErrorCode.COLUMN_NOT_FOUND: 400,
    ErrorCode.MEMORY_LIMIT: 400,
    ErrorCode.UPSTREAM_ERROR: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}


# =============================================================================
# EXCEPTIONS
# =============================================================================

@dataclass
class QueryError(Exception):
    """
    Exception carrying everything the API layer needs to answer.

    ATTRIBUTES:
        code: ErrorCode (machine-readable)
        message: Human-readable message, safe to show to dashboard users
        category: ErrorCategory
        severity: ErrorSeverity
        field_name: Which input caused the error (optional)
        suggestion: How to fix it (optional)
        details: Extra debug information

    USAGE:
        raise QueryError(
            code=ErrorCode.TABLE_NOT_FOUND,
            message="Table not found",
            category=ErrorCategory.UPSTREAM,
        )
    """
    code: ErrorCode
    message: str
    category: ErrorCategory = ErrorCategory.UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.ERROR
    field_name: Optional[str] = None
    suggestion: Optional[str] = None
    details: Dict[str, Any] = dataclass_field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def user_message(self) -> str:
        """Message plus suggestion, for API responses."""
        if self.suggestion:
            return f"{self.message}. {self.suggestion}"
        return self.message

    @property
    def http_status(self) -> int:
        if self.category == ErrorCategory.CONFIGURATION:
            return 400
        return HTTP_STATUS_BY_CODE.get(self.code, 500)

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for logging."""
        return {
            "code": self.code.value,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "field_name": self.field_name,
            "suggestion": self.suggestion,
            "details": self.details,
        }


@dataclass
class ConfigurationError(QueryError):
    """
    Raised when a request is structurally invalid for the configured tables.

    Always raised before any query is built, so the analytical store never
    sees a half-validated request.
    """
    category: ErrorCategory = ErrorCategory.CONFIGURATION


def configuration_error(
    code: ErrorCode,
    message: str,
    field_name: Optional[str] = None,
    suggestion: Optional[str] = None,
    **details: Any,
) -> ConfigurationError:
    """Shorthand used across the analytics package."""
    return ConfigurationError(
        code=code,
        message=message,
        field_name=field_name,
        suggestion=suggestion,
        details=details,
    )


# =============================================================================
# UPSTREAM CLASSIFICATION
# =============================================================================

def classify_upstream_error(exc: Exception) -> QueryError:
    """
    Turn an executor exception into a QueryError for the HTTP layer.

    Matches on the store's message text, since neither ClickHouse nor SQLite
    expose structured codes through SQLAlchemy in a portable way.

    EXAMPLES:
        >>> classify_upstream_error(Exception("Table default.x doesn't exist")).code
        <ErrorCode.TABLE_NOT_FOUND: 'ERR_030'>
        >>> classify_upstream_error(Exception("no such column: foo")).http_status
        400
    """
    if isinstance(exc, QueryError):
        return exc

    text = str(exc)
    lowered = text.lower()

    if ("table" in lowered and "doesn't exist" in lowered) or "no such table" in lowered \
            or "unknown table" in lowered:
        return QueryError(
            code=ErrorCode.TABLE_NOT_FOUND,
            message="Table not found",
            category=ErrorCategory.UPSTREAM,
            details={"upstream": text[:200]},
        )

    if "memory limit" in lowered:
        return QueryError(
            code=ErrorCode.MEMORY_LIMIT,
            message="Query exceeds memory limit. Please use filters or pagination",
            category=ErrorCategory.UPSTREAM,
            details={"upstream": text[:200]},
        )

    if "column" in lowered or "field" in lowered:
        return QueryError(
            code=ErrorCode.COLUMN_NOT_FOUND,
            message="Invalid field or column",
            category=ErrorCategory.UPSTREAM,
            details={"upstream": text[:200]},
        )

    return QueryError(
        code=ErrorCode.INTERNAL_ERROR,
        message="Internal server error",
        category=ErrorCategory.UNKNOWN,
        severity=ErrorSeverity.CRITICAL,
        details={"upstream": text[:200], "type": type(exc).__name__},
    )

"""
Error types for TableDB.

This module defines all exception types raised by the core:
- TableDbError: Base exception
- NotFoundError: Table, row or folder does not exist
- ValidationError: Foreign key or structural validation failed
- ConflictError: Restrict policy or id collision blocked the operation
- TransientStoreError: Blob store call failed (network, timeout, 5xx)

Invariants:
    - All errors inherit from TableDbError
    - Errors carry structured details usable for audit records
    - Integrity errors are never retried automatically
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class TableDbError(Exception):
    """Base exception for all TableDB errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TABLEDB_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for API responses and audit logs."""
        return {
            "error": self.message,
            "error_code": self.code,
            "details": self.details,
        }


class NotFoundError(TableDbError):
    """Resource not found.

    Raised when:
    - Table schema doesn't exist
    - Row doesn't exist
    - Folder doesn't exist
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ValidationError(TableDbError):
    """Write rejected before anything was stored.

    Raised when:
    - A foreign key value has no matching target row
    - A required field is missing
    - A schema or relationship document is malformed

    Attributes:
        field_name: First offending field
        reference: Relationship spec of the first offending field, if any
        value: Offending value, if any
        errors: Every failure found, one message each
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        reference: Optional[str] = None,
        value: Any = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={
                "field": field_name,
                "reference": reference,
                "value": value,
                "errors": errors or [],
            },
        )
        self.field_name = field_name
        self.reference = reference
        self.value = value
        self.errors = errors or []


class ConflictError(TableDbError):
    """Operation conflicts with existing state.

    Raised when:
    - A restrict delete policy has dependent rows
    - A create collides with an existing table, folder or row id
    - A non-empty folder is deleted

    Attributes:
        blockers: One entry per blocking table, with field and row count
    """

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        blockers: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONFLICT",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "blockers": blockers or [],
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.blockers = blockers or []


class TransientStoreError(TableDbError):
    """Blob store call failed in a way that may succeed later.

    Reads are retried with backoff before this surfaces. Writes are not:
    the integrity snapshot a write was validated against may be stale.
    """

    def __init__(
        self,
        message: str,
        operation: str,
        key: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="TRANSIENT_STORE_ERROR",
            details={"operation": operation, "key": key},
        )
        self.operation = operation
        self.key = key

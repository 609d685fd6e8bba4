"""
Referential integrity for TableDB.

Foreign keys declared in table schemas are enforced by scanning the blob
store: target rows on every insert/update, and every schema plus the
matching child rows on every delete.

Invariants:
    - Validation covers the full row document, never just changed fields
    - Restrict checks complete before any cascade or setNull side effect
    - Comparison is exact, without type coercion
"""

from .engine import (
    Blocker,
    CascadeAction,
    DanglingReference,
    DeletePlan,
    DeleteResult,
    NullAction,
    ReferentialIntegrityEngine,
    RowRef,
)
from .scanner import Dependent, ReferenceScanner, values_equal

__all__ = [
    "ReferentialIntegrityEngine",
    "ReferenceScanner",
    "Dependent",
    "DeletePlan",
    "DeleteResult",
    "Blocker",
    "NullAction",
    "CascadeAction",
    "DanglingReference",
    "RowRef",
    "values_equal",
]

"""
CLI tools for TableDB administration.

This module provides command-line tools for:
- Browsing tables and rows of a tenant
- Deleting rows with full delete-policy enforcement
- Auditing stored foreign keys

Invariants:
    - Tools talk to the blob store directly (no running server required)
"""

from .tabledb_cli import TableCLI

__all__ = ["TableCLI"]

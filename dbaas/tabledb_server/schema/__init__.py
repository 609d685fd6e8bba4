"""
Schema module for TableDB.

This module provides the typed metadata for schema-less rows:
- Type definitions (Table, TableSchema, Relationship, DeletePolicy)
- Schema registry for table documents in the blob store

Invariants:
    - Table ids are slugs of the display name and never change
    - Relationships are declared on the child table only
    - Schemas evolve additively; nothing is removed or re-targeted

How to change safely:
    - Add new optional attributes to Table with defaults
    - Keep persisted camelCase key names stable
"""

from .registry import UNSET, SchemaRegistry
from .types import DeletePolicy, Relationship, Table, TableSchema, parse_relationships

__all__ = [
    # Types
    "DeletePolicy",
    "Relationship",
    "Table",
    "TableSchema",
    "parse_relationships",
    # Registry
    "SchemaRegistry",
    "UNSET",
]

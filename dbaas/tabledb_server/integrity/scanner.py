"""
Scan-based reference lookups.

The blob store has no secondary index, so both directions of a foreign key
are answered by scanning:
- "does any row of T have field == v" scans T's row namespace
- "which tables reference T.id" scans every schema document of the tenant

Invariants:
    - Comparison is exact: no type coercion, no case folding
      (5 does not match "5", True does not match 1)
    - Rows that cannot be parsed never match
    - A missing target table has no rows, so nothing matches

How to change safely:
    - An indexed implementation must keep the same method contracts
    - Keep values_equal the single definition of foreign-key equality
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .. import keyspace
from ..documents import Document, DocumentStore
from ..schema.registry import SchemaRegistry
from ..schema.types import DeletePolicy

logger = logging.getLogger(__name__)


def values_equal(left: Any, right: Any) -> bool:
    """Foreign-key equality: exact, without coercion between types.

    Integers and floats compare numerically (JSON does not distinguish
    them); booleans only ever equal booleans.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    return type(left) is type(right) and left == right


@dataclass(frozen=True)
class Dependent:
    """A child table field that references a target table.

    Attributes:
        child_table: Table declaring the relationship
        child_field: Field holding the foreign key
        policy: onDelete policy of the relationship
    """

    child_table: str
    child_field: str
    policy: DeletePolicy


class ReferenceScanner:
    """Answers reference queries by full prefix scans.

    Attributes:
        documents: JSON document access to the blob store
        registry: Schema registry, used to discover dependents
    """

    def __init__(self, documents: DocumentStore, registry: SchemaRegistry) -> None:
        self.documents = documents
        self.registry = registry

    async def rows(self, hub_id: str, table_id: str) -> list[tuple[str, Document]]:
        """Every readable row of a table as (row_id, document)."""
        return await self.documents.scan(
            keyspace.rows_prefix(hub_id, table_id),
            lambda key: keyspace.row_id_from_key(hub_id, table_id, key),
        )

    async def find_matching(
        self,
        hub_id: str,
        table_id: str,
        field: str,
        value: Any,
    ) -> list[tuple[str, Document]]:
        """Rows of table_id whose field equals value exactly."""
        return [
            (row_id, document)
            for row_id, document in await self.rows(hub_id, table_id)
            if field in document and values_equal(document[field], value)
        ]

    async def has_match(self, hub_id: str, table_id: str, field: str, value: Any) -> bool:
        return bool(await self.find_matching(hub_id, table_id, field, value))

    async def find_dependents(
        self,
        hub_id: str,
        table_id: str,
        target_field: str = "id",
    ) -> list[Dependent]:
        """Relationships anywhere in the tenant that reference table_id.target_field.

        O(number of tables): every schema document is read, row keys are not listed.
        """
        dependents = []
        for table in await self.registry.list_tables(hub_id):
            for relationship in table.references_to(table_id):
                if relationship.target_field == target_field:
                    dependents.append(
                        Dependent(
                            child_table=table.id,
                            child_field=relationship.field,
                            policy=relationship.on_delete,
                        )
                    )
        return dependents

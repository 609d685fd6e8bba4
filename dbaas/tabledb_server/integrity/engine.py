"""
Referential integrity engine for TableDB.

The blob store has no constraint engine, so foreign keys are enforced here,
in two directions:

Forward (insert/update):
    Every non-null value of a field with a declared relationship must equal
    the target field of some row in the target table. All relationships of
    the written row are checked; any failure rejects the whole write.

Backward (delete):
    1. Find every relationship in the tenant that references <table>.id
    2. Find the child rows holding the deleted row's id
    3. Build a DeletePlan: restrict blockers, setNull and cascade actions
    4. If any restrict blocker exists, raise ConflictError; nothing changed
    5. Apply setNull, then cascades (deepest first), then the row itself

Invariants:
    - Planning never writes; applying never re-checks restrict
    - Every restrict policy is evaluated before any side effect
    - A row is rewritten at most once per delete (setNull fields merged)
    - A row scheduled for cascade deletion is never set-null rewritten
    - CascadeMode.FLAT stops at direct dependents; RECURSIVE follows
      dependents of cascade-deleted rows, each row visited once

How to change safely:
    - Keep lookups behind ReferenceScanner so an index can replace the scans
    - Anything added to apply_plan must stay after the restrict check
    - There is no cross-row atomicity: a blob failure mid-apply leaves the
      already-applied actions in place and the parent row undeleted
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Iterable, TypeVar

from .. import keyspace
from ..config import CascadeMode
from ..documents import Document, DocumentStore, utc_now
from ..errors import ConflictError, ValidationError
from ..schema.registry import SchemaRegistry
from ..schema.types import DeletePolicy, Table
from .scanner import Dependent, ReferenceScanner, values_equal

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RowRef:
    """Address of one row."""

    table_id: str
    row_id: str

    def __str__(self) -> str:
        return f"{self.table_id}/{self.row_id}"


@dataclass
class Blocker:
    """Child rows that forbid a delete under a restrict policy."""

    table_id: str
    field: str
    row_ids: list[str]
    parent: RowRef

    @property
    def count(self) -> int:
        return len(self.row_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table_id,
            "field": self.field,
            "count": self.count,
            "rowIds": list(self.row_ids),
            "references": f"{self.parent.table_id}.id",
        }


@dataclass
class NullAction:
    """Fields of one child row to set to null.

    Attributes:
        row: Child row to rewrite
        expected: Field name to the parent id it must still hold
        parent: Deleted row that caused the action
    """

    row: RowRef
    expected: dict[str, Any]
    parent: RowRef


@dataclass(frozen=True)
class CascadeAction:
    """One child row to delete; depth 1 is a direct dependent."""

    row: RowRef
    parent: RowRef
    depth: int


@dataclass
class DeletePlan:
    """Everything a delete would do, computed before doing any of it."""

    target: RowRef
    blockers: list[Blocker] = field(default_factory=list)
    set_null: list[NullAction] = field(default_factory=list)
    cascade: list[CascadeAction] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return bool(self.blockers)

    def conflict(self) -> ConflictError:
        summary = ", ".join(f"{b.table_id}.{b.field} ({b.count} row(s))" for b in self.blockers)
        return ConflictError(
            f"Cannot delete {self.target}: referenced by {summary} with onDelete=restrict",
            resource_type="row",
            resource_id=str(self.target),
            blockers=[b.to_dict() for b in self.blockers],
        )


@dataclass
class DeleteResult:
    """Outcome of a delete, for callers building audit records."""

    table_id: str
    row_id: str
    deleted: list[RowRef] = field(default_factory=list)
    nulled: list[RowRef] = field(default_factory=list)

    @property
    def cascaded(self) -> bool:
        return bool(self.deleted or self.nulled)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tableId": self.table_id,
            "rowId": self.row_id,
            "cascaded": self.cascaded,
            "deleted": [str(ref) for ref in self.deleted],
            "nulled": [str(ref) for ref in self.nulled],
        }


@dataclass(frozen=True)
class DanglingReference:
    """A stored foreign key whose target row no longer exists."""

    table_id: str
    row_id: str
    field: str
    references: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table_id,
            "rowId": self.row_id,
            "field": self.field,
            "references": self.references,
            "value": self.value,
        }


class ReferentialIntegrityEngine:
    """Enforces declared relationships over the blob store.

    Attributes:
        documents: JSON document access to the blob store
        registry: Schema registry
        scanner: Reference lookups (scan-based by default)
        cascade_mode: Whether cascades follow grandchildren
        max_concurrent: Maximum concurrent child writes while applying a plan

    Example:
        >>> engine = ReferentialIntegrityEngine(documents, registry)
        >>> plan = await engine.plan_delete("hub1", "customers", "c1")
        >>> plan.blocked
        True
    """

    def __init__(
        self,
        documents: DocumentStore,
        registry: SchemaRegistry,
        scanner: ReferenceScanner | None = None,
        cascade_mode: CascadeMode = CascadeMode.FLAT,
        max_concurrent: int = 8,
    ) -> None:
        self.documents = documents
        self.registry = registry
        self.scanner = scanner or ReferenceScanner(documents, registry)
        self.cascade_mode = cascade_mode
        self.max_concurrent = max_concurrent

    async def validate_references(self, hub_id: str, table: Table, document: Document) -> None:
        """Check every foreign key of a row document about to be written.

        Null or absent values always pass.

        Raises:
            ValidationError: Naming every field whose value has no target row
        """
        checks = [
            (relationship, document[relationship.field])
            for relationship in table.relationships.values()
            if document.get(relationship.field) is not None
        ]
        if not checks:
            return

        found = await asyncio.gather(
            *(
                self.scanner.has_match(
                    hub_id, relationship.target_table, relationship.target_field, value
                )
                for relationship, value in checks
            )
        )

        failures = [(rel, value) for (rel, value), ok in zip(checks, found) if not ok]
        if not failures:
            return

        errors = [
            f"Field '{rel.field}' references {rel.references} = {value!r}, which does not exist"
            for rel, value in failures
        ]
        first, first_value = failures[0]
        logger.info(
            f"Foreign key validation failed on table {table.id}",
            extra={"hub_id": hub_id, "table_id": table.id, "errors": errors},
        )
        raise ValidationError(
            errors[0] if len(errors) == 1 else f"{len(errors)} foreign key(s) do not resolve",
            field_name=first.field,
            reference=first.references,
            value=first_value,
            errors=errors,
        )

    async def plan_delete(self, hub_id: str, table_id: str, row_id: str) -> DeletePlan:
        """Work out what deleting a row entails, without changing anything."""
        target = RowRef(table_id, row_id)
        plan = DeletePlan(target=target)
        doomed = {target}
        nulls: dict[RowRef, NullAction] = {}
        dependents_by_table: dict[str, list[Dependent]] = {}

        frontier = [(target, 0)]
        while frontier:
            parent, depth = frontier.pop(0)
            if parent.table_id not in dependents_by_table:
                dependents_by_table[parent.table_id] = await self.scanner.find_dependents(
                    hub_id, parent.table_id
                )

            for dependent in dependents_by_table[parent.table_id]:
                matches = await self.scanner.find_matching(
                    hub_id, dependent.child_table, dependent.child_field, parent.row_id
                )
                refs = [RowRef(dependent.child_table, child_id) for child_id, _ in matches]
                # A row referencing itself does not block or outlive its own delete
                refs = [ref for ref in refs if ref != parent]
                if not refs:
                    continue

                if dependent.policy is DeletePolicy.RESTRICT:
                    plan.blockers.append(
                        Blocker(
                            table_id=dependent.child_table,
                            field=dependent.child_field,
                            row_ids=[ref.row_id for ref in refs],
                            parent=parent,
                        )
                    )
                elif dependent.policy is DeletePolicy.SET_NULL:
                    for ref in refs:
                        action = nulls.setdefault(ref, NullAction(ref, {}, parent))
                        action.expected[dependent.child_field] = parent.row_id
                else:
                    for ref in refs:
                        if ref in doomed:
                            continue
                        doomed.add(ref)
                        plan.cascade.append(CascadeAction(ref, parent, depth + 1))
                        if self.cascade_mode is CascadeMode.RECURSIVE:
                            frontier.append((ref, depth + 1))

        plan.set_null = [action for ref, action in nulls.items() if ref not in doomed]

        logger.debug(
            f"Planned delete of {target}",
            extra={
                "hub_id": hub_id,
                "blockers": len(plan.blockers),
                "set_null": len(plan.set_null),
                "cascade": len(plan.cascade),
            },
        )
        return plan

    async def apply_plan(
        self, hub_id: str, plan: DeletePlan, actor: str | None = None
    ) -> DeleteResult:
        """Carry out a delete plan.

        Raises:
            ConflictError: If the plan has restrict blockers (nothing applied)
        """
        if plan.blocked:
            raise plan.conflict()

        result = DeleteResult(table_id=plan.target.table_id, row_id=plan.target.row_id)

        rewritten = await self._fan_out(
            self._apply_null(hub_id, action, actor) for action in plan.set_null
        )
        result.nulled = [action.row for action, done in zip(plan.set_null, rewritten) if done]

        # Deepest first: an interrupted delete never orphans grandchildren
        for depth in sorted({action.depth for action in plan.cascade}, reverse=True):
            level = [action for action in plan.cascade if action.depth == depth]
            await self._fan_out(
                self.documents.delete(
                    keyspace.row_key(hub_id, action.row.table_id, action.row.row_id)
                )
                for action in level
            )
            result.deleted.extend(action.row for action in level)

        await self.documents.delete(
            keyspace.row_key(hub_id, plan.target.table_id, plan.target.row_id)
        )

        logger.info(
            f"Deleted {plan.target}",
            extra={
                "hub_id": hub_id,
                "actor": actor,
                "cascade_deleted": len(result.deleted),
                "set_null": len(result.nulled),
            },
        )
        return result

    async def delete_row(
        self, hub_id: str, table_id: str, row_id: str, actor: str | None = None
    ) -> DeleteResult:
        """Plan and apply the delete of one row."""
        plan = await self.plan_delete(hub_id, table_id, row_id)
        return await self.apply_plan(hub_id, plan, actor)

    async def audit(self, hub_id: str) -> list[DanglingReference]:
        """Find stored foreign keys that no longer resolve.

        Writes are validated, but rows can go stale through out-of-band
        deletes or races between validation and write.
        """
        rows_by_table: dict[str, list[tuple[str, Document]]] = {}

        async def rows_of(table_id: str) -> list[tuple[str, Document]]:
            if table_id not in rows_by_table:
                rows_by_table[table_id] = await self.scanner.rows(hub_id, table_id)
            return rows_by_table[table_id]

        dangling = []
        for table in await self.registry.list_tables(hub_id):
            if not table.relationships:
                continue
            for row_id, document in await rows_of(table.id):
                for relationship in table.relationships.values():
                    value = document.get(relationship.field)
                    if value is None:
                        continue
                    targets = await rows_of(relationship.target_table)
                    if not any(
                        relationship.target_field in target
                        and values_equal(target[relationship.target_field], value)
                        for _, target in targets
                    ):
                        dangling.append(
                            DanglingReference(
                                table_id=table.id,
                                row_id=row_id,
                                field=relationship.field,
                                references=relationship.references,
                                value=value,
                            )
                        )

        if dangling:
            logger.warning(
                f"Audit found {len(dangling)} dangling reference(s)", extra={"hub_id": hub_id}
            )
        return dangling

    async def _apply_null(self, hub_id: str, action: NullAction, actor: str | None) -> bool:
        key = keyspace.row_key(hub_id, action.row.table_id, action.row.row_id)
        document = await self.documents.get(key)
        if document is None:
            return False

        changed = False
        for field_name, parent_id in action.expected.items():
            # Skip fields rewritten since planning
            if field_name in document and values_equal(document[field_name], parent_id):
                document[field_name] = None
                changed = True
        if not changed:
            return False

        meta = dict(document.get("_meta") or {})
        meta["updatedBy"] = actor
        meta["updatedAt"] = utc_now()
        meta["cascadeReason"] = (
            f"{', '.join(sorted(action.expected))} set to null: "
            f"referenced row {action.parent} was deleted"
        )
        document["_meta"] = meta
        await self.documents.put(key, document)
        return True

    async def _fan_out(self, calls: Iterable[Awaitable[T]]) -> list[T]:
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def run(call: Awaitable[T]) -> T:
            async with semaphore:
                return await call

        return await asyncio.gather(*(run(call) for call in calls))

"""
Core type definitions for TableDB table schemas.

This module defines the typed metadata around schema-less rows:
- DeletePolicy: What happens to child rows when a parent row is deleted
- Relationship: A foreign-key edge declared on the child table
- TableSchema: Declared properties and required fields
- Table: The persisted schema document of one table

Invariants:
    - A relationship reference is "<table>.<field>", split on the first "."
    - Relationships live on the child (source) table only
    - Schema documents round-trip through to_dict/from_dict unchanged

How to change safely:
    - Keep persisted key names (camelCase) stable
    - New optional attributes must default to a value old documents lack

Example:
    >>> Table(
    ...     id="orders",
    ...     name="Orders",
    ...     schema=TableSchema(properties={"customerId": {"type": "string"}}),
    ...     relationships={
    ...         "customerId": Relationship("customerId", "customers.id", DeletePolicy.RESTRICT),
    ...     },
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any

from .. import keyspace
from ..errors import ValidationError


class DeletePolicy(Enum):
    """Delete policies for relationships."""

    RESTRICT = "restrict"
    CASCADE = "cascade"
    SET_NULL = "setNull"

    @classmethod
    def from_str(cls, value: str) -> DeletePolicy:
        """Convert string representation to DeletePolicy.

        Raises:
            ValidationError: If value is not a known policy
        """
        for policy in cls:
            if policy.value == value:
                return policy
        valid = [p.value for p in cls]
        raise ValidationError(
            f"Invalid onDelete policy '{value}'. Valid policies: {valid}",
            field_name="onDelete",
            value=value,
        )


@dataclass(frozen=True)
class Relationship:
    """Foreign-key edge from a child field to a target table field.

    Attributes:
        field: Field on the child table holding the foreign key
        references: Target as "<table>.<field>"
        on_delete: Policy applied to child rows when the target row goes away
    """

    field: str
    references: str
    on_delete: DeletePolicy = DeletePolicy.RESTRICT

    def __post_init__(self) -> None:
        if not self.field:
            raise ValidationError("Relationship field cannot be empty", field_name="field")
        table, sep, target_field = self.references.partition(".")
        if not sep or not table or not target_field:
            raise ValidationError(
                f"Relationship on '{self.field}' must reference '<table>.<field>', "
                f"got '{self.references}'",
                field_name=self.field,
                reference=self.references,
            )
        if not keyspace.is_valid_segment(table):
            raise ValidationError(
                f"Relationship on '{self.field}' references invalid table '{table}'",
                field_name=self.field,
                reference=self.references,
            )

    @property
    def target_table(self) -> str:
        return self.references.partition(".")[0]

    @property
    def target_field(self) -> str:
        return self.references.partition(".")[2]

    def to_dict(self) -> dict[str, str]:
        return {"references": self.references, "onDelete": self.on_delete.value}

    @classmethod
    def from_dict(cls, field_name: str, data: Any) -> Relationship:
        """Create from the persisted {references, onDelete} mapping.

        Raises:
            ValidationError: If the mapping is malformed
        """
        if not isinstance(data, dict) or not isinstance(data.get("references"), str):
            raise ValidationError(
                f"Relationship on '{field_name}' needs a 'references' string",
                field_name=field_name,
            )
        return cls(
            field=field_name,
            references=data["references"],
            on_delete=DeletePolicy.from_str(data.get("onDelete", DeletePolicy.RESTRICT.value)),
        )


@dataclass(frozen=True)
class TableSchema:
    """Declared shape of a table's rows.

    Properties are stored as given; only the structure is checked.

    Attributes:
        properties: Field name to type description
        required: Fields every row must carry with a non-null value
    """

    properties: dict[str, Any] = dataclass_field(default_factory=dict)
    required: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"properties": dict(self.properties), "required": list(self.required)}

    @classmethod
    def from_dict(cls, data: Any) -> TableSchema:
        """Create from a schema mapping.

        Raises:
            ValidationError: If properties is missing or required is not a list
        """
        if not isinstance(data, dict) or not isinstance(data.get("properties"), dict):
            raise ValidationError(
                "Valid schema with a 'properties' mapping is required",
                field_name="schema",
            )
        required = data.get("required") or []
        if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
            raise ValidationError(
                "Schema 'required' must be a list of field names",
                field_name="required",
                value=required,
            )
        return cls(properties=dict(data["properties"]), required=tuple(required))


@dataclass(frozen=True)
class Table:
    """Schema document of one table.

    Attributes:
        id: Slug derived from name, unique per tenant
        name: Display name
        schema: Declared properties and required fields
        relationships: Foreign keys by child field name
        folder_id: Folder the table is filed under, if any
        created_by: Actor who created the table
        created_at: ISO-8601 creation time
        updated_by: Actor of the last edit, if any
        updated_at: ISO-8601 time of the last edit, if any
        created_via: Channel the table was created through, if not direct
    """

    id: str
    name: str
    schema: TableSchema = dataclass_field(default_factory=TableSchema)
    relationships: dict[str, Relationship] = dataclass_field(default_factory=dict)
    folder_id: str | None = None
    created_by: str | None = None
    created_at: str | None = None
    updated_by: str | None = None
    updated_at: str | None = None
    created_via: str | None = None

    def references_to(self, target_table: str) -> list[Relationship]:
        """Relationships of this table pointing at target_table."""
        return [r for r in self.relationships.values() if r.target_table == target_table]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "folderId": self.folder_id,
            "schema": self.schema.to_dict(),
            "relationships": {name: rel.to_dict() for name, rel in self.relationships.items()},
            "createdBy": self.created_by,
            "createdAt": self.created_at,
        }
        if self.created_via is not None:
            data["createdVia"] = self.created_via
        if self.updated_at is not None:
            data["updatedBy"] = self.updated_by
            data["updatedAt"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Table:
        """Create from a persisted schema document.

        Raises:
            ValidationError: If the document is malformed
        """
        if not isinstance(data.get("id"), str) or not data["id"]:
            raise ValidationError("Table document has no id", field_name="id")
        return cls(
            id=data["id"],
            name=data.get("name") or data["id"],
            schema=TableSchema.from_dict(data.get("schema")),
            relationships=parse_relationships(data.get("relationships")),
            folder_id=data.get("folderId"),
            created_by=data.get("createdBy"),
            created_at=data.get("createdAt"),
            updated_by=data.get("updatedBy"),
            updated_at=data.get("updatedAt"),
            created_via=data.get("createdVia"),
        )


def parse_relationships(data: Any) -> dict[str, Relationship]:
    """Parse a {field: {references, onDelete}} mapping.

    Accepts Relationship instances as values too.

    Raises:
        ValidationError: If the mapping or any entry is malformed
    """
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Relationships must be a mapping of field to spec")
    relationships = {}
    for field_name, spec in data.items():
        if isinstance(spec, Relationship):
            if spec.field != field_name:
                raise ValidationError(
                    f"Relationship keyed '{field_name}' declares field '{spec.field}'",
                    field_name=field_name,
                )
            relationships[field_name] = spec
        else:
            relationships[field_name] = Relationship.from_dict(field_name, spec)
    return relationships

"""
Folder hierarchy for TableDB.

Folders group tables into a tree for display. A folder is one metadata
document; tables point at their folder through Table.folder_id and
folders at their parent through parent_id. Nothing else links them.

Invariants:
    - A folder id is normalize_id(name) at creation and never changes
    - A new folder's parent must exist
    - A folder still holding tables or subfolders cannot be deleted
    - A folder whose parent no longer exists is shown as a root

How to change safely:
    - Keep the meta.json shape compatible with Folder.from_dict
    - folder_tree must stay total: every readable folder appears exactly once
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any

from .. import keyspace
from ..blob.base import PreconditionFailedError
from ..documents import DocumentStore, utc_now
from ..errors import ConflictError, NotFoundError, ValidationError
from ..schema.registry import SchemaRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Folder:
    id: str
    name: str
    description: str = ""
    parent_id: str | None = None
    created_by: str | None = None
    created_at: str | None = None
    updated_by: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parentId": self.parent_id,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
        }
        if self.updated_at is not None:
            data["updatedBy"] = self.updated_by
            data["updatedAt"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Folder:
        if not isinstance(data.get("id"), str) or not data["id"]:
            raise ValidationError("Folder document has no id", field_name="id")
        return cls(
            id=data["id"],
            name=data.get("name") or data["id"],
            description=data.get("description") or "",
            parent_id=data.get("parentId"),
            created_by=data.get("createdBy"),
            created_at=data.get("createdAt"),
            updated_by=data.get("updatedBy"),
            updated_at=data.get("updatedAt"),
        )


@dataclass
class FolderNode:
    """A folder with its subfolders, for tree display."""

    folder: Folder
    children: list[FolderNode] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = self.folder.to_dict()
        data["children"] = [child.to_dict() for child in self.children]
        return data


class FolderHierarchy:
    """Blob-backed folder metadata.

    Attributes:
        documents: JSON document access to the blob store
        registry: Schema registry, consulted before deleting a folder
    """

    def __init__(self, documents: DocumentStore, registry: SchemaRegistry) -> None:
        self.documents = documents
        self.registry = registry

    async def create_folder(
        self,
        hub_id: str,
        name: str,
        description: str = "",
        parent_id: str | None = None,
        actor: str | None = None,
    ) -> Folder:
        """Create a folder.

        Raises:
            ValidationError: If the name is empty or the parent does not exist
            ConflictError: If a folder with the derived id already exists
        """
        if not name or not isinstance(name, str):
            raise ValidationError("Folder name is required", field_name="name")

        folder_id = keyspace.normalize_id(name)
        if parent_id is not None:
            if parent_id == folder_id or await self._load(hub_id, parent_id) is None:
                raise ValidationError(
                    f"Parent folder '{parent_id}' does not exist",
                    field_name="parentId",
                    value=parent_id,
                )

        folder = Folder(
            id=folder_id,
            name=name,
            description=description or "",
            parent_id=parent_id,
            created_by=actor,
            created_at=utc_now(),
        )
        key = keyspace.folder_key(hub_id, folder_id)
        if await self.documents.exists(key):
            raise _folder_exists(folder_id)
        try:
            await self.documents.put(key, folder.to_dict(), if_absent=True)
        except PreconditionFailedError:
            raise _folder_exists(folder_id) from None

        logger.info(
            f"Created folder {folder_id}",
            extra={"hub_id": hub_id, "folder_id": folder_id, "parent_id": parent_id, "actor": actor},
        )
        return folder

    async def rename_folder(
        self,
        hub_id: str,
        folder_id: str,
        name: str,
        actor: str | None = None,
    ) -> Folder:
        """Change a folder's display name; its id stays the same.

        Raises:
            NotFoundError: If the folder does not exist
            ValidationError: If the name is empty
        """
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Folder name cannot be empty", field_name="name")
        folder = await self.get_folder(hub_id, folder_id)
        renamed = replace(folder, name=name, updated_by=actor, updated_at=utc_now())
        await self.documents.put(keyspace.folder_key(hub_id, folder_id), renamed.to_dict())
        logger.info(
            f"Renamed folder {folder_id}",
            extra={"hub_id": hub_id, "folder_id": folder_id, "actor": actor},
        )
        return renamed

    async def get_folder(self, hub_id: str, folder_id: str) -> Folder:
        folder = await self._load(hub_id, folder_id)
        if folder is None:
            raise NotFoundError(
                f"Folder '{folder_id}' not found", resource_type="folder", resource_id=folder_id
            )
        return folder

    async def list_folders(self, hub_id: str) -> list[Folder]:
        entries = await self.documents.scan(
            keyspace.folders_prefix(hub_id),
            lambda key: keyspace.folder_id_from_key(hub_id, key),
        )
        folders = []
        for folder_id, document in entries:
            try:
                folders.append(Folder.from_dict(document))
            except ValidationError as e:
                logger.warning(f"Skipping malformed folder document {folder_id}: {e}")
        return folders

    async def folder_tree(self, hub_id: str) -> list[FolderNode]:
        """Folders arranged as a forest, siblings sorted by name.

        Roots are folders without a parent or whose parent is missing.
        Folders caught in a parent cycle are shown as roots too.
        """
        folders = await self.list_folders(hub_id)
        known = {folder.id for folder in folders}
        children: dict[str | None, list[Folder]] = defaultdict(list)
        for folder in folders:
            parent = folder.parent_id if folder.parent_id in known else None
            children[parent].append(folder)

        def sort_key(folder: Folder) -> tuple[str, str]:
            return folder.name.lower(), folder.id

        placed: set[str] = set()

        def build(folder: Folder) -> FolderNode:
            placed.add(folder.id)
            return FolderNode(
                folder=folder,
                children=[
                    build(child)
                    for child in sorted(children.get(folder.id, []), key=sort_key)
                    if child.id not in placed
                ],
            )

        roots = [build(folder) for folder in sorted(children.get(None, []), key=sort_key)]
        for folder in sorted(folders, key=sort_key):
            if folder.id not in placed:
                roots.append(build(folder))
        return roots

    async def delete_folder(self, hub_id: str, folder_id: str, actor: str | None = None) -> None:
        """Delete an empty folder.

        Raises:
            NotFoundError: If the folder does not exist
            ConflictError: If any table is filed in it or any folder is its child
        """
        await self.get_folder(hub_id, folder_id)

        tables = await self.registry.list_tables(hub_id, folder_id=folder_id)
        subfolders = [f for f in await self.list_folders(hub_id) if f.parent_id == folder_id]
        if tables or subfolders:
            blockers = []
            if tables:
                blockers.append({"table": "tables", "field": "folderId", "count": len(tables)})
            if subfolders:
                blockers.append(
                    {"table": "folders", "field": "parentId", "count": len(subfolders)}
                )
            raise ConflictError(
                f"Folder '{folder_id}' is not empty: "
                f"{len(tables)} table(s), {len(subfolders)} subfolder(s)",
                resource_type="folder",
                resource_id=folder_id,
                blockers=blockers,
            )

        await self.documents.delete(keyspace.folder_key(hub_id, folder_id))
        logger.info(
            f"Deleted folder {folder_id}",
            extra={"hub_id": hub_id, "folder_id": folder_id, "actor": actor},
        )

    async def _load(self, hub_id: str, folder_id: str) -> Folder | None:
        document = await self.documents.get(keyspace.folder_key(hub_id, folder_id))
        if document is None:
            return None
        try:
            return Folder.from_dict(document)
        except ValidationError as e:
            logger.warning(f"Skipping malformed folder document {folder_id}: {e}")
            return None


def _folder_exists(folder_id: str) -> ConflictError:
    return ConflictError(
        f"Folder '{folder_id}' already exists", resource_type="folder", resource_id=folder_id
    )

"""
API routes for the TableDB HTTP gateway.

Thin REST wrappers over TenantDB. The tenant and actor come from the
X-Hub-ID and X-Actor headers, which the upstream authorization layer sets
after verifying the caller's token. Request bodies never choose a tenant.

Errors raised by the core are turned into responses by the exception
handlers registered in http_server.create_app.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..errors import ValidationError
from ..schema.registry import UNSET
from ..service import TableDB, TenantContext, TenantDB
from .dispatch import dispatch_action

logger = logging.getLogger(__name__)

router = APIRouter(tags=["TableDB"])


# --- Request Models ---


class FolderCreateRequest(BaseModel):
    """Request to create a folder."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Display name; the id is derived from it")
    description: str = Field("", description="Free-form description")
    parent_id: str | None = Field(None, alias="parentId", description="Parent folder id")


class FolderRenameRequest(BaseModel):
    """Request to rename a folder."""

    name: str = Field(..., description="New display name")


class TableCreateRequest(BaseModel):
    """Request to create a table."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Display name; the id is derived from it")
    table_schema: dict[str, Any] = Field(..., alias="schema", description="properties/required")
    relationships: dict[str, Any] | None = Field(None, description="field -> {references, onDelete}")
    folder_id: str | None = Field(None, alias="folderId", description="Folder to file under")


class TableUpdateRequest(BaseModel):
    """Additive edit of a table. Omitted fields are left unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(None, description="New display name")
    table_schema: dict[str, Any] | None = Field(None, alias="schema")
    relationships: dict[str, Any] | None = None
    folder_id: str | None = Field(None, alias="folderId", description="null unfiles the table")


class RowBatchRequest(BaseModel):
    """Batch of rows to insert."""

    rows: list[dict[str, Any]] = Field(..., description="Row documents")


class ActionRequest(BaseModel):
    """Dispatcher request."""

    action: str = Field(..., description="Action name, e.g. db.insert_rows")
    args: dict[str, Any] = Field(default_factory=dict, description="Action arguments")


# --- Dependencies ---


def get_db(request: Request) -> TableDB:
    """Get the TableDB service from app state."""
    return request.app.state.db


def get_tenant(request: Request, db: TableDB = Depends(get_db)) -> TenantDB:
    """Bind the service to the tenant and actor of the request headers."""
    hub_id = request.headers.get("X-Hub-ID")
    if not hub_id:
        raise ValidationError("X-Hub-ID header is required", field_name="X-Hub-ID")
    actor = request.headers.get("X-Actor") or request.app.state.settings.default_actor
    return db.bind(TenantContext(hub_id=hub_id, actor=actor))


# --- Folder Routes ---


@router.get("/folders")
async def list_folders(
    tree: bool = Query(False, description="Return the nested folder tree"),
    tenant: TenantDB = Depends(get_tenant),
):
    """List folders, flat or as a tree (roots first, siblings by name)."""
    if tree:
        return [node.to_dict() for node in await tenant.folder_tree()]
    return [folder.to_dict() for folder in await tenant.list_folders()]


@router.post("/folders", status_code=201)
async def create_folder(body: FolderCreateRequest, tenant: TenantDB = Depends(get_tenant)):
    folder = await tenant.create_folder(
        body.name, description=body.description, parent_id=body.parent_id
    )
    return folder.to_dict()


@router.get("/folders/{folder_id}")
async def get_folder(folder_id: str, tenant: TenantDB = Depends(get_tenant)):
    return (await tenant.get_folder(folder_id)).to_dict()


@router.patch("/folders/{folder_id}")
async def rename_folder(
    folder_id: str, body: FolderRenameRequest, tenant: TenantDB = Depends(get_tenant)
):
    return (await tenant.rename_folder(folder_id, body.name)).to_dict()


@router.delete("/folders/{folder_id}", status_code=204)
async def delete_folder(folder_id: str, tenant: TenantDB = Depends(get_tenant)):
    """Delete an empty folder; 409 if it still holds tables or subfolders."""
    await tenant.delete_folder(folder_id)
    return Response(status_code=204)


# --- Table Routes ---


@router.get("/tables")
async def list_tables(
    folder_id: str | None = Query(None, alias="folderId", description="Filter by folder"),
    tenant: TenantDB = Depends(get_tenant),
):
    return [table.to_dict() for table in await tenant.list_tables(folder_id=folder_id)]


@router.post("/tables", status_code=201)
async def create_table(body: TableCreateRequest, tenant: TenantDB = Depends(get_tenant)):
    table = await tenant.create_table(
        body.name, body.table_schema, relationships=body.relationships, folder_id=body.folder_id
    )
    return table.to_dict()


@router.get("/tables/{table_id}")
async def get_table(table_id: str, tenant: TenantDB = Depends(get_tenant)):
    return (await tenant.get_table(table_id)).to_dict()


@router.patch("/tables/{table_id}")
async def update_table(
    table_id: str, body: TableUpdateRequest, tenant: TenantDB = Depends(get_tenant)
):
    """
    Apply an additive schema edit.

    New properties, required fields and relationships are accepted; removing
    or re-targeting anything is rejected with 400.
    """
    table = await tenant.update_table(
        table_id,
        schema=body.table_schema,
        relationships=body.relationships,
        name=body.name,
        folder_id=body.folder_id if "folder_id" in body.model_fields_set else UNSET,
    )
    return table.to_dict()


# --- Row Routes ---


@router.get("/tables/{table_id}/rows")
async def list_rows(table_id: str, tenant: TenantDB = Depends(get_tenant)):
    return await tenant.list_rows(table_id)


@router.post("/tables/{table_id}/rows", status_code=201)
async def insert_row(
    table_id: str, body: dict[str, Any], tenant: TenantDB = Depends(get_tenant)
):
    """Insert one row. A string 'id' in the body is used as the row id."""
    return await tenant.insert_row(table_id, body)


@router.post("/tables/{table_id}/rows/batch", status_code=201)
async def insert_rows(
    table_id: str, body: RowBatchRequest, tenant: TenantDB = Depends(get_tenant)
):
    rows = await tenant.insert_rows(table_id, body.rows)
    return {"written": len(rows), "rows": rows}


@router.get("/tables/{table_id}/rows/{row_id}")
async def get_row(table_id: str, row_id: str, tenant: TenantDB = Depends(get_tenant)):
    return await tenant.get_row(table_id, row_id)


@router.patch("/tables/{table_id}/rows/{row_id}")
async def update_row(
    table_id: str, row_id: str, body: dict[str, Any], tenant: TenantDB = Depends(get_tenant)
):
    """Merge fields into a row, creating it if absent."""
    return await tenant.update_row(table_id, row_id, body)


@router.delete("/tables/{table_id}/rows/{row_id}")
async def delete_row(table_id: str, row_id: str, tenant: TenantDB = Depends(get_tenant)):
    """
    Delete a row and apply the delete policies of rows referencing it.

    409 lists every restrict blocker; nothing is changed in that case.
    """
    result = await tenant.delete_row(table_id, row_id)
    return result.to_dict()


# --- Maintenance Routes ---


@router.get("/audit")
async def audit(tenant: TenantDB = Depends(get_tenant)):
    """Report stored foreign keys that no longer resolve."""
    dangling = await tenant.audit()
    return {"count": len(dangling), "dangling": [ref.to_dict() for ref in dangling]}


@router.get("/objects")
async def list_objects(
    path: str = Query("", description="Sub-path under the tenant prefix"),
    tenant: TenantDB = Depends(get_tenant),
):
    """Raw listing of the tenant's blob keys."""
    objects = await tenant.list_objects(path)
    return [
        {
            "key": obj.key,
            "size": obj.size,
            "lastModified": obj.last_modified.isoformat() if obj.last_modified else None,
        }
        for obj in objects
    ]


@router.post("/actions")
async def run_action(body: ActionRequest, tenant: TenantDB = Depends(get_tenant)):
    return await dispatch_action(tenant, body.action, body.args)


@router.get("/health")
async def health(db: TableDB = Depends(get_db)):
    """Blob store reachability; on S3 the bucket is created if missing."""
    result = await db.health()
    if not result.get("healthy"):
        return JSONResponse(content=result, status_code=503)
    return result

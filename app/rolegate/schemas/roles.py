from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.rolegate.schemas.permissions import DirectGrantEntry, GrantItem, PermissionScope

RoleKind = Literal["system", "custom"]


class RoleEntry(BaseModel):
    identifier: str = Field(..., description="System role name or custom role id.")
    kind: RoleKind
    name: str
    label: str
    description: str | None = None
    level: int = Field(..., description="Hierarchy level; lower is more privileged.")
    is_active: bool = True
    is_deleted: bool = False


class RoleListResponse(BaseModel):
    roles: list[RoleEntry]
    trace_id: str


class VisibleRolesResponse(BaseModel):
    roles: list[RoleEntry]
    total: int
    page: int
    page_size: int
    trace_id: str


class OverlayItem(BaseModel):
    resource: str | None = None
    action: str | None = None
    permission_id: str | None = Field(
        default=None,
        alias="permissionId",
        description="Legacy identifier (`VIEW_COMPANIES`) used when resource/action are omitted.",
    )
    scope: PermissionScope = "all"
    tenant_ids: list[str] | None = Field(default=None, alias="tenantIds")
    max_role_level: int | None = Field(default=None, alias="maxRoleLevel")
    field_restrictions: list[str] | None = Field(default=None, alias="fieldRestrictions")

    model_config = {"populate_by_name": True}


class OverlayEntry(BaseModel):
    resource: str
    action: str
    scope: PermissionScope
    conditions: dict | None = None
    allowed_fields: list[str] | None = None


class AssignRoleRequest(BaseModel):
    role: str = Field(..., min_length=1, description="System role name, custom role id, name or identifier.")
    advanced_permissions: list[OverlayItem] | None = Field(
        default=None,
        description="Replaces the overlays of the resulting assignment when provided.",
    )
    valid_from: datetime | None = None
    valid_until: datetime | None = None


class AssignmentResponse(BaseModel):
    outcome: Literal["assigned", "already_assigned", "removed", "not_assigned"]
    assignment_id: str | None = None
    role: str
    role_kind: RoleKind
    overlays: list[OverlayEntry] = Field(default_factory=list)
    trace_id: str


class AssignmentEntry(BaseModel):
    assignment_id: str
    role: str
    role_kind: RoleKind
    level: int | None = None
    assigned_at: datetime
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    overlays: list[OverlayEntry] = Field(default_factory=list)


class AssignmentListResponse(BaseModel):
    principal_id: str
    assignments: list[AssignmentEntry]
    trace_id: str


class BulkAssignRequest(BaseModel):
    role: str = Field(..., min_length=1)
    principal_ids: list[str] = Field(..., min_length=1)


class BulkAssignResponse(BaseModel):
    total: int
    assigned: list[str]
    skipped_existing: list[str]
    not_found: list[str]
    denied: list[str]
    trace_id: str


class CustomRoleCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: str | None = None
    level: int | None = Field(default=None, description="Hierarchy level; defaults to the tenant baseline role.")
    grants: list[GrantItem | str] = Field(default_factory=list)


class CustomRoleUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=150)
    description: str | None = None
    level: int | None = None
    is_active: bool | None = None
    grants: list[GrantItem | str] | None = Field(default=None, description="Replaces the whole grant set when provided.")


class CustomRoleResponse(BaseModel):
    id: str
    name: str
    identifier: str
    description: str | None = None
    level: int
    stored_level: int | None = None
    is_active: bool
    grants: list[DirectGrantEntry]
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None
    trace_id: str


class CustomRoleListResponse(BaseModel):
    roles: list[CustomRoleResponse]
    trace_id: str


class CustomRoleDeleteResponse(BaseModel):
    id: str
    name: str
    deleted_at: datetime
    assignments_deactivated: int
    trace_id: str


class MoveRoleRequest(BaseModel):
    level: int = Field(..., ge=0)


class MoveRoleResponse(BaseModel):
    role_id: str
    name: str
    previous_level: int
    level: int
    trace_id: str

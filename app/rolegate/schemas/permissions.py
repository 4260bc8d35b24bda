from typing import Literal

from pydantic import BaseModel, Field

PermissionScope = Literal["all", "global", "hierarchy", "tenant"]


class PermissionCatalogEntry(BaseModel):
    code: str = Field(..., description="Permission key in `resource:action` form (for example `companies:view`).")
    resource: str
    action: str
    name: str = Field(..., description="Human-friendly permission name.")
    description: str | None = None
    tenant_id: str | None = Field(default=None, description="Owning tenant; null for platform-wide keys.")


class PermissionCatalogGroup(BaseModel):
    resource: str
    permissions: list[PermissionCatalogEntry]


class PermissionCatalogResponse(BaseModel):
    tenant_id: str
    groups: list[PermissionCatalogGroup]
    trace_id: str


class EffectivePermissionEntry(BaseModel):
    code: str
    resource: str
    action: str
    granted: bool = Field(..., description="Whether any role, overlay or direct grant allows the operation.")
    scope: PermissionScope = Field(..., description="Narrowest scope among the granting sources.")
    conditions: dict | None = Field(
        default=None,
        description="Scope conditions such as `allowedTenants` or `maxRoleLevel`.",
    )
    allowed_fields: list[str] | None = Field(
        default=None,
        description="Visible fields; null means every field.",
    )
    sources: list[str] = Field(default_factory=list, description="Roles, overlays and grants that contributed.")


class EffectivePermissionsResponse(BaseModel):
    tenant_id: str
    principal_id: str
    permissions: list[EffectivePermissionEntry]
    trace_id: str


class PermissionCheckContext(BaseModel):
    tenant_id: str | None = Field(default=None, description="Tenant the operation targets.")
    target_role_level: int | None = Field(default=None, description="Hierarchy level of the role being acted on.")
    fields: list[str] = Field(default_factory=list, description="Fields the caller wants to read or write.")


class PermissionCheckRequest(BaseModel):
    key: str = Field(..., description="`resource:action` or legacy `ACTION_RESOURCE` identifier.")
    context: PermissionCheckContext | None = None


class PermissionCheckResponse(BaseModel):
    key: str
    allowed: bool
    trace_id: str


class GrantItem(BaseModel):
    code: str = Field(..., description="Permission key to grant.")
    scope: PermissionScope | None = Field(default=None, description="Defaults to `all` when omitted.")
    tenant_ids: list[str] | None = Field(default=None, description="Allowed tenants for `tenant` scope.")
    max_role_level: int | None = Field(default=None, description="Most privileged level reachable in `hierarchy` scope.")
    allowed_fields: list[str] | None = Field(default=None, description="Field restriction; null means every field.")


class DirectGrantRequest(BaseModel):
    grants: list[GrantItem | str] = Field(..., min_length=1)


class DirectRevokeRequest(BaseModel):
    keys: list[str] = Field(..., min_length=1)


class DirectGrantEntry(BaseModel):
    code: str
    scope: PermissionScope | None = None
    conditions: dict | None = None
    allowed_fields: list[str] | None = None


class DirectGrantListResponse(BaseModel):
    principal_id: str
    grants: list[DirectGrantEntry]
    trace_id: str


class DirectGrantChangeResponse(BaseModel):
    principal_id: str
    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    revoked: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    trace_id: str

import uuid

from fastapi import APIRouter, Depends, Request, status

from app.rolegate.core.context import PrincipalContext
from app.rolegate.core.deps import get_authorization_service, get_current_principal, require_permission
from app.rolegate.core.error_catalog import AppError, ErrorCatalog
from app.rolegate.schemas.permissions import (
    DirectGrantChangeResponse,
    DirectGrantEntry,
    DirectGrantListResponse,
    DirectGrantRequest,
    DirectRevokeRequest,
    EffectivePermissionEntry,
    EffectivePermissionsResponse,
    PermissionCatalogEntry,
    PermissionCatalogGroup,
    PermissionCatalogResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
)
from app.rolegate.services.advanced_permissions import PermissionContext
from app.rolegate.services.authorization import AuthorizationService

router = APIRouter()


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "")


def _require_self_or(service: AuthorizationService, principal: PrincipalContext, principal_id, permission_key: str):
    if str(principal_id) == principal.id:
        return
    if not service.has_permission(principal.tenant_id, principal.id, permission_key):
        raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"permission": permission_key})


@router.get("/tenants/{tenant_id}/permissions/catalog", response_model=PermissionCatalogResponse)
def permission_catalog(
    tenant_id: uuid.UUID,
    request: Request,
    principal: PrincipalContext = Depends(require_permission("roles:view")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    grouped = service.permission_catalog(tenant_id, actor_id=principal.id)
    return PermissionCatalogResponse(
        tenant_id=str(tenant_id),
        groups=[
            PermissionCatalogGroup(
                resource=resource,
                permissions=[
                    PermissionCatalogEntry(
                        code=entry.key.code,
                        resource=entry.key.resource,
                        action=entry.key.action,
                        name=entry.name,
                        description=entry.description,
                        tenant_id=entry.tenant_id,
                    )
                    for entry in entries
                ],
            )
            for resource, entries in grouped.items()
        ],
        trace_id=_trace_id(request),
    )


@router.get(
    "/tenants/{tenant_id}/principals/{principal_id}/effective-permissions",
    response_model=EffectivePermissionsResponse,
)
def effective_permissions(
    tenant_id: uuid.UUID,
    principal_id: uuid.UUID,
    request: Request,
    principal: PrincipalContext = Depends(get_current_principal),
    service: AuthorizationService = Depends(get_authorization_service),
):
    _require_self_or(service, principal, principal_id, "roles:view")
    permission_map = service.resolve_effective_permissions(tenant_id, principal_id, actor_id=principal.id)
    return EffectivePermissionsResponse(
        tenant_id=str(tenant_id),
        principal_id=str(principal_id),
        permissions=[EffectivePermissionEntry(**entry) for entry in permission_map.as_list()],
        trace_id=_trace_id(request),
    )


@router.post(
    "/tenants/{tenant_id}/principals/{principal_id}/permission-checks",
    response_model=PermissionCheckResponse,
)
def check_permission(
    tenant_id: uuid.UUID,
    principal_id: uuid.UUID,
    payload: PermissionCheckRequest,
    request: Request,
    principal: PrincipalContext = Depends(get_current_principal),
    service: AuthorizationService = Depends(get_authorization_service),
):
    _require_self_or(service, principal, principal_id, "roles:view")
    service.hierarchy.load_actor(tenant_id, principal.id)
    context = None
    if payload.context is not None:
        context = PermissionContext(
            tenant_id=payload.context.tenant_id,
            target_role_level=payload.context.target_role_level,
            fields=tuple(payload.context.fields),
        )
    allowed = service.has_permission(tenant_id, principal_id, payload.key, context)
    return PermissionCheckResponse(key=payload.key, allowed=allowed, trace_id=_trace_id(request))


@router.get(
    "/tenants/{tenant_id}/principals/{principal_id}/direct-permissions",
    response_model=DirectGrantListResponse,
)
def list_direct_permissions(
    tenant_id: uuid.UUID,
    principal_id: uuid.UUID,
    request: Request,
    principal: PrincipalContext = Depends(get_current_principal),
    service: AuthorizationService = Depends(get_authorization_service),
):
    _require_self_or(service, principal, principal_id, "roles:view")
    grants = service.list_direct_permissions(tenant_id, principal.id, principal_id)
    return DirectGrantListResponse(
        principal_id=str(principal_id),
        grants=[DirectGrantEntry(**grant.as_dict()) for grant in grants],
        trace_id=_trace_id(request),
    )


@router.post(
    "/tenants/{tenant_id}/principals/{principal_id}/direct-permissions",
    response_model=DirectGrantChangeResponse,
    status_code=status.HTTP_200_OK,
)
def grant_direct_permissions(
    tenant_id: uuid.UUID,
    principal_id: uuid.UUID,
    payload: DirectGrantRequest,
    request: Request,
    principal: PrincipalContext = Depends(require_permission("roles:assign")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    result = service.grant_direct_permissions(tenant_id, principal.id, principal_id, payload.grants)
    return DirectGrantChangeResponse(principal_id=str(principal_id), trace_id=_trace_id(request), **result.as_dict())


@router.post(
    "/tenants/{tenant_id}/principals/{principal_id}/direct-permissions/revoke",
    response_model=DirectGrantChangeResponse,
)
def revoke_direct_permissions(
    tenant_id: uuid.UUID,
    principal_id: uuid.UUID,
    payload: DirectRevokeRequest,
    request: Request,
    principal: PrincipalContext = Depends(require_permission("roles:revoke")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    result = service.revoke_direct_permissions(tenant_id, principal.id, principal_id, payload.keys)
    return DirectGrantChangeResponse(principal_id=str(principal_id), trace_id=_trace_id(request), **result.as_dict())

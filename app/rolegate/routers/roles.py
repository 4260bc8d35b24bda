import uuid

from fastapi import APIRouter, Depends, Query, Request, Response, status

from app.rolegate.core.config import settings
from app.rolegate.core.context import PrincipalContext
from app.rolegate.core.deps import get_authorization_service, require_permission
from app.rolegate.schemas.roles import (
    AssignmentEntry,
    AssignmentListResponse,
    AssignmentResponse,
    AssignRoleRequest,
    BulkAssignRequest,
    BulkAssignResponse,
    CustomRoleCreateRequest,
    CustomRoleDeleteResponse,
    CustomRoleListResponse,
    CustomRoleResponse,
    CustomRoleUpdateRequest,
    MoveRoleRequest,
    MoveRoleResponse,
    RoleEntry,
    RoleListResponse,
    VisibleRolesResponse,
)
from app.rolegate.services.authorization import AuthorizationService
from app.rolegate.services.role_assignments import ASSIGNED

router = APIRouter()


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "")


def _custom_role_response(role, request: Request) -> CustomRoleResponse:
    return CustomRoleResponse(trace_id=_trace_id(request), **role.as_dict())


@router.get("/tenants/{tenant_id}/roles/assignable", response_model=RoleListResponse)
def assignable_roles(
    tenant_id: uuid.UUID,
    request: Request,
    principal: PrincipalContext = Depends(require_permission("roles:view")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    roles = service.list_assignable_roles(tenant_id, principal.id)
    return RoleListResponse(roles=[RoleEntry(**role.as_dict()) for role in roles], trace_id=_trace_id(request))


@router.get("/tenants/{tenant_id}/roles/visible", response_model=VisibleRolesResponse)
def visible_roles(
    tenant_id: uuid.UUID,
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1),
    include_deleted: bool = False,
    principal: PrincipalContext = Depends(require_permission("roles:view")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    roles, total = service.list_visible_roles(
        tenant_id,
        principal.id,
        page=page,
        page_size=page_size,
        include_deleted=include_deleted,
    )
    return VisibleRolesResponse(
        roles=[RoleEntry(**role.as_dict()) for role in roles],
        total=total,
        page=page,
        page_size=min(page_size or settings.VISIBLE_ROLES_DEFAULT_PAGE_SIZE, settings.VISIBLE_ROLES_MAX_PAGE_SIZE),
        trace_id=_trace_id(request),
    )


@router.post("/tenants/{tenant_id}/roles/bulk-assign", response_model=BulkAssignResponse)
def bulk_assign(
    tenant_id: uuid.UUID,
    payload: BulkAssignRequest,
    request: Request,
    principal: PrincipalContext = Depends(require_permission("roles:assign")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    result = service.bulk_assign_role(tenant_id, principal.id, payload.principal_ids, payload.role)
    return BulkAssignResponse(trace_id=_trace_id(request), **result.as_dict())


@router.get("/tenants/{tenant_id}/principals/{principal_id}/roles", response_model=AssignmentListResponse)
def list_assignments(
    tenant_id: uuid.UUID,
    principal_id: uuid.UUID,
    request: Request,
    principal: PrincipalContext = Depends(require_permission("roles:view")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    views = service.list_assignments(tenant_id, principal.id, principal_id)
    return AssignmentListResponse(
        principal_id=str(principal_id),
        assignments=[AssignmentEntry(**view.as_dict()) for view in views],
        trace_id=_trace_id(request),
    )


@router.post(
    "/tenants/{tenant_id}/principals/{principal_id}/roles",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
def assign_role(
    tenant_id: uuid.UUID,
    principal_id: uuid.UUID,
    payload: AssignRoleRequest,
    request: Request,
    response: Response,
    principal: PrincipalContext = Depends(require_permission("roles:assign")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    result = service.assign_role(
        tenant_id,
        principal.id,
        principal_id,
        payload.role,
        advanced_permissions=payload.advanced_permissions,
        valid_from=payload.valid_from,
        valid_until=payload.valid_until,
    )
    if result.outcome != ASSIGNED:
        response.status_code = status.HTTP_200_OK
    return AssignmentResponse(trace_id=_trace_id(request), **result.as_dict())


@router.delete(
    "/tenants/{tenant_id}/principals/{principal_id}/roles/{role_identifier}",
    response_model=AssignmentResponse,
)
def remove_role(
    tenant_id: uuid.UUID,
    principal_id: uuid.UUID,
    role_identifier: str,
    request: Request,
    principal: PrincipalContext = Depends(require_permission("roles:revoke")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    result = service.remove_role(tenant_id, principal.id, principal_id, role_identifier)
    return AssignmentResponse(trace_id=_trace_id(request), **result.as_dict())


@router.get("/tenants/{tenant_id}/custom-roles", response_model=CustomRoleListResponse)
def list_custom_roles(
    tenant_id: uuid.UUID,
    request: Request,
    include_deleted: bool = False,
    principal: PrincipalContext = Depends(require_permission("roles:view")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    roles = service.list_custom_roles(tenant_id, principal.id, include_deleted=include_deleted)
    return CustomRoleListResponse(
        roles=[_custom_role_response(role, request) for role in roles],
        trace_id=_trace_id(request),
    )


@router.post(
    "/tenants/{tenant_id}/custom-roles",
    response_model=CustomRoleResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_custom_role(
    tenant_id: uuid.UUID,
    payload: CustomRoleCreateRequest,
    request: Request,
    principal: PrincipalContext = Depends(require_permission("roles:create")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    role = service.create_custom_role(
        tenant_id,
        principal.id,
        payload.name,
        description=payload.description,
        grants=payload.grants,
        level=payload.level,
    )
    return _custom_role_response(role, request)


@router.get("/tenants/{tenant_id}/custom-roles/{identifier}", response_model=CustomRoleResponse)
def get_custom_role(
    tenant_id: uuid.UUID,
    identifier: str,
    request: Request,
    principal: PrincipalContext = Depends(require_permission("roles:view")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    role = service.get_custom_role(tenant_id, principal.id, identifier)
    return _custom_role_response(role, request)


@router.patch("/tenants/{tenant_id}/custom-roles/{identifier}", response_model=CustomRoleResponse)
def update_custom_role(
    tenant_id: uuid.UUID,
    identifier: str,
    payload: CustomRoleUpdateRequest,
    request: Request,
    principal: PrincipalContext = Depends(require_permission("roles:update")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    role = service.update_custom_role(tenant_id, principal.id, identifier, payload)
    return _custom_role_response(role, request)


@router.delete("/tenants/{tenant_id}/custom-roles/{identifier}", response_model=CustomRoleDeleteResponse)
def delete_custom_role(
    tenant_id: uuid.UUID,
    identifier: str,
    request: Request,
    force: bool = False,
    principal: PrincipalContext = Depends(require_permission("roles:delete")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    result = service.delete_custom_role(tenant_id, principal.id, identifier, force=force)
    return CustomRoleDeleteResponse(
        id=result.id,
        name=result.name,
        deleted_at=result.deleted_at,
        assignments_deactivated=result.assignments_deactivated,
        trace_id=_trace_id(request),
    )


@router.post("/tenants/{tenant_id}/custom-roles/{identifier}/move", response_model=MoveRoleResponse)
def move_custom_role(
    tenant_id: uuid.UUID,
    identifier: str,
    payload: MoveRoleRequest,
    request: Request,
    principal: PrincipalContext = Depends(require_permission("hierarchy:manage")),
    service: AuthorizationService = Depends(get_authorization_service),
):
    result = service.move_custom_role(tenant_id, principal.id, identifier, payload.level)
    return MoveRoleResponse(
        role_id=result.role_id,
        name=result.name,
        previous_level=result.previous_level,
        level=result.level,
        trace_id=_trace_id(request),
    )
